"""Click CLI entry point for the spendsort command.

Handles argument parsing, config loading, and error display. All business
logic is delegated to ``coordinator``, ``session``, ``resolver``, ``config``
and ``export`` modules.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click

from spendsort import __version__

EXIT_CANCELLED = 130

DEFAULT_OUTPUT_FILE = "classifications.csv"


def _configure_logging(verbose: bool, debug: bool) -> None:
    """Set up logging based on verbosity flags."""
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
        force=True,
    )


@click.group()
@click.version_option(version=__version__, prog_name="spendsort")
def cli() -> None:
    """Interactive transaction categorization with rules and AI suggestions."""


@cli.command()
@click.option(
    "--input",
    "input_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="CSV of transactions to classify.",
)
@click.option(
    "--output",
    "output_path",
    default=None,
    type=click.Path(dir_okay=False),
    help="Classification CSV (default: <output_dir>/classifications.csv).",
)
@click.option("--no-llm", is_flag=True, default=False, help="Skip AI suggestions.")
@click.option("--verbose", is_flag=True, default=False, help="Detailed progress output.")
@click.option("--debug", is_flag=True, default=False, help="Developer-level diagnostics.")
def classify(input_path: str, output_path: str | None, no_llm: bool, verbose: bool, debug: bool) -> None:
    """Classify transactions interactively, resuming where the last run stopped."""
    _configure_logging(verbose, debug)

    root = Path.cwd()

    # Load configuration
    try:
        from spendsort.config import load_categories, load_config
        from spendsort.store import RuleStore

        config = load_config(root)
        categories = load_categories(root)
        store = RuleStore(root)
        rule_set = store.load_rule_set()
    except FileNotFoundError as exc:
        click.echo(
            f"Error: {exc}. Run 'spendsort init' to create the project structure.",
            err=True,
        )
        sys.exit(1)
    except Exception as exc:
        click.echo(f"Error loading configuration: {exc}", err=True)
        sys.exit(1)

    # Load pending transactions, skipping those already written
    from spendsort.export import append_classifications, read_classified_ids
    from spendsort.loader import load_transactions

    out_file = Path(output_path) if output_path else root / config.output_dir / DEFAULT_OUTPUT_FILE
    try:
        done_ids = read_classified_ids(out_file)
    except (OSError, KeyError) as exc:
        click.echo(f"Error reading existing output {out_file}: {exc}", err=True)
        sys.exit(1)

    loaded = load_transactions(Path(input_path), skip_ids=done_ids)
    if loaded.errors:
        for error in loaded.errors:
            click.echo(f"Error: {error}", err=True)
        sys.exit(1)
    for warning in loaded.warnings:
        click.echo(f"Warning: {warning}", err=True)
    if loaded.already_classified:
        click.echo(f"Resuming: {loaded.already_classified} transactions already classified.")
    if not loaded.transactions:
        click.echo("No transactions to classify.")
        return

    # Select LLM adapter
    from spendsort.llm import AnthropicAdapter, NullAdapter

    if no_llm or config.llm_provider == "none":
        llm_adapter = NullAdapter()
        if verbose:
            click.echo("AI suggestions disabled.")
    else:
        llm_adapter = AnthropicAdapter(
            model=config.llm_model,
            api_key_env=config.llm_api_key_env,
        )
        if verbose:
            click.echo(f"Using LLM: {config.llm_provider} ({config.llm_model})")

    from spendsort.config import add_category
    from spendsort.coordinator import BatchCoordinator
    from spendsort.errors import ClassificationCancelled, ExternalServiceError, InputTerminated
    from spendsort.interrupt import CancellationToken, InterruptSupervisor
    from spendsort.matcher import RuleMatcher
    from spendsort.resolver import ClassificationResolver
    from spendsort.session import ConfirmationSession
    from spendsort.terminal import Terminal

    token = CancellationToken()
    matcher = RuleMatcher(rule_set, on_match=store.increment_use_count)
    resolver = ClassificationResolver(
        matcher,
        categories,
        ai_classifier=llm_adapter,
        direction_inferrer=llm_adapter,
        auto_accept_threshold=config.auto_accept_threshold,
        direction_threshold=config.direction_threshold,
    )
    session = ConfirmationSession(
        Terminal(),
        token,
        rule_store=store,
        direction_threshold=config.direction_threshold,
    )

    written = 0

    def sink(classifications) -> None:
        nonlocal written
        for c in classifications:
            if c.is_new_category and c.category:
                if add_category(root, c.category, c.category_description):
                    click.echo(f"Added category '{c.category}' to categories.toml")
                resolver.add_category(c.category, c.category_description)
        written += append_classifications(out_file, classifications)

    coordinator = BatchCoordinator(resolver, session, token, sink=sink)
    coordinator.set_total_transactions(len(loaded.transactions))

    try:
        with InterruptSupervisor(token, progress_saved=lambda: written > 0):
            coordinator.run(loaded.transactions)
    except ClassificationCancelled:
        sys.exit(EXIT_CANCELLED)
    except InputTerminated as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    except ExternalServiceError as exc:
        click.echo(f"Error: {exc}", err=True)
        if written:
            click.echo("Progress has been saved. Run the same command again to resume.", err=True)
        sys.exit(1)
    except OSError as exc:
        click.echo(f"Error writing output: {exc}", err=True)
        sys.exit(1)

    click.echo(coordinator.render_completion(coordinator.get_completion_stats()))
    if verbose:
        click.echo(f"Wrote {written} classifications to {out_file}")
    click.echo()


@cli.command()
@click.option("--verbose", is_flag=True, default=False, help="Also list vendor rules.")
def rules(verbose: bool) -> None:
    """Show the configured pattern rules, check patterns and vendor rules."""
    _configure_logging(verbose, debug=False)
    root = Path.cwd()

    try:
        from spendsort.store import RuleStore

        rule_set = RuleStore(root).load_rule_set()
    except FileNotFoundError as exc:
        click.echo(
            f"Error: {exc}. Run 'spendsort init' to create the project structure.",
            err=True,
        )
        sys.exit(1)
    except Exception as exc:
        click.echo(f"Error loading rules: {exc}", err=True)
        sys.exit(1)

    click.echo()
    click.echo("== Pattern Rules ==")
    if not rule_set.pattern_rules:
        click.echo("  (none)")
    for rule in sorted(rule_set.pattern_rules, key=lambda r: -r.priority):
        state = "" if rule.active else " [inactive]"
        kind = "regex" if rule.is_regex else "literal"
        click.echo(
            f"  {rule.name}: {rule.merchant_pattern!r} ({kind}) -> {rule.category} "
            f"[priority {rule.priority}, {rule.confidence}%, used {rule.use_count}x]{state}"
        )

    click.echo()
    click.echo("== Check Patterns ==")
    if not rule_set.check_patterns:
        click.echo("  (none)")
    for pattern in rule_set.check_patterns:
        if pattern.amounts:
            amounts = ", ".join(f"${a:.2f}" for a in pattern.amounts)
        else:
            amounts = f"${pattern.amount_min or 0:.2f} to ${pattern.amount_max or 0:.2f}"
        state = "" if pattern.active else " [inactive]"
        click.echo(f"  {pattern.name}: {amounts} -> {pattern.category}{state}")

    click.echo()
    click.echo(f"== Vendor Rules: {len(rule_set.vendor_rules)} ==")
    if verbose:
        for vendor in rule_set.vendor_rules:
            click.echo(f'  "{vendor.merchant_name}" -> {vendor.category}')
    click.echo()


@cli.command()
@click.option(
    "--dir", "target_dir", default=".", type=click.Path(), help="Directory to initialize."
)
def init(target_dir: str) -> None:
    """Initialize a new data directory with the standard structure."""
    from spendsort.config import initialize

    target = Path(target_dir).resolve()

    try:
        initialize(target)
    except Exception as exc:
        click.echo(f"Error initializing project: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Initialized spendsort project in {target}")
