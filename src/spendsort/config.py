"""Configuration loading, writing, and project initialization.

Reads TOML config files using stdlib ``tomllib`` and writes them using
``tomli_w``.  Depends only on ``models.py``.
"""

from __future__ import annotations

import sys
from decimal import Decimal
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[no-redef]

import tomli_w

from spendsort.models import (
    AMOUNT_CONDITIONS,
    DIRECTIONS,
    AppConfig,
    CheckPattern,
    PatternRule,
    RuleSet,
    VendorRule,
)

CONFIG_FILE = "config.toml"
CATEGORIES_FILE = "categories.toml"
RULES_FILE = "rules.toml"

# ---------------------------------------------------------------------------
# Default file content
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_TOML = """\
# spendsort configuration

[general]
output_dir = "output"

[classification]
auto_accept_threshold = 0.95    # apply suggestions at or above this without asking
direction_threshold = 0.8       # ask for income/expense/transfer below this

[llm]
provider = "anthropic"          # "anthropic" or "none"
model = "claude-sonnet-4-20250514"
api_key_env = "ANTHROPIC_API_KEY"  # Name of env var containing the API key
"""

_DEFAULT_CATEGORIES_TOML = """\
# Category taxonomy -- the valid categories and what belongs in them

[Housing]
description = "Rent, mortgage and HOA payments"

[Utilities]
description = "Electricity, water, internet, phone and television"

["Food & Dining"]
description = "Groceries, restaurants, coffee shops and delivery"

[Transportation]
description = "Fuel, parking, transit, rideshare and car maintenance"

[Shopping]
description = "Clothing, electronics, home goods and general retail"

[Healthcare]
description = "Doctors, dentists, pharmacies and therapy"

[Entertainment]
description = "Events, games, movies and subscriptions"

["Home Services"]
description = "Cleaning, lawn care, repairs and other paid help at home"

[Travel]
description = "Flights, lodging and rental cars"

[Income]
description = "Salary, refunds and other money coming in"

[Transfers]
description = "Money moved between your own accounts"

[Miscellaneous]
description = "Anything that does not fit elsewhere"
"""

_DEFAULT_RULES_TOML = """\
# Classification rules
#
# [[pattern_rules]] match merchant text (literal or regex), optionally filtered
# by amount and direction.  Higher priority wins; confidence is in percent.
#
# [[pattern_rules]]
# name = "Coffee shops"
# merchant_pattern = "STARBUCKS|PEETS"
# is_regex = true
# category = "Food & Dining"
# confidence = 95
# priority = 100
# amount_condition = "lt"     # none, lt, le, eq, ge, gt, range
# amount_value = "20.00"
#
# [[check_patterns]] match paper checks by amount and day of month.
#
# [[check_patterns]]
# name = "House cleaner"
# category = "Home Services"
# amounts = ["100.00", "200.00"]
# day_of_month_min = 1
# day_of_month_max = 10

[vendor_rules]
# System-managed merchant mappings learned during classification.
# Format: "MERCHANT NAME" = "Category"
"""

# Directories that ``initialize`` creates.
_INIT_DIRS = [
    "input",
    "output",
]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(root: Path) -> AppConfig:
    """Load ``config.toml`` from *root* and return an :class:`AppConfig`.

    Args:
        root: Project root directory containing ``config.toml``.

    Returns:
        A fully-populated :class:`AppConfig` instance.

    Raises:
        FileNotFoundError: If ``config.toml`` does not exist.
        ValueError: If a threshold is outside [0, 1].
    """
    data = _read_toml(root / CONFIG_FILE)

    general = data.get("general", {})
    classification = data.get("classification", {})
    llm = data.get("llm", {})

    config = AppConfig(
        output_dir=general.get("output_dir", "output"),
        auto_accept_threshold=float(classification.get("auto_accept_threshold", 0.95)),
        direction_threshold=float(classification.get("direction_threshold", 0.8)),
        llm_provider=llm.get("provider", "anthropic"),
        llm_model=llm.get("model", "claude-sonnet-4-20250514"),
        llm_api_key_env=llm.get("api_key_env", "ANTHROPIC_API_KEY"),
    )
    for name in ("auto_accept_threshold", "direction_threshold"):
        value = getattr(config, name)
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"{name} must be between 0 and 1, got {value}")
    return config


def load_categories(root: Path) -> list[dict]:
    """Load ``categories.toml`` and return the taxonomy.

    Args:
        root: Project root directory containing ``categories.toml``.

    Returns:
        A list of ``{"name": str, "description": str}`` dicts, one per
        category, preserving file order.

    Raises:
        FileNotFoundError: If ``categories.toml`` does not exist.
    """
    data = _read_toml(root / CATEGORIES_FILE)
    return [
        {"name": name, "description": str(section.get("description", ""))}
        for name, section in data.items()
        if isinstance(section, dict)
    ]


def add_category(root: Path, name: str, description: str = "") -> bool:
    """Append a new category table to ``categories.toml``.

    Existing tables are left untouched.

    Returns:
        True if the category was added, False if it already existed.
    """
    path = root / CATEGORIES_FILE
    existing = {c["name"].lower() for c in load_categories(root)}
    if name.lower() in existing:
        return False

    section = tomli_w.dumps({name: {"description": description}})
    original_text = path.read_text(encoding="utf-8")
    path.write_text(original_text.rstrip() + "\n\n" + section, encoding="utf-8")
    return True


def load_rule_set(root: Path) -> RuleSet:
    """Load ``rules.toml`` and return the active rule sources.

    Rules keep their file order, which is the final tie-break between rules
    of equal priority and confidence.

    Args:
        root: Project root directory containing ``rules.toml``.

    Returns:
        A :class:`RuleSet`.

    Raises:
        FileNotFoundError: If ``rules.toml`` does not exist.
        ValueError: If a rule is missing a required key or uses an unknown
            amount condition or direction.
    """
    data = _read_toml(root / RULES_FILE)
    return RuleSet(
        pattern_rules=[_parse_pattern_rule(entry) for entry in data.get("pattern_rules", [])],
        check_patterns=[_parse_check_pattern(entry) for entry in data.get("check_patterns", [])],
        vendor_rules=[
            VendorRule(merchant_name=merchant, category=str(category))
            for merchant, category in data.get("vendor_rules", {}).items()
        ],
    )


def save_vendor_rules(root: Path, rules: list[VendorRule]) -> None:
    """Write vendor rules to the ``[vendor_rules]`` section of ``rules.toml``.

    Everything above the ``[vendor_rules]`` section (pattern rules and check
    patterns) is preserved verbatim.  Only the ``[vendor_rules]`` section is
    rewritten, so it must stay last in the file.

    Args:
        root: Project root directory containing ``rules.toml``.
        rules: The complete list of vendor rules to write.
    """
    rules_path = root / RULES_FILE
    original_text = rules_path.read_text(encoding="utf-8")

    marker = "[vendor_rules]"
    idx = original_text.find(marker)
    if idx == -1:
        prefix = original_text.rstrip() + "\n\n" if original_text.strip() else ""
    else:
        prefix = original_text[:idx]

    vendor_dict = {r.merchant_name: r.category for r in rules}

    section_header = "[vendor_rules]\n"
    section_comment = (
        "# System-managed merchant mappings learned during classification.\n"
        '# Format: "MERCHANT NAME" = "Category"\n'
    )

    if vendor_dict:
        # tomli_w handles quoting; drop its own header line.
        kv_text = tomli_w.dumps({"vendor_rules": vendor_dict})
        kv_lines = kv_text.split("\n", 1)[1] if "\n" in kv_text else ""
        new_section = section_header + section_comment + kv_lines
    else:
        new_section = section_header + section_comment

    rules_path.write_text(prefix + new_section, encoding="utf-8")


def initialize(target_dir: Path) -> None:
    """Create the standard directory structure and default config files.

    Idempotent: existing directories are left alone and existing files
    are **not** overwritten.

    Args:
        target_dir: The directory in which to create the project structure.
    """
    target_dir = Path(target_dir)
    target_dir.mkdir(parents=True, exist_ok=True)

    for d in _INIT_DIRS:
        (target_dir / d).mkdir(parents=True, exist_ok=True)

    _write_if_missing(target_dir / CONFIG_FILE, _DEFAULT_CONFIG_TOML)
    _write_if_missing(target_dir / CATEGORIES_FILE, _DEFAULT_CATEGORIES_TOML)
    _write_if_missing(target_dir / RULES_FILE, _DEFAULT_RULES_TOML)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _read_toml(path: Path) -> dict:
    """Read and parse a TOML file."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def _write_if_missing(path: Path, content: str) -> None:
    """Write *content* to *path* only if the file does not already exist."""
    if not path.exists():
        path.write_text(content, encoding="utf-8")


def _decimal(value) -> Decimal | None:
    """Convert a TOML number or string to Decimal, keeping ``None``."""
    if value is None:
        return None
    # str() first so floats like 0.1 keep their written form.
    return Decimal(str(value))


def _require(entry: dict, key: str, kind: str):
    if key not in entry:
        raise ValueError(f"{kind} {entry.get('name', '<unnamed>')!r} is missing {key!r}")
    return entry[key]


def _parse_pattern_rule(entry: dict) -> PatternRule:
    name = _require(entry, "name", "Pattern rule")
    condition = str(entry.get("amount_condition", "none")).lower()
    if condition not in AMOUNT_CONDITIONS:
        raise ValueError(f"Pattern rule {name!r} has unknown amount_condition {condition!r}")
    direction = entry.get("direction")
    if direction is not None and direction not in DIRECTIONS:
        raise ValueError(f"Pattern rule {name!r} has unknown direction {direction!r}")

    return PatternRule(
        name=name,
        merchant_pattern=_require(entry, "merchant_pattern", "Pattern rule"),
        category=_require(entry, "category", "Pattern rule"),
        confidence=int(entry.get("confidence", 90)),
        priority=int(entry.get("priority", 50)),
        is_regex=bool(entry.get("is_regex", False)),
        amount_condition=condition,
        amount_value=_decimal(entry.get("amount_value")),
        amount_min=_decimal(entry.get("amount_min")),
        amount_max=_decimal(entry.get("amount_max")),
        direction=direction,
        use_count=int(entry.get("use_count", 0)),
        active=bool(entry.get("active", True)),
    )


def _parse_check_pattern(entry: dict) -> CheckPattern:
    return CheckPattern(
        name=_require(entry, "name", "Check pattern"),
        category=_require(entry, "category", "Check pattern"),
        amounts=[_decimal(a) for a in entry.get("amounts", [])],
        amount_min=_decimal(entry.get("amount_min")),
        amount_max=_decimal(entry.get("amount_max")),
        day_of_month_min=entry.get("day_of_month_min"),
        day_of_month_max=entry.get("day_of_month_max"),
        active=bool(entry.get("active", True)),
    )
