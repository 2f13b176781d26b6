"""Interactive confirmation of pending classifications.

:class:`ConfirmationSession` drives the terminal conversation for one
transaction (:meth:`~ConfirmationSession.confirm_classification`) or for a
group of transactions sharing a merchant
(:meth:`~ConfirmationSession.batch_confirm_classifications`).

The single-transaction flow is a small state machine run by an explicit
loop::

    DIRECTION_PENDING -> CATEGORY_PENDING -> RESOLVED
           ^                   |
           +-- change direction+

Outcomes follow three rules: skipping yields an unclassified result with no
category and zero confidence; accepting the suggestion unchanged keeps its
status (classified by AI) and confidence; anything the user picks or types
is user-modified at confidence 1.0.

Every read goes through :class:`~spendsort.terminal.Terminal`, which checks
the session's cancellation token before blocking and abandons the wait on
cancellation.  Invalid answers re-prompt; they never fall back to a default.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import threading
import time
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from spendsort.errors import InvalidChoice
from spendsort.history import CategoryHistory
from spendsort.interrupt import CancellationToken
from spendsort.models import (
    DIRECTION_EXPENSE,
    DIRECTION_INCOME,
    DIRECTION_TRANSFER,
    DIRECTION_UNKNOWN,
    SOURCE_AI,
    SOURCE_CHECK_PATTERN,
    SOURCE_PATTERN_RULE,
    SOURCE_VENDOR_RULE,
    CategoryRanking,
    CheckPattern,
    Classification,
    CompletionStats,
    PendingClassification,
    Transaction,
)
from spendsort.resolver import VendorRuleStore
from spendsort.terminal import Terminal

logger = logging.getLogger(__name__)

MAX_VISIBLE_CATEGORIES = 15
MIN_DISPLAY_SCORE = 0.01
SAMPLE_LIMIT = 3

INVALID_CHOICE_MESSAGE = "Invalid choice. Please try again."

_DIRECTION_KEYS = {
    "i": DIRECTION_INCOME,
    "e": DIRECTION_EXPENSE,
    "t": DIRECTION_TRANSFER,
}

_SOURCE_LABELS = {
    SOURCE_CHECK_PATTERN: "check pattern",
    SOURCE_PATTERN_RULE: "pattern rule",
    SOURCE_VENDOR_RULE: "vendor rule",
    SOURCE_AI: "AI",
}


class SessionState(enum.Enum):
    DIRECTION_PENDING = "direction_pending"
    CATEGORY_PENDING = "category_pending"
    RESOLVED = "resolved"


@dataclass
class CategoryChoice:
    """A category picked in the selection list or typed in by the user."""

    name: str
    is_new: bool = False
    description: str = ""


_CHANGE_DIRECTION = object()


def _format_date(value: date, with_year: bool = True) -> str:
    if with_year:
        return f"{value:%b} {value.day}, {value.year}"
    return f"{value:%b} {value.day}"


def _format_percent(value: float) -> str:
    return f"{value * 100:.0f}%"


def _has_existing_category(rankings: list[CategoryRanking]) -> bool:
    return any(not r.is_new for r in rankings)


class ConfirmationSession:
    """Stateful terminal protocol producing final classifications.

    Args:
        terminal: Prompt/answer channel.
        token: Cancellation token checked before every read.
        history: Session-scoped category history.  A fresh one is created
            when omitted.
        rule_store: Optional store receiving a vendor rule whenever the user
            assigns a custom category.  Must offer
            ``add_vendor_rule(merchant, category)``.
        direction_threshold: Direction confidence at or above which the
            direction is not asked for.
    """

    def __init__(
        self,
        terminal: Terminal,
        token: CancellationToken,
        history: CategoryHistory | None = None,
        rule_store: VendorRuleStore | None = None,
        direction_threshold: float = 0.8,
    ) -> None:
        self.terminal = terminal
        self.token = token
        self.history = history if history is not None else CategoryHistory()
        self.rule_store = rule_store
        self.direction_threshold = direction_threshold
        self._stats = CompletionStats()
        self._stats_lock = threading.Lock()
        self._started = time.monotonic()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def confirm_classification(self, pending: PendingClassification) -> Classification:
        """Ask the user to confirm or change one pending classification.

        Raises:
            ClassificationCancelled: The session was interrupted.
            InputTerminated: Input ended mid-prompt.
        """
        self.token.raise_if_cancelled()
        self._render_transaction(pending)

        direction_settled = self._direction_settled(pending)
        txn = pending.transaction
        if direction_settled and txn.direction == DIRECTION_UNKNOWN:
            txn = txn.with_direction(pending.suggested_direction)

        state = SessionState.CATEGORY_PENDING if direction_settled else SessionState.DIRECTION_PENDING
        result: Classification | None = None
        while state is not SessionState.RESOLVED:
            if state is SessionState.DIRECTION_PENDING:
                txn = txn.with_direction(self._prompt_direction(pending))
                state = SessionState.CATEGORY_PENDING
                continue

            outcome = self._category_step(pending, txn, allow_direction_change=direction_settled)
            if outcome is _CHANGE_DIRECTION:
                state = SessionState.DIRECTION_PENDING
                continue
            result = outcome
            state = SessionState.RESOLVED

        return result

    def batch_confirm_classifications(
        self,
        pending: list[PendingClassification],
    ) -> list[Classification]:
        """Confirm a group of transactions sharing one merchant.

        The result is aligned 1:1 with *pending*.  Any error (cancellation
        included) aborts the whole batch; no partial result is returned.
        """
        if not pending:
            return []
        self.token.raise_if_cancelled()

        first = pending[0]
        merchant = first.transaction.merchant_name
        self._render_batch_summary(pending, self.history.detect_pattern(merchant))

        if self._direction_settled(first):
            items = [self._stamp_direction(p, first.suggested_direction, keep_known=True) for p in pending]
        else:
            direction = self._prompt_direction(first)
            items = [self._stamp_direction(p, direction, keep_known=False) for p in pending]

        count = len(items)
        has_suggestion = bool(first.suggested_category)
        self.terminal.echo("Options:")
        keys: list[str] = []
        if has_suggestion and first.is_new_category:
            self.terminal.echo(
                f"  [A] Create and use new category '{first.suggested_category}' for all {count} transactions"
            )
            keys.append("a")
            if _has_existing_category(first.category_rankings):
                self.terminal.echo("  [U] Use an existing category for all")
                keys.append("u")
        elif has_suggestion:
            self.terminal.echo(f"  [A] Accept '{first.suggested_category}' for all {count} transactions")
            keys.append("a")
        self.terminal.echo("  [C] Choose a custom category for all")
        self.terminal.echo("  [R] Review each transaction individually")
        self.terminal.echo("  [S] Skip all transactions")
        self.terminal.echo()
        keys += ["c", "r", "s"]

        choice = self._prompt_choice(f"Choice [{'/'.join(k.upper() for k in keys)}]", keys)

        if choice == "a":
            return self._accept_all(items)
        if choice in ("u", "c"):
            return self._custom_for_all(items, allow_create=choice == "c")
        if choice == "r":
            return self._review_each(items)
        return self._skip_all(items)

    def record_auto_classified(self, classifications: list[Classification]) -> None:
        """Book classifications applied without asking (auto-accepted)."""
        for classification in classifications:
            self.history.record(classification.transaction.merchant_name, classification.category)
        self._increment_stats(len(classifications), user_modified=False)

    def get_completion_stats(self) -> CompletionStats:
        """A snapshot of the session counters, with the elapsed duration."""
        with self._stats_lock:
            snapshot = dataclasses.replace(self._stats)
        snapshot.duration = timedelta(seconds=time.monotonic() - self._started)
        return snapshot

    # ------------------------------------------------------------------
    # Single-transaction steps
    # ------------------------------------------------------------------

    def _category_step(self, pending: PendingClassification, txn: Transaction, allow_direction_change: bool):
        suggestion = pending.suggested_category
        self.terminal.echo("Category options:")
        keys: list[str] = []
        if suggestion and pending.is_new_category:
            self.terminal.echo(f"  [A] Create and use new category: {suggestion}")
            keys.append("a")
            if _has_existing_category(pending.category_rankings):
                self.terminal.echo("  [U] Use an existing category instead")
                keys.append("u")
        elif suggestion:
            self.terminal.echo(f"  [A] Accept suggestion: {suggestion}")
            keys.append("a")
        self.terminal.echo("  [C] Choose a custom category")
        keys.append("c")
        if allow_direction_change:
            self.terminal.echo(f"  [D] Change direction (currently {txn.direction})")
            keys.append("d")
        self.terminal.echo("  [S] Skip this transaction")
        self.terminal.echo()
        keys.append("s")

        choice = self._prompt_choice("Choice", keys)

        if choice == "a":
            classification = Classification.accepted(
                txn,
                suggestion,
                pending.confidence,
                is_new_category=pending.is_new_category,
                category_description=pending.category_description,
            )
            if pending.is_new_category:
                self.terminal.echo(f"Will create new category: {suggestion}")
            self.history.record(txn.merchant_name, suggestion)
            self._increment_stats(1, user_modified=False)
            return classification
        if choice in ("u", "c"):
            selected = self._prompt_category_selection(
                pending.category_rankings, pending.check_patterns, allow_create=choice == "c"
            )
            self._learn_custom_category(txn.merchant_name, selected.name)
            self.history.record(txn.merchant_name, selected.name)
            self._increment_stats(1, user_modified=True)
            return Classification.modified(
                txn,
                selected.name,
                is_new_category=selected.is_new,
                category_description=selected.description,
            )
        if choice == "d":
            return _CHANGE_DIRECTION
        return Classification.skipped(txn)

    def _prompt_direction(self, pending: PendingClassification) -> str:
        self.terminal.echo("Confirm transaction direction:")
        if pending.suggested_direction != DIRECTION_UNKNOWN:
            line = (
                f"  Suggested: {pending.suggested_direction} "
                f"({_format_percent(pending.direction_confidence)} confidence)"
            )
            self.terminal.echo(line)
            if pending.direction_reasoning:
                self.terminal.echo(f"  {pending.direction_reasoning}")
        self.terminal.echo("  [I] Income")
        self.terminal.echo("  [E] Expense")
        self.terminal.echo("  [T] Transfer between your accounts")
        self.terminal.echo()
        choice = self._prompt_choice("Direction [I/E/T]", list(_DIRECTION_KEYS))
        return _DIRECTION_KEYS[choice]

    # ------------------------------------------------------------------
    # Category selection
    # ------------------------------------------------------------------

    def _prompt_category_selection(
        self,
        rankings: list[CategoryRanking],
        check_patterns: list[CheckPattern],
        allow_create: bool = True,
    ) -> CategoryChoice:
        """Let the user pick a ranked category, type one, or create one.

        Accepts a 1-based number from the visible list, a case-insensitive
        exact category name, ``M`` to show the remaining categories, or
        ``N`` to create a new category (when *allow_create*).
        """
        entries = [r for r in rankings if allow_create or not r.is_new]

        self.terminal.echo()
        self.terminal.echo("Select category:")
        self.terminal.echo()
        shown = min(len(entries), MAX_VISIBLE_CATEGORIES)
        for index in range(shown):
            self._render_category_line(index, entries[index], check_patterns)
        if shown < len(entries):
            self.terminal.echo(f"  [M] Show {len(entries) - shown} more categories")
        if allow_create:
            self.terminal.echo("  [N] Create new category")
        recent = self.history.recent_categories()
        if recent:
            self.terminal.echo(f"  Recently used: {', '.join(recent)}")
        self.terminal.echo()

        while True:
            answer = self.terminal.prompt("Enter number or category name", self.token)
            if not answer:
                self.terminal.echo("Please make a selection.")
                continue
            lowered = answer.lower()

            if lowered == "m" and shown < len(entries):
                self.terminal.echo()
                for index in range(shown, len(entries)):
                    self._render_category_line(index, entries[index], check_patterns)
                self.terminal.echo()
                shown = len(entries)
                continue

            if lowered == "n" and allow_create:
                return self._prompt_new_category(entries)

            if answer.isdigit() and 1 <= int(answer) <= shown:
                return self._choice_from_ranking(entries[int(answer) - 1])

            for entry in entries:
                if entry.category.lower() == lowered:
                    return self._choice_from_ranking(entry)

            if allow_create:
                self.terminal.echo(
                    "Invalid selection. Please enter a number, category name, or 'N' for new category."
                )
            else:
                self.terminal.echo("Invalid selection. Please enter a number or category name.")

    def _prompt_new_category(self, entries: list[CategoryRanking]) -> CategoryChoice:
        self.terminal.echo()
        while True:
            name = self.terminal.prompt("Enter new category name", self.token)
            if name:
                break
            self.terminal.echo("Category name cannot be empty. Please try again.")

        for entry in entries:
            if not entry.is_new and entry.category.lower() == name.lower():
                self.terminal.echo(f"Using existing category: {entry.category}")
                return CategoryChoice(name=entry.category)

        description = self.terminal.prompt("Enter description (optional, press Enter to skip)", self.token)
        return CategoryChoice(name=name, is_new=True, description=description)

    @staticmethod
    def _choice_from_ranking(ranking: CategoryRanking) -> CategoryChoice:
        if ranking.is_new:
            return CategoryChoice(name=ranking.category, is_new=True, description=ranking.description)
        return CategoryChoice(name=ranking.category)

    def _render_category_line(
        self,
        index: int,
        ranking: CategoryRanking,
        check_patterns: list[CheckPattern],
    ) -> None:
        line = f"  [{index + 1}] {ranking.category}"
        if ranking.score >= MIN_DISPLAY_SCORE:
            line += f" ({_format_percent(ranking.score)} match)"
        if ranking.is_new:
            line += " (new)"
        for pattern in check_patterns:
            if pattern.active and pattern.category == ranking.category:
                line += f' * matches check pattern "{pattern.name}"'
                break
        self.terminal.echo(line)
        if ranking.description and ranking.score >= MIN_DISPLAY_SCORE:
            self.terminal.echo(f"      {ranking.description}")

    # ------------------------------------------------------------------
    # Batch actions
    # ------------------------------------------------------------------

    def _accept_all(self, items: list[PendingClassification]) -> list[Classification]:
        # The group shares the suggestion shown in the summary.
        first = items[0]
        classifications = [
            Classification.accepted(
                p.transaction,
                first.suggested_category,
                first.confidence,
                is_new_category=first.is_new_category,
                category_description=first.category_description,
            )
            for p in items
        ]
        for classification in classifications:
            self.history.record(classification.transaction.merchant_name, classification.category)
        self._increment_stats(len(items), user_modified=False)

        if first.is_new_category:
            self.terminal.echo(f"Will create new category: {first.suggested_category}")
        self.terminal.echo(f"Classified {len(items)} transactions as {first.suggested_category}")
        return classifications

    def _custom_for_all(self, items: list[PendingClassification], allow_create: bool) -> list[Classification]:
        first = items[0]
        selected = self._prompt_category_selection(
            first.category_rankings, first.check_patterns, allow_create=allow_create
        )
        classifications = [
            Classification.modified(
                p.transaction,
                selected.name,
                is_new_category=selected.is_new,
                category_description=selected.description,
            )
            for p in items
        ]
        merchant = first.transaction.merchant_name
        for _ in items:
            self.history.record(merchant, selected.name)
        self._learn_custom_category(merchant, selected.name)
        self._increment_stats(len(items), user_modified=True)

        self.terminal.echo(f"Classified {len(items)} transactions as {selected.name}")
        return classifications

    def _review_each(self, items: list[PendingClassification]) -> list[Classification]:
        self.terminal.echo(f"Reviewing {len(items)} transactions individually...")
        classifications: list[Classification] = []
        for index, item in enumerate(items, start=1):
            self.terminal.echo()
            self.terminal.echo(f"[{index}/{len(items)}]")
            classifications.append(self.confirm_classification(item))
        return classifications

    def _skip_all(self, items: list[PendingClassification]) -> list[Classification]:
        self.terminal.echo(f"Skipped {len(items)} transactions")
        return [Classification.skipped(p.transaction) for p in items]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _direction_settled(self, pending: PendingClassification) -> bool:
        return (
            pending.suggested_direction != DIRECTION_UNKNOWN
            and pending.direction_confidence >= self.direction_threshold
        )

    @staticmethod
    def _stamp_direction(pending: PendingClassification, direction: str, keep_known: bool) -> PendingClassification:
        txn = pending.transaction
        if not keep_known or txn.direction == DIRECTION_UNKNOWN:
            txn = txn.with_direction(direction)
        return dataclasses.replace(
            pending,
            transaction=txn,
            suggested_direction=txn.direction,
            direction_confidence=pending.direction_confidence if keep_known else 1.0,
        )

    def _prompt_choice(self, text: str, valid: list[str]) -> str:
        while True:
            answer = self.terminal.prompt(text, self.token)
            try:
                return self._parse_choice(answer, valid)
            except InvalidChoice:
                self.terminal.echo(INVALID_CHOICE_MESSAGE)

    @staticmethod
    def _parse_choice(answer: str, valid: list[str]) -> str:
        choice = answer.strip().lower()
        if choice not in valid:
            raise InvalidChoice(choice)
        return choice

    def _learn_custom_category(self, merchant: str, category: str) -> None:
        with self._stats_lock:
            self._stats.new_vendor_rules += 1
        if self.rule_store is None:
            return
        try:
            self.rule_store.add_vendor_rule(merchant, category)
        except Exception as exc:
            logger.warning("Failed to save vendor rule for %s: %s", merchant, exc)

    def _increment_stats(self, count: int, user_modified: bool) -> None:
        with self._stats_lock:
            self._stats.total_transactions += count
            if user_modified:
                self._stats.user_classified += count
            else:
                self._stats.auto_classified += count

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _render_transaction(self, pending: PendingClassification) -> None:
        txn = pending.transaction
        lines = [
            f"== Transaction Review: {txn.merchant_name} ==",
            "",
            "Details:",
            f"  Date: {_format_date(txn.date)}",
            f"  Amount: ${txn.amount:.2f}",
            f"  Description: {txn.description}",
            f"  Direction: {txn.direction}",
        ]
        if txn.check_number:
            lines.append(f"  Check number: {txn.check_number}")
        lines.append("")

        if not pending.suggested_category:
            lines.append("No category suggestion available.")
        else:
            source = _SOURCE_LABELS.get(pending.source, "")
            via = f" via {source}" if source else ""
            if pending.is_new_category:
                lines.append(
                    f"Suggested NEW category: {pending.suggested_category} "
                    f"({_format_percent(pending.confidence)} confidence{via})"
                )
                if pending.category_description:
                    lines.append(f"  {pending.category_description}")
            else:
                lines.append(
                    f"Suggested category: {pending.suggested_category} "
                    f"({_format_percent(pending.confidence)} confidence{via})"
                )
        for pattern in pending.check_patterns:
            lines.append(f'  Matches check pattern "{pattern.name}" -> {pattern.category}')
        if pending.similar_count > 1:
            lines.append(f"  Similar transactions: {pending.similar_count}")
        lines.append("")
        self.terminal.echo("\n".join(lines))

    def _render_batch_summary(self, pending: list[PendingClassification], pattern: str) -> None:
        first = pending[0]
        dates = [p.transaction.date for p in pending]
        total = sum((p.transaction.amount for p in pending), Decimal("0"))

        lines = [
            f"== Batch Review: {first.transaction.merchant_name} ==",
            "",
            "Summary:",
            f"  Transactions: {len(pending)}",
            f"  Total: ${total:.2f}",
            f"  Date range: {_format_date(min(dates), with_year=False)} to {_format_date(max(dates))}",
            "",
        ]
        if not first.suggested_category:
            lines.append("No category suggestion available.")
        elif first.is_new_category:
            lines.append(f"Suggested NEW category: {first.suggested_category}")
            if first.category_description:
                lines.append(f"  {first.category_description}")
        else:
            lines.append(
                f"Suggested category: {first.suggested_category} "
                f"({_format_percent(first.confidence)} confidence)"
            )
        if any(p.suggested_category != first.suggested_category for p in pending[1:]):
            lines.append("  Suggestions differ between these transactions; accepting keeps each one.")
        if pattern:
            lines.append(f"Pattern detected: {pattern}")

        if len(pending) > SAMPLE_LIMIT:
            lines.append("")
            lines.append("Sample transactions:")
            for p in pending[:SAMPLE_LIMIT]:
                lines.append(f"  - {_format_date(p.transaction.date, with_year=False)} - ${p.transaction.amount:.2f}")
            lines.append(f"  - ... and {len(pending) - SAMPLE_LIMIT} more")
        lines.append("")
        self.terminal.echo("\n".join(lines))
