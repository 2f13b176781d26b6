"""Core data models for spendsort.

This module defines all dataclasses, string constants and small helpers used
throughout the classification flow.  It has zero internal imports --
everything depends on it, but it depends on nothing within the package.
"""

from __future__ import annotations

import dataclasses
import hashlib
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DIRECTION_INCOME = "income"
DIRECTION_EXPENSE = "expense"
DIRECTION_TRANSFER = "transfer"
DIRECTION_UNKNOWN = "unknown"

DIRECTIONS = (DIRECTION_INCOME, DIRECTION_EXPENSE, DIRECTION_TRANSFER, DIRECTION_UNKNOWN)

STATUS_UNCLASSIFIED = "unclassified"
STATUS_CLASSIFIED_BY_AI = "classified_by_ai"
STATUS_USER_MODIFIED = "user_modified"

SOURCE_CHECK_PATTERN = "check_pattern"
SOURCE_PATTERN_RULE = "pattern_rule"
SOURCE_VENDOR_RULE = "vendor_rule"
SOURCE_AI = "ai"

# Tie-break order between candidate sources of equal priority and confidence.
SOURCE_ORDER = {
    SOURCE_CHECK_PATTERN: 0,
    SOURCE_PATTERN_RULE: 1,
    SOURCE_VENDOR_RULE: 2,
    SOURCE_AI: 3,
}

AMOUNT_CONDITIONS = ("none", "any", "lt", "le", "eq", "ge", "gt", "range")

CHECK_TYPE_CODE = "CHECK"


def generate_transaction_hash(
    txn_date: date,
    amount: Decimal,
    merchant: str,
    account_id: str,
) -> str:
    """Generate the content hash used to detect duplicate transactions.

    The hash is the SHA-256 hex digest of the colon-delimited ISO date,
    two-decimal amount, merchant name and account id.  Two imports of the
    same bank row always produce the same hash.

    Args:
        txn_date: Transaction date.
        amount: Transaction amount (magnitude).
        merchant: Merchant name, used as-is.
        account_id: Source account identifier.

    Returns:
        A 64-character lowercase hex string.
    """
    raw = f"{txn_date.isoformat()}:{amount:.2f}:{merchant}:{account_id}"
    return hashlib.sha256(raw.encode()).hexdigest()


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Transaction:
    """A single imported financial transaction awaiting classification.

    Transactions are immutable.  The only refinement allowed before
    confirmation is the direction, which :meth:`with_direction` applies to a
    copy.

    Attributes:
        id: Identifier assigned by the upstream provider.
        date: Transaction date.
        description: Raw description from the bank.
        merchant_name: Normalized merchant name; grouping key for batches.
        amount: Non-negative magnitude of the transaction.
        direction: One of ``income``, ``expense``, ``transfer`` or
            ``unknown``.
        account_id: Source account identifier.
        type_code: Raw transaction type code from the bank, e.g. ``CHECK``.
        check_number: Check number for paper checks, or empty string.
        hash: Content hash for deduplication.
    """

    id: str
    date: date
    description: str
    merchant_name: str
    amount: Decimal
    direction: str = DIRECTION_UNKNOWN
    account_id: str = ""
    type_code: str = ""
    check_number: str = ""
    hash: str = ""

    @property
    def is_check(self) -> bool:
        return self.type_code.strip().upper() == CHECK_TYPE_CODE

    def with_direction(self, direction: str) -> Transaction:
        """Return a copy of this transaction with *direction* stamped on it."""
        if direction not in DIRECTIONS:
            raise ValueError(f"Unknown direction: {direction!r}")
        return dataclasses.replace(self, direction=direction)

    def to_context(self) -> dict:
        """Plain-dict view handed to external classifiers."""
        return {
            "merchant": self.merchant_name,
            "description": self.description,
            "amount": str(self.amount),
            "date": self.date.isoformat(),
            "direction": self.direction,
            "type": self.type_code,
        }


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


@dataclass
class PatternRule:
    """A user-defined rule matching merchant text, amount and direction.

    Attributes:
        name: Unique rule name.
        merchant_pattern: Literal merchant name, or a regular expression when
            ``is_regex`` is set.  Literal patterns match case-insensitively
            on the whole merchant name.
        category: Category assigned on match.
        confidence: Confidence in percent (0-100).
        priority: Higher priorities win over lower ones.
        is_regex: Treat ``merchant_pattern`` as a regular expression.
        amount_condition: ``none``/``any``, ``lt``, ``le``, ``eq``, ``ge``,
            ``gt`` or ``range``.
        amount_value: Comparison value for the single-value conditions.
        amount_min: Inclusive lower bound for ``range``.
        amount_max: Inclusive upper bound for ``range``.
        direction: Optional direction filter.
        use_count: Number of times this rule has matched.
        active: Inactive rules are never evaluated.
    """

    name: str
    merchant_pattern: str
    category: str
    confidence: int = 90
    priority: int = 50
    is_regex: bool = False
    amount_condition: str = "none"
    amount_value: Decimal | None = None
    amount_min: Decimal | None = None
    amount_max: Decimal | None = None
    direction: str | None = None
    use_count: int = 0
    active: bool = True


@dataclass
class CheckPattern:
    """A rule for paper-check transactions.

    A pattern with ``amounts`` matches when the check amount equals one of
    the values; otherwise ``amount_min``/``amount_max`` form an inclusive
    range.  The optional day-of-month bounds are inclusive as well.
    """

    name: str
    category: str
    amounts: list[Decimal] = field(default_factory=list)
    amount_min: Decimal | None = None
    amount_max: Decimal | None = None
    day_of_month_min: int | None = None
    day_of_month_max: int | None = None
    active: bool = True


@dataclass
class VendorRule:
    """Legacy merchant-to-category mapping without amount or direction."""

    merchant_name: str
    category: str


@dataclass
class RuleSet:
    """The active rule sources handed to the matcher."""

    pattern_rules: list[PatternRule] = field(default_factory=list)
    check_patterns: list[CheckPattern] = field(default_factory=list)
    vendor_rules: list[VendorRule] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Candidates and rankings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Candidate:
    """One category proposal from any rule source or the AI.

    Attributes:
        category: Proposed category.
        confidence: Certainty in [0, 1].
        priority: Source priority; higher wins before confidence does.
        source: One of the ``SOURCE_*`` constants.
        rule_name: Name of the rule that produced the candidate, or empty.
        order: Definition order within its source, used as final tie-break.
    """

    category: str
    confidence: float
    priority: int
    source: str
    rule_name: str = ""
    order: int = 0

    def sort_key(self) -> tuple:
        return (-self.priority, -self.confidence, SOURCE_ORDER.get(self.source, 99), self.order)


@dataclass
class CategoryRanking:
    """How likely a transaction belongs to one category."""

    category: str
    score: float
    description: str = ""
    is_new: bool = False


def rank_categories(rankings: list[CategoryRanking]) -> list[CategoryRanking]:
    """Deduplicate rankings by category and sort them by score, descending.

    When a category appears more than once, the highest score wins; a
    non-empty description and the ``is_new`` flag are carried over from
    whichever entry has them.  Equal scores sort by category name.
    """
    merged: dict[str, CategoryRanking] = {}
    for ranking in rankings:
        if not ranking.category:
            continue
        existing = merged.get(ranking.category)
        if existing is None:
            merged[ranking.category] = dataclasses.replace(ranking)
            continue
        if ranking.score > existing.score:
            existing.score = ranking.score
        if ranking.description and not existing.description:
            existing.description = ranking.description
        existing.is_new = existing.is_new and ranking.is_new
    return sorted(merged.values(), key=lambda r: (-r.score, r.category))


# ---------------------------------------------------------------------------
# External service results
# ---------------------------------------------------------------------------


@dataclass
class AISuggestion:
    """Category suggestion returned by the AI classifier."""

    category: str
    confidence: float
    is_new_category: bool = False
    category_description: str = ""
    reasoning: str = ""
    rankings: list[CategoryRanking] = field(default_factory=list)


@dataclass
class DirectionSuggestion:
    """Direction inferred for a merchant by an external service."""

    direction: str
    confidence: float
    reasoning: str = ""


# ---------------------------------------------------------------------------
# Classification flow
# ---------------------------------------------------------------------------


@dataclass
class PendingClassification:
    """A transaction (or merchant-group member) awaiting confirmation.

    Attributes:
        transaction: The transaction being classified.
        suggested_category: Top suggestion, or empty string when no rule
            and no AI produced one.
        confidence: Confidence of the top suggestion.
        is_new_category: The suggestion is not in the known taxonomy.
        category_description: Description for a new category suggestion.
        category_rankings: Deduplicated, descending list of every category
            the user can pick from.
        check_patterns: Active check patterns matching this transaction.
        suggested_direction: Direction proposal.
        direction_confidence: Certainty of ``suggested_direction``.
        direction_reasoning: Explanation from the direction inferrer.
        similar_count: Number of transactions in the merchant group.
        source: Candidate source the suggestion came from.
    """

    transaction: Transaction
    suggested_category: str = ""
    confidence: float = 0.0
    is_new_category: bool = False
    category_description: str = ""
    category_rankings: list[CategoryRanking] = field(default_factory=list)
    check_patterns: list[CheckPattern] = field(default_factory=list)
    suggested_direction: str = DIRECTION_UNKNOWN
    direction_confidence: float = 0.0
    direction_reasoning: str = ""
    similar_count: int = 0
    source: str = ""


@dataclass
class Classification:
    """The resolved outcome for one transaction.

    Use the :meth:`skipped`, :meth:`accepted` and :meth:`modified`
    constructors; they enforce the status invariants (an unclassified result
    has no category and zero confidence, a user-modified one has confidence
    1.0).
    """

    transaction: Transaction
    category: str
    status: str
    confidence: float
    classified_at: datetime = field(default_factory=datetime.now)
    is_new_category: bool = False
    category_description: str = ""

    @classmethod
    def skipped(cls, transaction: Transaction) -> Classification:
        return cls(transaction=transaction, category="", status=STATUS_UNCLASSIFIED, confidence=0.0)

    @classmethod
    def accepted(
        cls,
        transaction: Transaction,
        category: str,
        confidence: float,
        *,
        is_new_category: bool = False,
        category_description: str = "",
    ) -> Classification:
        return cls(
            transaction=transaction,
            category=category,
            status=STATUS_CLASSIFIED_BY_AI,
            confidence=confidence,
            is_new_category=is_new_category,
            category_description=category_description,
        )

    @classmethod
    def modified(
        cls,
        transaction: Transaction,
        category: str,
        *,
        is_new_category: bool = False,
        category_description: str = "",
    ) -> Classification:
        return cls(
            transaction=transaction,
            category=category,
            status=STATUS_USER_MODIFIED,
            confidence=1.0,
            is_new_category=is_new_category,
            category_description=category_description,
        )


@dataclass
class CompletionStats:
    """Session counters reported at the end of a classification run."""

    total_transactions: int = 0
    auto_classified: int = 0
    user_classified: int = 0
    new_vendor_rules: int = 0
    duration: timedelta = field(default_factory=timedelta)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class AppConfig:
    """Top-level application configuration loaded from config.toml.

    Attributes:
        output_dir: Directory for classification CSV output.
        auto_accept_threshold: Confidence at or above which a suggestion is
            applied without asking.
        direction_threshold: Direction confidence at or above which the
            direction is considered settled.
        llm_provider: LLM provider name. "anthropic" or "none".
        llm_model: Model identifier, e.g. "claude-sonnet-4-20250514".
        llm_api_key_env: Name of the environment variable containing
            the API key.
    """

    output_dir: str = "output"
    auto_accept_threshold: float = 0.95
    direction_threshold: float = 0.8
    llm_provider: str = "anthropic"
    llm_model: str = "claude-sonnet-4-20250514"
    llm_api_key_env: str = "ANTHROPIC_API_KEY"
