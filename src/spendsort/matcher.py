"""Rule matching: check patterns, pattern rules and legacy vendor rules.

The matcher evaluates every rule source against one transaction and returns
a single list of :class:`~spendsort.models.Candidate` objects, ordered so the
first element is the best proposal:

1. **Check patterns** -- only for check-typed transactions.  Every match
   surfaces as its own candidate.
2. **Pattern rules** -- merchant literal or regex, amount condition and
   optional direction filter.  Highest priority wins, then highest
   confidence, then the rule defined first.
3. **Vendor rules** -- exact merchant equality, one low-priority,
   low-confidence candidate.

Depends on ``models.py`` and ``errors.py`` only.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from decimal import Decimal

from spendsort.errors import RuleEvaluationError
from spendsort.models import (
    SOURCE_CHECK_PATTERN,
    SOURCE_PATTERN_RULE,
    SOURCE_VENDOR_RULE,
    Candidate,
    CheckPattern,
    PatternRule,
    RuleSet,
    Transaction,
    VendorRule,
)

logger = logging.getLogger(__name__)

CHECK_PATTERN_PRIORITY = 1000
CHECK_PATTERN_CONFIDENCE = 1.0
VENDOR_RULE_PRIORITY = 0
VENDOR_RULE_CONFIDENCE = 0.7

_CENT = Decimal("0.01")


def _cents(value: Decimal) -> Decimal:
    return Decimal(value).quantize(_CENT)


# ---------------------------------------------------------------------------
# Check patterns
# ---------------------------------------------------------------------------


def check_pattern_matches(pattern: CheckPattern, txn: Transaction) -> bool:
    """Return True if *pattern* applies to the check transaction *txn*.

    Exact amounts compare at cent precision.  When the pattern lists no
    exact amounts, ``amount_min``/``amount_max`` bound an inclusive range
    (either side may be open).  Day-of-month bounds are inclusive.
    """
    if not pattern.active or not txn.is_check:
        return False

    amount = _cents(txn.amount)
    if pattern.amounts:
        if amount not in {_cents(a) for a in pattern.amounts}:
            return False
    else:
        if pattern.amount_min is not None and amount < _cents(pattern.amount_min):
            return False
        if pattern.amount_max is not None and amount > _cents(pattern.amount_max):
            return False

    day = txn.date.day
    if pattern.day_of_month_min is not None and day < pattern.day_of_month_min:
        return False
    if pattern.day_of_month_max is not None and day > pattern.day_of_month_max:
        return False
    return True


def matching_check_patterns(patterns: list[CheckPattern], txn: Transaction) -> list[CheckPattern]:
    """All active check patterns matching *txn*, in definition order."""
    return [p for p in patterns if check_pattern_matches(p, txn)]


# ---------------------------------------------------------------------------
# Pattern rules
# ---------------------------------------------------------------------------


def amount_condition_holds(rule: PatternRule, amount: Decimal) -> bool:
    """Evaluate the rule's amount condition.  ``lt``/``gt`` are strict."""
    condition = (rule.amount_condition or "none").lower()
    if condition in ("none", "any"):
        return True
    if condition == "range":
        if rule.amount_min is not None and amount < rule.amount_min:
            return False
        if rule.amount_max is not None and amount > rule.amount_max:
            return False
        return True

    if rule.amount_value is None:
        raise RuleEvaluationError(rule.name, f"condition {condition!r} needs an amount value")
    value = rule.amount_value
    if condition == "lt":
        return amount < value
    if condition == "le":
        return amount <= value
    if condition == "eq":
        return _cents(amount) == _cents(value)
    if condition == "ge":
        return amount >= value
    if condition == "gt":
        return amount > value
    raise RuleEvaluationError(rule.name, f"unknown amount condition {condition!r}")


class RuleMatcher:
    """Evaluate a :class:`~spendsort.models.RuleSet` against transactions.

    Regular expressions are compiled on first use and cached per pattern
    string.  A pattern that fails to compile is remembered as broken and the
    rule is skipped on every evaluation.

    Args:
        rule_set: The active rules.  The matcher never mutates them.
        on_match: Optional callback receiving the winning
            :class:`PatternRule`, used to bump its use count.  Errors raised
            by the callback are logged and ignored.
    """

    def __init__(
        self,
        rule_set: RuleSet,
        on_match: Callable[[PatternRule], None] | None = None,
    ) -> None:
        self.rule_set = rule_set
        self.on_match = on_match
        self._regex_cache: dict[str, re.Pattern | None] = {}

    def match(self, txn: Transaction) -> list[Candidate]:
        """Return every candidate for *txn*, best first."""
        candidates: list[Candidate] = []

        for order, pattern in enumerate(matching_check_patterns(self.rule_set.check_patterns, txn)):
            candidates.append(
                Candidate(
                    category=pattern.category,
                    confidence=CHECK_PATTERN_CONFIDENCE,
                    priority=CHECK_PATTERN_PRIORITY,
                    source=SOURCE_CHECK_PATTERN,
                    rule_name=pattern.name,
                    order=order,
                )
            )

        matched_rules = self.match_pattern_rules(txn)
        for order, rule in enumerate(matched_rules):
            candidates.append(
                Candidate(
                    category=rule.category,
                    confidence=rule.confidence / 100.0,
                    priority=rule.priority,
                    source=SOURCE_PATTERN_RULE,
                    rule_name=rule.name,
                    order=order,
                )
            )

        vendor = self.match_vendor_rule(txn)
        if vendor is not None:
            candidates.append(
                Candidate(
                    category=vendor.category,
                    confidence=VENDOR_RULE_CONFIDENCE,
                    priority=VENDOR_RULE_PRIORITY,
                    source=SOURCE_VENDOR_RULE,
                    rule_name=vendor.merchant_name,
                )
            )

        candidates.sort(key=Candidate.sort_key)

        if matched_rules and self.on_match is not None:
            self._record_use(matched_rules[0])
        return candidates

    def match_pattern_rules(self, txn: Transaction) -> list[PatternRule]:
        """Return the matching active pattern rules, best first.

        Order: priority descending, then confidence descending, then
        definition order (the rule defined first wins a full tie).
        """
        matches: list[tuple[int, PatternRule]] = []
        for index, rule in enumerate(self.rule_set.pattern_rules):
            if not rule.active:
                continue
            try:
                if self._rule_matches(rule, txn):
                    matches.append((index, rule))
            except RuleEvaluationError as exc:
                logger.debug("Skipping rule: %s", exc)
        matches.sort(key=lambda item: (-item[1].priority, -item[1].confidence, item[0]))
        return [rule for _, rule in matches]

    def match_vendor_rule(self, txn: Transaction) -> VendorRule | None:
        """Return the first vendor rule naming this merchant, or None."""
        merchant = txn.merchant_name.strip().lower()
        if not merchant:
            return None
        for vendor in self.rule_set.vendor_rules:
            if vendor.merchant_name.strip().lower() == merchant:
                return vendor
        return None

    # -- internals ----------------------------------------------------------

    def _rule_matches(self, rule: PatternRule, txn: Transaction) -> bool:
        if not self._merchant_matches(rule, txn):
            return False
        if not amount_condition_holds(rule, txn.amount):
            return False
        if rule.direction and txn.direction != rule.direction:
            return False
        return True

    def _merchant_matches(self, rule: PatternRule, txn: Transaction) -> bool:
        merchant = txn.merchant_name or txn.description
        if not rule.merchant_pattern:
            return True
        if rule.is_regex:
            return self._compile(rule).search(merchant) is not None
        return rule.merchant_pattern.strip().lower() == merchant.strip().lower()

    def _compile(self, rule: PatternRule) -> re.Pattern:
        key = rule.merchant_pattern
        if key not in self._regex_cache:
            try:
                self._regex_cache[key] = re.compile(key, re.IGNORECASE)
            except re.error as exc:
                self._regex_cache[key] = None
                logger.warning("Invalid regex in rule %r: %s", rule.name, exc)
        compiled = self._regex_cache[key]
        if compiled is None:
            raise RuleEvaluationError(rule.name, f"invalid regex {key!r}")
        return compiled

    def _record_use(self, rule: PatternRule) -> None:
        try:
            self.on_match(rule)
        except Exception as exc:
            logger.warning("Failed to record use of rule %r: %s", rule.name, exc)
