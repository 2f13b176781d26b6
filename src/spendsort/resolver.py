"""Classification resolution: merge rule candidates with the AI suggestion.

For one merchant group the resolver:

1. settles each transaction's direction (known from ingestion, inferred by
   the direction inferrer, or left for the user to confirm);
2. runs the :class:`~spendsort.matcher.RuleMatcher` on every transaction;
3. consults the AI classifier once for the group, but only when some
   transaction has no rule candidate at or above the acceptance threshold;
4. picks the top suggestion, builds the full ranked category list, and
   decides whether the result can be applied without asking.

The AI classifier and direction inferrer are external collaborators
described by the protocols below; ``llm.py`` provides implementations.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Protocol

from spendsort.errors import ExternalServiceError
from spendsort.interrupt import CancellationToken
from spendsort.matcher import RuleMatcher, matching_check_patterns
from spendsort.models import (
    DIRECTION_UNKNOWN,
    SOURCE_AI,
    AISuggestion,
    Candidate,
    CategoryRanking,
    Classification,
    DirectionSuggestion,
    PendingClassification,
    Transaction,
    rank_categories,
)

logger = logging.getLogger(__name__)

DEFAULT_AUTO_ACCEPT_THRESHOLD = 0.95
DEFAULT_DIRECTION_THRESHOLD = 0.8


# ---------------------------------------------------------------------------
# External collaborator protocols
# ---------------------------------------------------------------------------


class CategorySuggester(Protocol):
    """Protocol for the AI category classifier.

    ``AnthropicAdapter`` in ``llm.py`` is the primary implementation; tests
    use a mock.
    """

    def suggest_category(
        self,
        transaction: dict,
        count: int,
        categories: list[dict],
    ) -> AISuggestion | None:
        """Suggest a category for a merchant group.

        Args:
            transaction: Sample transaction as a plain dict.
            count: Number of transactions in the group.
            categories: Known taxonomy as ``{"name", "description"}`` dicts.

        Returns:
            The suggestion, or ``None`` when the classifier has nothing to
            offer.  Failures raise ``ExternalServiceError``.
        """
        ...


class DirectionInferrer(Protocol):
    """Protocol for direction inference (income, expense or transfer)."""

    def infer_direction(self, merchant: str, sample: dict, count: int) -> DirectionSuggestion:
        ...


class VendorRuleStore(Protocol):
    """Protocol for persisting merchant-to-category rules taught in a session."""

    def add_vendor_rule(self, merchant: str, category: str) -> None:
        ...


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


@dataclass
class Resolution:
    """Resolver output for one transaction.

    Attributes:
        pending: Everything the confirmation prompt needs.
        auto_accept: True when the suggestion may be applied without asking.
    """

    pending: PendingClassification
    auto_accept: bool = False


class ClassificationResolver:
    """Turn matcher output and AI suggestions into pending classifications.

    Args:
        matcher: Rule matcher over the active rule set.
        categories: Known taxonomy as ``{"name", "description"}`` dicts.
        ai_classifier: Optional AI classifier; ``None`` disables the fallback.
        direction_inferrer: Optional direction inferrer.
        auto_accept_threshold: Confidence at or above which a suggestion is
            applied without confirmation.
        direction_threshold: Direction confidence at or above which the
            direction counts as settled.
    """

    def __init__(
        self,
        matcher: RuleMatcher,
        categories: list[dict],
        ai_classifier: CategorySuggester | None = None,
        direction_inferrer: DirectionInferrer | None = None,
        auto_accept_threshold: float = DEFAULT_AUTO_ACCEPT_THRESHOLD,
        direction_threshold: float = DEFAULT_DIRECTION_THRESHOLD,
    ) -> None:
        self.matcher = matcher
        self.categories = categories
        self.ai_classifier = ai_classifier
        self.direction_inferrer = direction_inferrer
        self.auto_accept_threshold = auto_accept_threshold
        self.direction_threshold = direction_threshold
        self._known = {c["name"] for c in categories}

    def resolve(self, transactions: list[Transaction], token: CancellationToken) -> list[Resolution]:
        """Resolve one merchant group, one :class:`Resolution` per transaction.

        Raises:
            ClassificationCancelled: The token was cancelled before an
                external call.
            ExternalServiceError: The AI classifier or direction inferrer
                failed.
        """
        if not transactions:
            return []

        directions = self._resolve_directions(transactions, token)
        stamped: list[Transaction] = []
        for txn, (direction, confidence, _) in zip(transactions, directions):
            if txn.direction == DIRECTION_UNKNOWN and confidence >= self.direction_threshold:
                txn = txn.with_direction(direction)
            stamped.append(txn)

        all_candidates = [self.matcher.match(txn) for txn in stamped]
        needs_ai = any(
            not candidates or candidates[0].confidence < self.auto_accept_threshold
            for candidates in all_candidates
        )
        suggestion = self._suggest(stamped, token) if needs_ai else None

        resolutions: list[Resolution] = []
        for txn, candidates, (direction, dir_confidence, dir_reasoning) in zip(
            stamped, all_candidates, directions
        ):
            pending = self._build_pending(txn, candidates, suggestion, len(stamped))
            pending.suggested_direction = direction
            pending.direction_confidence = dir_confidence
            pending.direction_reasoning = dir_reasoning
            resolutions.append(Resolution(pending=pending, auto_accept=self._auto_acceptable(pending)))

        top = resolutions[0].pending
        logger.info(
            "Resolved %s (%d txn): %s at %.2f via %s",
            top.transaction.merchant_name,
            len(resolutions),
            top.suggested_category or "<none>",
            top.confidence,
            top.source or "nothing",
        )
        return resolutions

    def add_category(self, name: str, description: str = "") -> None:
        """Make a category created during the session known to later groups."""
        if name in self._known:
            return
        self.categories.append({"name": name, "description": description})
        self._known.add(name)

    def auto_classification(self, pending: PendingClassification) -> Classification:
        """The classification applied for an auto-acceptable suggestion."""
        return Classification.accepted(
            pending.transaction,
            pending.suggested_category,
            pending.confidence,
            is_new_category=pending.is_new_category,
            category_description=pending.category_description,
        )

    # -- internals ----------------------------------------------------------

    def _auto_acceptable(self, pending: PendingClassification) -> bool:
        # Creating a category always needs a human.
        return (
            bool(pending.suggested_category)
            and not pending.is_new_category
            and pending.confidence >= self.auto_accept_threshold
            and pending.direction_confidence >= self.direction_threshold
        )

    def _resolve_directions(
        self,
        transactions: list[Transaction],
        token: CancellationToken,
    ) -> list[tuple[str, float, str]]:
        inferred: tuple[str, float, str] = (DIRECTION_UNKNOWN, 0.0, "")
        if self.direction_inferrer is not None and any(
            t.direction == DIRECTION_UNKNOWN for t in transactions
        ):
            sample = transactions[0]
            token.raise_if_cancelled()
            try:
                result = self.direction_inferrer.infer_direction(
                    sample.merchant_name, sample.to_context(), len(transactions)
                )
            except ExternalServiceError:
                raise
            except Exception as exc:
                raise ExternalServiceError(f"Direction inference failed: {exc}") from exc
            inferred = (result.direction, result.confidence, result.reasoning)

        directions: list[tuple[str, float, str]] = []
        for txn in transactions:
            if txn.direction != DIRECTION_UNKNOWN:
                directions.append((txn.direction, 1.0, ""))
            else:
                directions.append(inferred)
        return directions

    def _suggest(self, transactions: list[Transaction], token: CancellationToken) -> AISuggestion | None:
        if self.ai_classifier is None:
            return None
        token.raise_if_cancelled()
        sample = transactions[0]
        try:
            return self.ai_classifier.suggest_category(
                sample.to_context(), len(transactions), self.categories
            )
        except ExternalServiceError:
            raise
        except Exception as exc:
            raise ExternalServiceError(f"AI classification failed: {exc}") from exc

    def _build_pending(
        self,
        txn: Transaction,
        candidates: list[Candidate],
        suggestion: AISuggestion | None,
        similar_count: int,
    ) -> PendingClassification:
        pending = PendingClassification(transaction=txn, similar_count=similar_count)
        best = candidates[0] if candidates else None

        use_ai = suggestion is not None and (
            best is None
            or (best.confidence < self.auto_accept_threshold and suggestion.confidence > best.confidence)
        )
        if use_ai:
            pending.suggested_category = suggestion.category
            pending.confidence = suggestion.confidence
            pending.is_new_category = suggestion.is_new_category and suggestion.category not in self._known
            if pending.is_new_category:
                pending.category_description = suggestion.category_description
            pending.source = SOURCE_AI
        elif best is not None:
            pending.suggested_category = best.category
            pending.confidence = best.confidence
            pending.source = best.source

        rankings = [
            CategoryRanking(category=c.category, score=c.confidence) for c in candidates
        ]
        if suggestion is not None:
            rankings.extend(
                dataclasses.replace(r, is_new=r.category not in self._known)
                for r in suggestion.rankings
            )
            rankings.append(
                CategoryRanking(
                    category=suggestion.category,
                    score=suggestion.confidence,
                    description=suggestion.category_description,
                    is_new=suggestion.category not in self._known,
                )
            )
        rankings.extend(
            CategoryRanking(category=c["name"], score=0.0, description=c.get("description", ""))
            for c in self.categories
        )
        pending.category_rankings = rank_categories(rankings)
        pending.check_patterns = matching_check_patterns(self.matcher.rule_set.check_patterns, txn)
        return pending
