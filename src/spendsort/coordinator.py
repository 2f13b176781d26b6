"""Merchant-group orchestration for a classification run.

The coordinator groups pending transactions by merchant, asks the resolver
for each group, books the auto-accepted results, and sends the rest through
the confirmation session: the single-transaction flow for a lone item, the
batch flow otherwise.  Every finished group is handed to an optional sink
(the CSV writer in the CLI) so an interrupted run can be resumed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from spendsort.interrupt import CancellationToken
from spendsort.models import Classification, CompletionStats, Transaction
from spendsort.resolver import ClassificationResolver
from spendsort.session import ConfirmationSession

logger = logging.getLogger(__name__)

SECONDS_SAVED_PER_AUTO = 5


def format_time_saved(seconds: float) -> str:
    """Format a duration for the completion summary.

    Under a minute as whole seconds, under an hour as minutes with one
    decimal, otherwise as hours with one decimal.
    """
    if seconds < 60:
        return f"{int(seconds)} seconds"
    if seconds < 3600:
        return f"{seconds / 60:.1f} minutes"
    return f"{seconds / 3600:.1f} hours"


class BatchCoordinator:
    """Drive the resolver and the confirmation session over a run.

    Args:
        resolver: Produces pending classifications per merchant group.
        session: Interactive confirmation session.
        token: Cancellation token shared with the session.
        sink: Optional callable receiving each group's classifications, in
            input order, as soon as the group is finished.
    """

    def __init__(
        self,
        resolver: ClassificationResolver,
        session: ConfirmationSession,
        token: CancellationToken,
        sink: Callable[[list[Classification]], None] | None = None,
    ) -> None:
        self.resolver = resolver
        self.session = session
        self.token = token
        self.sink = sink
        self._total = 0
        self._processed = 0

    @staticmethod
    def group_by_merchant(transactions: list[Transaction]) -> list[list[Transaction]]:
        """Group transactions by merchant name, in first-seen order."""
        groups: dict[str, list[Transaction]] = {}
        for txn in transactions:
            groups.setdefault(txn.merchant_name, []).append(txn)
        return list(groups.values())

    def set_total_transactions(self, total: int) -> None:
        """Set the denominator shown in progress lines."""
        self._total = total

    @property
    def processed_count(self) -> int:
        return self._processed

    def run(self, transactions: list[Transaction]) -> list[Classification]:
        """Classify *transactions*, returning results in group order.

        Raises:
            ClassificationCancelled: The run was interrupted.  Groups already
                handed to the sink stay written.
            InputTerminated: Input ended mid-prompt.
            ExternalServiceError: The AI classifier or direction inferrer
                failed.
        """
        if not self._total:
            self._total = len(transactions)

        results: list[Classification] = []
        for group in self.group_by_merchant(transactions):
            self.token.raise_if_cancelled()
            results.extend(self._process_group(group))
        return results

    def get_completion_stats(self) -> CompletionStats:
        return self.session.get_completion_stats()

    def render_completion(self, stats: CompletionStats) -> str:
        """Build the end-of-run summary shown to the user."""
        if stats.total_transactions:
            auto_pct = stats.auto_classified / stats.total_transactions * 100
        else:
            auto_pct = 0.0
        saved = stats.auto_classified * SECONDS_SAVED_PER_AUTO

        lines = [
            "",
            "Classification complete!",
            f"  Total transactions: {stats.total_transactions}",
            f"  Auto-classified: {stats.auto_classified} ({auto_pct:.1f}%)",
            f"  User-classified: {stats.user_classified}",
            f"  New vendor rules: {stats.new_vendor_rules}",
            f"  Time taken: {format_time_saved(stats.duration.total_seconds())}",
        ]
        if saved:
            lines.append(f"  Time saved: ~{format_time_saved(saved)}")
        return "\n".join(lines)

    # -- internals ----------------------------------------------------------

    def _process_group(self, group: list[Transaction]) -> list[Classification]:
        merchant = group[0].merchant_name
        resolutions = self.resolver.resolve(group, self.token)

        results: list[Classification | None] = [None] * len(resolutions)
        auto: list[Classification] = []
        manual_index: list[int] = []
        for index, resolution in enumerate(resolutions):
            if resolution.auto_accept:
                classification = self.resolver.auto_classification(resolution.pending)
                results[index] = classification
                auto.append(classification)
            else:
                manual_index.append(index)

        if auto:
            self.session.record_auto_classified(auto)
            self.session.terminal.echo(
                f"Auto-classified {len(auto)} {merchant} transaction(s) as {auto[0].category}"
            )

        if manual_index:
            self.session.terminal.echo()
            self.session.terminal.echo(
                f"[{self._processed + len(auto) + 1}/{self._total}] {merchant}"
            )
            pending = [resolutions[i].pending for i in manual_index]
            if len(pending) == 1:
                confirmed = [self.session.confirm_classification(pending[0])]
            else:
                confirmed = self.session.batch_confirm_classifications(pending)
            for index, classification in zip(manual_index, confirmed):
                results[index] = classification

        self._processed += len(group)
        logger.info("Finished %s (%d/%d)", merchant, self._processed, self._total)

        if self.sink is not None:
            self.sink(results)
        return results
