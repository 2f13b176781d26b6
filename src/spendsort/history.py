"""Session-scoped record of the categories assigned per merchant.

The confirmation session appends every resolved (non-skipped) category here
and the batch prompt reads it back to detect repeated choices.  All access
goes through one lock; readers always receive copies.
"""

from __future__ import annotations

import threading

RECENT_LIMIT = 10
PATTERN_MIN_RUN = 3


class CategoryHistory:
    """Append-only per-merchant category history plus a recent-categories view."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_merchant: dict[str, list[str]] = {}
        self._recent: list[str] = []

    def record(self, merchant_name: str, category: str) -> None:
        """Append *category* to the merchant's history and the recent list."""
        with self._lock:
            self._by_merchant.setdefault(merchant_name, []).append(category)
            self._recent.insert(0, category)
            del self._recent[RECENT_LIMIT:]

    def categories_for(self, merchant_name: str) -> list[str]:
        with self._lock:
            return list(self._by_merchant.get(merchant_name, []))

    def recent_categories(self) -> list[str]:
        """The last ten assigned categories, most recent first, without repeats."""
        with self._lock:
            recent = list(self._recent)
        seen: set[str] = set()
        unique: list[str] = []
        for category in recent:
            if category not in seen:
                seen.add(category)
                unique.append(category)
        return unique

    def detect_pattern(self, merchant_name: str) -> str:
        """Describe a run of identical trailing categories for a merchant.

        Returns:
            ``"Last N were categorized as X"`` when the most recent N >= 3
            entries share category X, otherwise an empty string.
        """
        history = self.categories_for(merchant_name)
        if len(history) < PATTERN_MIN_RUN:
            return ""
        last = history[-1]
        count = 0
        for category in reversed(history):
            if category != last:
                break
            count += 1
        if count >= PATTERN_MIN_RUN:
            return f"Last {count} were categorized as {last}"
        return ""
