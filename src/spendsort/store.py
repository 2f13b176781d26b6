"""File-backed rule store.

Rules live in ``rules.toml`` (see :mod:`spendsort.config`).  Use counts are
kept apart in ``rule-usage.json`` so that bumping a counter never rewrites
the hand-edited rule file.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

from spendsort import config
from spendsort.models import PatternRule, RuleSet, VendorRule

logger = logging.getLogger(__name__)

USAGE_FILE = "rule-usage.json"


class RuleStore:
    """Load rules and persist what the classification flow learns.

    Args:
        root: Project root containing ``rules.toml``.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.usage_path = self.root / USAGE_FILE
        self.rule_set: RuleSet | None = None
        self._lock = threading.Lock()

    def load_rule_set(self) -> RuleSet:
        """Read ``rules.toml`` with use counts from the usage ledger applied."""
        rule_set = config.load_rule_set(self.root)
        usage = self._read_usage()
        for rule in rule_set.pattern_rules:
            rule.use_count = max(rule.use_count, usage.get(rule.name, 0))
        self.rule_set = rule_set
        return rule_set

    def increment_use_count(self, rule: PatternRule) -> None:
        """Bump the rule's use count in memory and in the ledger."""
        with self._lock:
            usage = self._read_usage()
            usage[rule.name] = max(usage.get(rule.name, 0), rule.use_count) + 1
            rule.use_count = usage[rule.name]
            self.usage_path.write_text(json.dumps(usage, indent=2, sort_keys=True) + "\n", encoding="utf-8")
        logger.debug("Rule %r used %d times", rule.name, rule.use_count)

    def add_vendor_rule(self, merchant_name: str, category: str) -> None:
        """Map *merchant_name* to *category*, replacing any existing mapping."""
        with self._lock:
            rules = config.load_rule_set(self.root).vendor_rules
            rules = [r for r in rules if r.merchant_name.lower() != merchant_name.lower()]
            rules.append(VendorRule(merchant_name=merchant_name, category=category))
            config.save_vendor_rules(self.root, rules)
            if self.rule_set is not None:
                # Later merchant groups in this run see the new mapping.
                self.rule_set.vendor_rules = rules
        logger.info("Learned vendor rule: %s -> %s", merchant_name, category)

    def _read_usage(self) -> dict[str, int]:
        if not self.usage_path.exists():
            return {}
        try:
            data = json.loads(self.usage_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring unreadable %s: %s", self.usage_path, exc)
            return {}
        return {str(k): int(v) for k, v in data.items()}
