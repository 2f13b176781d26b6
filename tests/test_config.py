"""Tests for spendsort.config -- loading, saving, and initialization."""

from decimal import Decimal
from pathlib import Path

import pytest

from spendsort.config import (
    add_category,
    initialize,
    load_categories,
    load_config,
    load_rule_set,
    save_vendor_rules,
)
from spendsort.models import AppConfig, VendorRule

RULES_TOML = """\
# Hand-written rules

[[pattern_rules]]
name = "Coffee"
merchant_pattern = "STARBUCKS|PEETS"
is_regex = true
category = "Food & Dining"
confidence = 95
priority = 100
amount_condition = "lt"
amount_value = "20.00"
direction = "expense"

[[pattern_rules]]
name = "Amazon"
merchant_pattern = "AMAZON"
category = "Shopping"

[[check_patterns]]
name = "Cleaner"
category = "Home Services"
amounts = ["100.00", 200]
day_of_month_min = 1
day_of_month_max = 10

[vendor_rules]
"KING SOOPERS" = "Food & Dining"
"""


# ---------------------------------------------------------------------------
# load_config
# ---------------------------------------------------------------------------


class TestLoadConfig:
    """Tests for loading config.toml into an AppConfig."""

    def test_loads_default_config(self, tmp_path: Path):
        """Default config.toml produced by initialize() is loadable."""
        initialize(tmp_path)
        config = load_config(tmp_path)

        assert isinstance(config, AppConfig)
        assert config.output_dir == "output"
        assert config.auto_accept_threshold == 0.95
        assert config.direction_threshold == 0.8
        assert config.llm_provider == "anthropic"
        assert config.llm_api_key_env == "ANTHROPIC_API_KEY"

    def test_missing_sections_use_defaults(self, tmp_path: Path):
        """An empty config.toml falls back to defaults."""
        (tmp_path / "config.toml").write_text("", encoding="utf-8")
        config = load_config(tmp_path)
        assert config == AppConfig()

    def test_custom_thresholds(self, tmp_path: Path):
        """Thresholds are read from the [classification] table."""
        (tmp_path / "config.toml").write_text(
            "[classification]\nauto_accept_threshold = 0.9\ndirection_threshold = 0.7\n",
            encoding="utf-8",
        )
        config = load_config(tmp_path)
        assert config.auto_accept_threshold == 0.9
        assert config.direction_threshold == 0.7

    def test_threshold_out_of_range(self, tmp_path: Path):
        """Thresholds outside [0, 1] are rejected."""
        (tmp_path / "config.toml").write_text(
            "[classification]\nauto_accept_threshold = 95\n", encoding="utf-8"
        )
        with pytest.raises(ValueError, match="auto_accept_threshold"):
            load_config(tmp_path)

    def test_missing_config_raises(self, tmp_path: Path):
        """FileNotFoundError when config.toml is absent."""
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


class TestCategories:
    """Tests for categories.toml loading and appending."""

    def test_loads_default_categories(self, tmp_path: Path):
        """Default taxonomy has names and descriptions in file order."""
        initialize(tmp_path)
        categories = load_categories(tmp_path)
        assert categories[0] == {"name": "Housing", "description": "Rent, mortgage and HOA payments"}
        assert "Home Services" in [c["name"] for c in categories]

    def test_add_category(self, tmp_path: Path):
        """A new category is appended and readable."""
        initialize(tmp_path)
        assert add_category(tmp_path, "Pet Care", "Vets and grooming") is True
        categories = load_categories(tmp_path)
        assert categories[-1] == {"name": "Pet Care", "description": "Vets and grooming"}

    def test_add_existing_category_is_noop(self, tmp_path: Path):
        """Adding an existing category (any case) leaves the file alone."""
        initialize(tmp_path)
        before = (tmp_path / "categories.toml").read_text(encoding="utf-8")
        assert add_category(tmp_path, "shopping") is False
        assert (tmp_path / "categories.toml").read_text(encoding="utf-8") == before


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


class TestLoadRuleSet:
    """Tests for loading rules.toml."""

    def test_default_rules_empty(self, tmp_path: Path):
        """The default rules.toml has no active rules."""
        initialize(tmp_path)
        rule_set = load_rule_set(tmp_path)
        assert rule_set.pattern_rules == []
        assert rule_set.check_patterns == []
        assert rule_set.vendor_rules == []

    def test_pattern_rules(self, tmp_path: Path):
        """Pattern rules keep file order and typed fields."""
        (tmp_path / "rules.toml").write_text(RULES_TOML, encoding="utf-8")
        rules = load_rule_set(tmp_path).pattern_rules

        assert [r.name for r in rules] == ["Coffee", "Amazon"]
        coffee = rules[0]
        assert coffee.is_regex
        assert coffee.confidence == 95
        assert coffee.priority == 100
        assert coffee.amount_condition == "lt"
        assert coffee.amount_value == Decimal("20.00")
        assert coffee.direction == "expense"

        amazon = rules[1]
        assert amazon.confidence == 90
        assert amazon.priority == 50
        assert amazon.amount_condition == "none"
        assert not amazon.is_regex

    def test_check_patterns(self, tmp_path: Path):
        """Check pattern amounts become Decimals."""
        (tmp_path / "rules.toml").write_text(RULES_TOML, encoding="utf-8")
        [pattern] = load_rule_set(tmp_path).check_patterns
        assert pattern.amounts == [Decimal("100.00"), Decimal("200")]
        assert pattern.day_of_month_max == 10

    def test_vendor_rules(self, tmp_path: Path):
        """Vendor rules map merchants to categories."""
        (tmp_path / "rules.toml").write_text(RULES_TOML, encoding="utf-8")
        assert load_rule_set(tmp_path).vendor_rules == [VendorRule("KING SOOPERS", "Food & Dining")]

    def test_unknown_condition_rejected(self, tmp_path: Path):
        """An unknown amount_condition is a configuration error."""
        (tmp_path / "rules.toml").write_text(
            '[[pattern_rules]]\nname = "x"\nmerchant_pattern = "X"\ncategory = "Y"\namount_condition = "between"\n',
            encoding="utf-8",
        )
        with pytest.raises(ValueError, match="amount_condition"):
            load_rule_set(tmp_path)

    def test_missing_key_rejected(self, tmp_path: Path):
        """A pattern rule without a category is a configuration error."""
        (tmp_path / "rules.toml").write_text(
            '[[pattern_rules]]\nname = "x"\nmerchant_pattern = "X"\n', encoding="utf-8"
        )
        with pytest.raises(ValueError, match="category"):
            load_rule_set(tmp_path)


class TestSaveVendorRules:
    """Tests for rewriting the [vendor_rules] section."""

    def test_preserves_everything_above(self, tmp_path: Path):
        """Pattern rules and check patterns survive verbatim."""
        (tmp_path / "rules.toml").write_text(RULES_TOML, encoding="utf-8")
        save_vendor_rules(tmp_path, [VendorRule("TARGET", "Shopping")])

        text = (tmp_path / "rules.toml").read_text(encoding="utf-8")
        assert text.startswith(RULES_TOML.split("[vendor_rules]")[0])
        rule_set = load_rule_set(tmp_path)
        assert len(rule_set.pattern_rules) == 2
        assert rule_set.vendor_rules == [VendorRule("TARGET", "Shopping")]

    def test_appends_section_when_missing(self, tmp_path: Path):
        """A file without [vendor_rules] gets one at the end."""
        (tmp_path / "rules.toml").write_text("# nothing yet\n", encoding="utf-8")
        save_vendor_rules(tmp_path, [VendorRule('JOE\'S "DINER"', "Food & Dining")])
        assert load_rule_set(tmp_path).vendor_rules == [VendorRule('JOE\'S "DINER"', "Food & Dining")]

    def test_empty_list_clears_section(self, tmp_path: Path):
        """Saving no rules leaves an empty section."""
        (tmp_path / "rules.toml").write_text(RULES_TOML, encoding="utf-8")
        save_vendor_rules(tmp_path, [])
        assert load_rule_set(tmp_path).vendor_rules == []


# ---------------------------------------------------------------------------
# initialize
# ---------------------------------------------------------------------------


class TestInitialize:
    """Tests for project initialization."""

    def test_creates_structure(self, tmp_path: Path):
        """Directories and config files are created."""
        initialize(tmp_path / "new")
        for name in ("input", "output"):
            assert (tmp_path / "new" / name).is_dir()
        for name in ("config.toml", "categories.toml", "rules.toml"):
            assert (tmp_path / "new" / name).is_file()

    def test_idempotent_does_not_overwrite(self, tmp_path: Path):
        """Existing files are left untouched."""
        (tmp_path / "config.toml").write_text("# mine\n", encoding="utf-8")
        initialize(tmp_path)
        assert (tmp_path / "config.toml").read_text(encoding="utf-8") == "# mine\n"
