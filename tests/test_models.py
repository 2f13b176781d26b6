"""Tests for spendsort.models -- hashing, transactions, classifications, rankings."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from spendsort.models import (
    DIRECTION_INCOME,
    DIRECTION_UNKNOWN,
    STATUS_CLASSIFIED_BY_AI,
    STATUS_UNCLASSIFIED,
    STATUS_USER_MODIFIED,
    Candidate,
    CategoryRanking,
    Classification,
    generate_transaction_hash,
    rank_categories,
)


class TestGenerateTransactionHash:
    def test_deterministic(self):
        h1 = generate_transaction_hash(date(2024, 1, 15), Decimal("5.75"), "STARBUCKS", "acct")
        h2 = generate_transaction_hash(date(2024, 1, 15), Decimal("5.75"), "STARBUCKS", "acct")
        assert h1 == h2
        assert len(h1) == 64

    def test_amount_formatted_to_cents(self):
        h1 = generate_transaction_hash(date(2024, 1, 15), Decimal("5.7"), "STARBUCKS", "acct")
        h2 = generate_transaction_hash(date(2024, 1, 15), Decimal("5.70"), "STARBUCKS", "acct")
        assert h1 == h2

    def test_any_field_changes_hash(self):
        base = generate_transaction_hash(date(2024, 1, 15), Decimal("5.75"), "STARBUCKS", "acct")
        assert base != generate_transaction_hash(date(2024, 1, 16), Decimal("5.75"), "STARBUCKS", "acct")
        assert base != generate_transaction_hash(date(2024, 1, 15), Decimal("5.76"), "STARBUCKS", "acct")
        assert base != generate_transaction_hash(date(2024, 1, 15), Decimal("5.75"), "PEETS", "acct")
        assert base != generate_transaction_hash(date(2024, 1, 15), Decimal("5.75"), "STARBUCKS", "other")


class TestTransaction:
    def test_with_direction_returns_copy(self, make_txn):
        txn = make_txn(direction=DIRECTION_UNKNOWN)
        updated = txn.with_direction(DIRECTION_INCOME)
        assert updated.direction == DIRECTION_INCOME
        assert txn.direction == DIRECTION_UNKNOWN
        assert updated.id == txn.id

    def test_with_direction_rejects_unknown_value(self, make_txn):
        with pytest.raises(ValueError):
            make_txn().with_direction("sideways")

    def test_is_check_case_insensitive(self, make_txn):
        assert make_txn(type_code="check").is_check
        assert make_txn(type_code="CHECK").is_check
        assert not make_txn(type_code="DEBIT").is_check

    def test_to_context(self, make_txn):
        context = make_txn().to_context()
        assert context["merchant"] == "STARBUCKS"
        assert context["amount"] == "5.75"
        assert context["date"] == "2024-01-15"
        assert context["direction"] == "expense"


class TestClassification:
    def test_skipped_has_no_category_and_zero_confidence(self, make_txn):
        c = Classification.skipped(make_txn())
        assert c.status == STATUS_UNCLASSIFIED
        assert c.category == ""
        assert c.confidence == 0.0

    def test_accepted_keeps_confidence(self, make_txn):
        c = Classification.accepted(make_txn(), "Food & Dining", 0.82)
        assert c.status == STATUS_CLASSIFIED_BY_AI
        assert c.confidence == 0.82

    def test_modified_is_full_confidence(self, make_txn):
        c = Classification.modified(make_txn(), "Shopping", is_new_category=True, category_description="x")
        assert c.status == STATUS_USER_MODIFIED
        assert c.confidence == 1.0
        assert c.is_new_category
        assert c.category_description == "x"


class TestCandidateSortKey:
    def test_priority_then_confidence_then_source(self):
        low = Candidate("A", 0.99, 10, "pattern_rule")
        high = Candidate("B", 0.50, 100, "pattern_rule")
        vendor = Candidate("C", 0.50, 100, "vendor_rule")
        ordered = sorted([vendor, low, high], key=Candidate.sort_key)
        assert [c.category for c in ordered] == ["B", "C", "A"]


class TestRankCategories:
    def test_dedup_keeps_highest_score(self):
        ranked = rank_categories(
            [
                CategoryRanking("Shopping", 0.2),
                CategoryRanking("Shopping", 0.6, description="Retail"),
                CategoryRanking("Travel", 0.4),
            ]
        )
        assert [r.category for r in ranked] == ["Shopping", "Travel"]
        assert ranked[0].score == 0.6
        assert ranked[0].description == "Retail"

    def test_equal_scores_sort_by_name(self):
        ranked = rank_categories([CategoryRanking("Zoo", 0.0), CategoryRanking("Art", 0.0)])
        assert [r.category for r in ranked] == ["Art", "Zoo"]

    def test_known_entry_clears_new_flag(self):
        ranked = rank_categories(
            [CategoryRanking("Pets", 0.8, is_new=True), CategoryRanking("Pets", 0.0)]
        )
        assert ranked[0].is_new is False

    def test_empty_category_dropped(self):
        assert rank_categories([CategoryRanking("", 0.9)]) == []
