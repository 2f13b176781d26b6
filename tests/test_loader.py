"""Tests for spendsort.loader -- pending-transaction CSV parsing."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path

from spendsort.loader import load_transactions
from spendsort.models import DIRECTION_EXPENSE, DIRECTION_INCOME, DIRECTION_UNKNOWN

HEADER = "id,date,description,merchant,amount,direction,account\n"


def _write(tmp_path: Path, content: str, name: str = "pending.csv") -> Path:
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return path


class TestLoadTransactions:
    """Tests for load_transactions."""

    def test_parses_rows(self, tmp_path: Path):
        """Fields are typed and kept in file order."""
        path = _write(
            tmp_path,
            HEADER
            + "t1,2024-01-15,STARBUCKS STORE 1234,STARBUCKS,5.75,expense,checking\n"
            + "t2,01/31/2024,PAYROLL,ACME CORP,\"$2,500.00\",income,checking\n",
        )
        result = load_transactions(path)

        assert result.errors == []
        assert result.warnings == []
        first, second = result.transactions
        assert first.id == "t1"
        assert first.date == date(2024, 1, 15)
        assert first.merchant_name == "STARBUCKS"
        assert first.amount == Decimal("5.75")
        assert first.direction == DIRECTION_EXPENSE
        assert first.hash
        assert second.date == date(2024, 1, 31)
        assert second.amount == Decimal("2500.00")
        assert second.direction == DIRECTION_INCOME

    def test_negative_amount_without_direction_column(self, tmp_path: Path):
        """A signed amount implies an expense when no direction is given."""
        path = _write(tmp_path, "id,date,description,merchant,amount\nt1,2024-01-15,X,SHELL,-40.00\n")
        [txn] = load_transactions(path).transactions
        assert txn.amount == Decimal("40.00")
        assert txn.direction == DIRECTION_EXPENSE

    def test_blank_direction_is_unknown(self, tmp_path: Path):
        """An empty direction cell stays unknown."""
        path = _write(tmp_path, HEADER + "t1,2024-01-15,X,VENMO,-40.00,,checking\n")
        [txn] = load_transactions(path).transactions
        assert txn.direction == DIRECTION_UNKNOWN

    def test_merchant_falls_back_to_description(self, tmp_path: Path):
        """Rows with no merchant use the description."""
        path = _write(tmp_path, HEADER + "t1,2024-01-15,CHECK 1042,,250.00,expense,checking\n")
        [txn] = load_transactions(path).transactions
        assert txn.merchant_name == "CHECK 1042"

    def test_malformed_rows_skipped_with_warning(self, tmp_path: Path):
        """Bad dates, amounts and directions are skipped, not fatal."""
        path = _write(
            tmp_path,
            HEADER
            + "t1,2024-13-45,X,A,1.00,expense,\n"
            + "t2,2024-01-15,X,B,abc,expense,\n"
            + "t3,2024-01-15,X,C,1.00,sideways,\n"
            + "t4,2024-01-15,X,D,1.00,expense,\n",
        )
        result = load_transactions(path)
        assert [t.id for t in result.transactions] == ["t4"]
        assert len(result.warnings) == 3
        assert "row 1" in result.warnings[0]
        assert "invalid amount" in result.warnings[1]
        assert "invalid direction" in result.warnings[2]

    def test_duplicates_dropped(self, tmp_path: Path):
        """Rows with the same content hash are loaded once."""
        row = "2024-01-15,X,STARBUCKS,5.75,expense,checking\n"
        path = _write(tmp_path, HEADER + "t1," + row + "t2," + row)
        result = load_transactions(path)
        assert [t.id for t in result.transactions] == ["t1"]
        assert result.duplicates == 1

    def test_skip_ids(self, tmp_path: Path):
        """Already-classified ids are left out and counted."""
        path = _write(
            tmp_path,
            HEADER
            + "t1,2024-01-15,X,A,1.00,expense,\n"
            + "t2,2024-01-16,X,B,2.00,expense,\n",
        )
        result = load_transactions(path, skip_ids={"t1"})
        assert [t.id for t in result.transactions] == ["t2"]
        assert result.already_classified == 1

    def test_missing_columns(self, tmp_path: Path):
        """A file without the required columns is an error."""
        path = _write(tmp_path, "id,date,amount\nt1,2024-01-15,1.00\n")
        result = load_transactions(path)
        assert result.transactions == []
        assert "description, merchant" in result.errors[0]

    def test_header_case_and_whitespace_ignored(self, tmp_path: Path):
        """Column names are matched case-insensitively."""
        path = _write(tmp_path, " ID , Date ,Description,MERCHANT,Amount\nt1,2024-01-15,X,A,1.00\n")
        assert len(load_transactions(path).transactions) == 1

    def test_empty_file(self, tmp_path: Path):
        """An empty file is an error."""
        result = load_transactions(_write(tmp_path, ""))
        assert "no header row" in result.errors[0]

    def test_missing_file(self, tmp_path: Path):
        """A missing file is an error."""
        result = load_transactions(tmp_path / "nope.csv")
        assert "file not found" in result.errors[0]
