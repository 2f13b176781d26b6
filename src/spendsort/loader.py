"""Pending-transaction CSV loader.

Reads the CSV of deduplicated transactions awaiting classification.

Expected columns::

    id, date, description, merchant, amount

Optional columns: ``direction``, ``account``, ``type``, ``check_number``.

Dates are ISO (``2024-01-15``) or US (``01/15/2024``).  Amounts are stored
as magnitudes; a negative amount with no direction column is read as an
expense.  Rows whose content hash was already seen, or whose id is in
``skip_ids`` (already classified on an earlier run), are dropped.
"""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path

from spendsort.models import (
    DIRECTION_EXPENSE,
    DIRECTION_UNKNOWN,
    DIRECTIONS,
    Transaction,
    generate_transaction_hash,
)

logger = logging.getLogger(__name__)

EXPECTED_COLUMNS = {"id", "date", "description", "merchant", "amount"}

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y")


@dataclass
class LoadResult:
    """Transactions read from one file plus what could not be read.

    Attributes:
        transactions: Parsed transactions, in file order.
        warnings: Skipped rows and other non-fatal issues.
        errors: Problems that prevented reading the file at all.
        duplicates: Rows dropped because their hash was already seen.
        already_classified: Rows dropped because their id was in ``skip_ids``.
    """

    transactions: list[Transaction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    duplicates: int = 0
    already_classified: int = 0


def load_transactions(file_path: Path, skip_ids: set[str] | None = None) -> LoadResult:
    """Parse a pending-transactions CSV file.

    Args:
        file_path: Path to the CSV file.
        skip_ids: Transaction ids to leave out.

    Returns:
        A :class:`LoadResult`.  A file that cannot be read yields an empty
        result with ``errors`` set; malformed rows are skipped with a warning.
    """
    result = LoadResult()
    skip_ids = skip_ids or set()
    source = str(file_path)

    try:
        with open(file_path, newline="", encoding="utf-8") as f:
            reader = csv.DictReader(f)

            if reader.fieldnames is None:
                result.errors.append(f"{source}: empty file or no header row")
                return result

            actual_columns = {c.strip().lower() for c in reader.fieldnames}
            missing = EXPECTED_COLUMNS - actual_columns
            if missing:
                result.errors.append(f"{source}: missing expected columns: {', '.join(sorted(missing))}")
                return result

            rows = [{(k or "").strip().lower(): v for k, v in row.items()} for row in reader]

    except FileNotFoundError:
        result.errors.append(f"{source}: file not found")
        return result
    except OSError as exc:
        result.errors.append(f"{source}: {exc}")
        return result

    seen_hashes: set[str] = set()
    for row_ordinal, row in enumerate(rows, start=1):
        try:
            txn = _parse_row(row)
        except ValueError as exc:
            result.warnings.append(f"{source}: skipped malformed row {row_ordinal} ({exc})")
            continue

        if txn.id in skip_ids:
            result.already_classified += 1
            continue
        if txn.hash in seen_hashes:
            result.duplicates += 1
            continue
        seen_hashes.add(txn.hash)
        result.transactions.append(txn)

    logger.info(
        "Loaded %d transactions from %s (%d duplicates, %d already classified)",
        len(result.transactions),
        source,
        result.duplicates,
        result.already_classified,
    )
    return result


def _parse_date(value: str) -> date:
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"invalid date: {value!r}")


def _parse_row(row: dict) -> Transaction:
    txn_id = (row.get("id") or "").strip()
    if not txn_id:
        raise ValueError("missing id")

    date_str = (row.get("date") or "").strip()
    if not date_str:
        raise ValueError("missing date")
    txn_date = _parse_date(date_str)

    amount_str = (row.get("amount") or "").strip().replace("$", "").replace(",", "")
    if not amount_str:
        raise ValueError("missing amount")
    try:
        amount = Decimal(amount_str)
    except InvalidOperation:
        raise ValueError(f"invalid amount: {amount_str!r}") from None

    description = (row.get("description") or "").strip()
    merchant = (row.get("merchant") or "").strip() or description
    if not merchant:
        raise ValueError("missing merchant and description")

    direction = (row.get("direction") or "").strip().lower() or DIRECTION_UNKNOWN
    if direction not in DIRECTIONS:
        raise ValueError(f"invalid direction: {direction!r}")
    if direction == DIRECTION_UNKNOWN and amount < 0 and "direction" not in row:
        direction = DIRECTION_EXPENSE

    account_id = (row.get("account") or "").strip()
    magnitude = abs(amount)
    return Transaction(
        id=txn_id,
        date=txn_date,
        description=description,
        merchant_name=merchant,
        amount=magnitude,
        direction=direction,
        account_id=account_id,
        type_code=(row.get("type") or "").strip(),
        check_number=(row.get("check_number") or "").strip(),
        hash=generate_transaction_hash(txn_date, magnitude, merchant, account_id),
    )
