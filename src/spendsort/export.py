"""Classification CSV writer.

Each finished merchant group is appended to the output file as soon as the
session resolves it, so an interrupted run keeps everything confirmed so far.
:func:`read_classified_ids` returns what is already there; the loader skips
those ids on the next run.  Skipped (unclassified) transactions are not
written and come back next time.
"""

from __future__ import annotations

import csv
from pathlib import Path

from spendsort.models import STATUS_UNCLASSIFIED, Classification

# Fixed output column order.
CSV_COLUMNS = [
    "transaction_id",
    "date",
    "merchant",
    "description",
    "amount",
    "direction",
    "category",
    "status",
    "confidence",
    "is_new_category",
    "classified_at",
]


def append_classifications(output_path: str | Path, classifications: list[Classification]) -> int:
    """Append resolved classifications to *output_path*.

    The header is written when the file is new or empty.

    Args:
        output_path: Destination CSV file.  Parent directories are created.
        classifications: Results for one merchant group.

    Returns:
        The number of rows written.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    rows = [c for c in classifications if c.status != STATUS_UNCLASSIFIED]
    if not rows:
        return 0

    write_header = not output_path.exists() or output_path.stat().st_size == 0
    with open(output_path, "a", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
        if write_header:
            writer.writeheader()
        for c in rows:
            txn = c.transaction
            writer.writerow(
                {
                    "transaction_id": txn.id,
                    "date": txn.date.isoformat(),
                    "merchant": txn.merchant_name,
                    "description": txn.description,
                    "amount": str(txn.amount),
                    "direction": txn.direction,
                    "category": c.category,
                    "status": c.status,
                    "confidence": f"{c.confidence:.2f}",
                    "is_new_category": str(c.is_new_category),
                    "classified_at": c.classified_at.isoformat(timespec="seconds"),
                }
            )
    return len(rows)


def read_classified_ids(output_path: str | Path) -> set[str]:
    """Transaction ids already present in *output_path* (empty if missing)."""
    output_path = Path(output_path)
    if not output_path.exists():
        return set()
    with open(output_path, newline="", encoding="utf-8") as f:
        return {row["transaction_id"] for row in csv.DictReader(f) if row.get("transaction_id")}
