"""Shared pytest fixtures for spendsort tests.

Provides reusable fixtures for:
- make_txn: build a Transaction with sensible defaults.
- token: a fresh CancellationToken.
- make_session: a ConfirmationSession fed scripted answers from a string,
  returning the session and the captured output stream.
- project_dir: a temporary directory initialized with default config files.
"""

from __future__ import annotations

import io
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from spendsort.config import initialize
from spendsort.interrupt import CancellationToken
from spendsort.models import (
    DIRECTION_EXPENSE,
    CategoryRanking,
    PendingClassification,
    Transaction,
    generate_transaction_hash,
)
from spendsort.session import ConfirmationSession
from spendsort.terminal import Terminal

# ---------------------------------------------------------------------------
# Transaction helpers
# ---------------------------------------------------------------------------


def build_txn(
    merchant: str = "STARBUCKS",
    amount: str = "5.75",
    txn_date: date = date(2024, 1, 15),
    direction: str = DIRECTION_EXPENSE,
    txn_id: str | None = None,
    type_code: str = "",
    description: str | None = None,
    account_id: str = "checking",
) -> Transaction:
    """Build a Transaction with a deterministic id and hash."""
    value = Decimal(amount)
    return Transaction(
        id=txn_id or f"{merchant}-{txn_date.isoformat()}-{amount}",
        date=txn_date,
        description=description if description is not None else merchant,
        merchant_name=merchant,
        amount=value,
        direction=direction,
        account_id=account_id,
        type_code=type_code,
        hash=generate_transaction_hash(txn_date, value, merchant, account_id),
    )


def build_pending(
    txn: Transaction | None = None,
    category: str = "Food & Dining",
    confidence: float = 0.95,
    rankings: list[CategoryRanking] | None = None,
    **kwargs,
) -> PendingClassification:
    """Build a PendingClassification whose direction is already settled."""
    txn = txn or build_txn()
    if rankings is None:
        rankings = [
            CategoryRanking(category=category, score=confidence),
            CategoryRanking(category="Shopping", score=0.0),
            CategoryRanking(category="Travel", score=0.0),
        ]
    kwargs.setdefault("suggested_direction", txn.direction)
    kwargs.setdefault("direction_confidence", 1.0)
    return PendingClassification(
        transaction=txn,
        suggested_category=category,
        confidence=confidence,
        category_rankings=rankings,
        **kwargs,
    )


@pytest.fixture
def make_txn():
    """Factory fixture for Transaction objects."""
    return build_txn


@pytest.fixture
def make_pending():
    """Factory fixture for PendingClassification objects."""
    return build_pending


# ---------------------------------------------------------------------------
# Session fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def token() -> CancellationToken:
    return CancellationToken()


@pytest.fixture
def make_session(token):
    """Factory: ``make_session("a\\n", rule_store=...)`` -> (session, output)."""

    def _make(answers: str, **kwargs) -> tuple[ConfirmationSession, io.StringIO]:
        output = io.StringIO()
        terminal = Terminal(input_stream=io.StringIO(answers), output_stream=output)
        return ConfirmationSession(terminal, token, **kwargs), output

    return _make


# ---------------------------------------------------------------------------
# Project directory
# ---------------------------------------------------------------------------


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A temporary project initialized with the default config files."""
    project = tmp_path / "spendsort-project"
    initialize(project)
    return project
