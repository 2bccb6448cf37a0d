"""
Unit tests for idempotent seeding.

Run: pytest backend/tests/test_seed.py -v
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

import seed
from shared.models.orm import SellerORM


def _db(errors: list[Exception]) -> MagicMock:
    """Each write_session raises the next queued error, then succeeds."""
    pending = list(errors)

    @asynccontextmanager
    async def write_session() -> Any:
        yield MagicMock()
        if pending:
            raise pending.pop(0)

    db = MagicMock()
    db.write_session = write_session
    return db


def _row() -> SellerORM:
    return SellerORM(email="john.doe@example.com", name="John Doe", status="PENDING")


@pytest.mark.asyncio
async def test_insert_new_row() -> None:
    assert await seed.insert_row(_db([]), _row()) is True


@pytest.mark.asyncio
async def test_existing_row_is_skipped() -> None:
    db = _db([IntegrityError("INSERT", {}, Exception("duplicate key"))])
    assert await seed.insert_row(db, _row()) is False


@pytest.mark.asyncio
async def test_transient_error_retried_once(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(seed, "TRANSIENT_RETRY_DELAY_S", 0)
    db = _db([OperationalError("INSERT", {}, Exception("connection reset"))])
    assert await seed.insert_row(db, _row()) is True


@pytest.mark.asyncio
async def test_repeated_transient_error_propagates(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(seed, "TRANSIENT_RETRY_DELAY_S", 0)
    errors = [OperationalError("INSERT", {}, Exception("connection reset")) for _ in range(2)]
    with pytest.raises(OperationalError):
        await seed.insert_row(_db(errors), _row())


@pytest.mark.asyncio
async def test_seed_counts(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(seed, "create_tables", AsyncMock())
    inserted = iter([True, False] + [True] * 10)
    monkeypatch.setattr(seed, "insert_row", AsyncMock(side_effect=lambda db, row: next(inserted)))

    counts = await seed.seed(MagicMock())

    total = len(seed.SEED_MEMBERS) + len(seed.SEED_PROMOTERS) + len(seed.SEED_SELLERS)
    assert counts == {"inserted": total - 1, "skipped": 1}
