"""
Unit tests for the SQLAlchemy verification store.
DatabaseManager is replaced by a mock whose sessions are MagicMocks.

Run: pytest backend/tests/test_store.py -v
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import member, seller
from shared.models.enums import SubjectKind, VerificationStatus
from shared.models.orm import FraternityMemberORM, PromoterORM, SellerORM
from verifier.errors import SubjectNotFoundError
from verifier.store import SqlVerificationStore


def _db(session: MagicMock) -> MagicMock:
    @asynccontextmanager
    async def scope() -> Any:
        yield session

    db = MagicMock()
    db.read_session = scope
    db.write_session = scope
    return db


@pytest.fixture
def session() -> MagicMock:
    s = MagicMock()
    s.get = AsyncMock(return_value=None)
    s.execute = AsyncMock()
    return s


# ── Fetch ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_fetch_members(session: MagicMock) -> None:
    rows = [
        FraternityMemberORM(id=1, email="john@example.com", name="John Doe", membership_number="100234"),
        FraternityMemberORM(id=2, email="dana@example.com", name="Dana Brooks", membership_number=None),
    ]
    result = MagicMock()
    result.scalars.return_value.all.return_value = rows
    session.execute.return_value = result

    subjects = await SqlVerificationStore(_db(session)).fetch_pending_subjects(SubjectKind.MEMBER)

    assert [s.id for s in subjects] == [1, 2]
    assert subjects[0].discriminator == "100234"
    assert subjects[1].missing_fields() == ["membership number"]


@pytest.mark.asyncio
async def test_fetch_promoters_joins_membership_number(session: MagicMock) -> None:
    promoter = PromoterORM(id=5, email="marcus@example.com", name="Marcus Hill", status="PENDING")
    result = MagicMock()
    result.all.return_value = [(promoter, "100871"), (promoter, "100871")]
    session.execute.return_value = result

    subjects = await SqlVerificationStore(_db(session)).fetch_pending_subjects(SubjectKind.PROMOTER)

    assert len(subjects) == 1
    assert subjects[0].kind is SubjectKind.PROMOTER
    assert subjects[0].membership_number == "100871"


@pytest.mark.asyncio
async def test_fetch_sellers_use_email(session: MagicMock) -> None:
    row = SellerORM(id=9, email="john.doe@example.com", name="John Doe", status="PENDING")
    result = MagicMock()
    result.all.return_value = [(row, None)]
    session.execute.return_value = result

    subjects = await SqlVerificationStore(_db(session)).fetch_pending_subjects(SubjectKind.SELLER)

    assert subjects[0].discriminator == "john.doe@example.com"
    assert subjects[0].missing_fields() == []


# ── Persist ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_verified_seller_is_approved(session: MagicMock) -> None:
    row = SellerORM(id=9, email="john.doe@example.com", name="John Doe", status="PENDING")
    session.get.return_value = row

    await SqlVerificationStore(_db(session)).persist_verification_outcome(
        seller(9, "John Doe", "john.doe@example.com"), VerificationStatus.VERIFIED, "Verified", auto_approve=True
    )

    assert row.verification_status == "VERIFIED"
    assert row.verification_notes == "Verified"
    assert row.verification_date is not None
    assert row.status == "APPROVED"


@pytest.mark.asyncio
async def test_manual_review_does_not_approve(session: MagicMock) -> None:
    row = PromoterORM(id=5, email="marcus@example.com", name="Marcus Hill", status="PENDING")
    session.get.return_value = row

    await SqlVerificationStore(_db(session)).persist_verification_outcome(
        member(5, "Marcus Hill", "100871", kind=SubjectKind.PROMOTER),
        VerificationStatus.MANUAL_REVIEW,
        "Missing membership number",
        auto_approve=True,
    )

    assert row.verification_status == "MANUAL_REVIEW"
    assert row.status == "PENDING"


@pytest.mark.asyncio
async def test_member_has_no_application_status(session: MagicMock) -> None:
    row = FraternityMemberORM(id=1, email="john@example.com", name="John Doe", registration_status="COMPLETE")
    session.get.return_value = row

    await SqlVerificationStore(_db(session)).persist_verification_outcome(
        member(1, "John Doe", "100234"), VerificationStatus.VERIFIED, "Verified", auto_approve=True
    )

    assert row.verification_status == "VERIFIED"
    assert row.registration_status == "COMPLETE"


@pytest.mark.asyncio
async def test_missing_row_raises(session: MagicMock) -> None:
    with pytest.raises(SubjectNotFoundError):
        await SqlVerificationStore(_db(session)).persist_verification_outcome(
            seller(404, "Nobody", "nobody@example.com"), VerificationStatus.MANUAL_REVIEW, "n"
        )


@pytest.mark.asyncio
async def test_pending_is_not_a_valid_outcome(session: MagicMock) -> None:
    with pytest.raises(ValueError):
        await SqlVerificationStore(_db(session)).persist_verification_outcome(
            seller(9, "John Doe", "john.doe@example.com"), VerificationStatus.PENDING, "n"
        )
    session.get.assert_not_awaited()
