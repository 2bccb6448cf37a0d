"""
Seed script for local verification runs.

Creates the subject tables if missing and inserts a handful of pending
members, promoters and sellers so a supervised run has something to chew on.
Re-running is safe: rows that already exist are skipped.

Usage:
    python -m seed
"""
from __future__ import annotations

import asyncio
from typing import Any

from shared.config import get_settings
from shared.models.enums import ApplicationStatus, RegistrationStatus, VerificationStatus
from shared.models.orm import Base, FraternityMemberORM, PromoterORM, SellerORM
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger, setup_logging

from verifier.errors import SeedErrorKind, classify_seed_error

logger = get_logger(__name__)

TRANSIENT_RETRY_DELAY_S = 2.0

SEED_MEMBERS: list[dict[str, Any]] = [
    {"email": "john.doe@example.com", "name": "John Doe", "membership_number": "100234"},
    {"email": "marcus.hill@example.com", "name": "Marcus A. Hill", "membership_number": "100871"},
    {"email": "no.number@example.com", "name": "Dana Brooks", "membership_number": None},
]
SEED_PROMOTERS: list[dict[str, Any]] = [
    {"email": "marcus.hill@example.com", "name": "Marcus Hill"},
]
SEED_SELLERS: list[dict[str, Any]] = [
    {"email": "john.doe@example.com", "name": "John Doe", "business_name": "Doe Apparel"},
    {"email": "crimson.goods@example.com", "name": "Terrence Wade", "business_name": "Crimson Goods"},
]


async def create_tables(db: DatabaseManager) -> None:
    async with db.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def insert_row(db: DatabaseManager, row: Any) -> bool:
    """Insert one row. Returns False when it already exists; retries a transient failure once."""
    for attempt in (1, 2):
        try:
            async with db.write_session() as session:
                session.add(row)
            return True
        except Exception as exc:
            kind = classify_seed_error(exc)
            if kind is SeedErrorKind.ALREADY_EXISTS:
                logger.debug("seed_row_exists", table=row.__tablename__, email=row.email)
                return False
            if kind is SeedErrorKind.TRANSIENT and attempt == 1:
                logger.warning("seed_transient_error", table=row.__tablename__, error=str(exc))
                await asyncio.sleep(TRANSIENT_RETRY_DELAY_S)
                continue
            raise
    return False


def _pending() -> dict[str, Any]:
    return {"verification_status": VerificationStatus.PENDING.value}


async def seed(db: DatabaseManager) -> dict[str, int]:
    await create_tables(db)
    rows: list[Any] = []
    rows += [
        FraternityMemberORM(registration_status=RegistrationStatus.COMPLETE.value, **m, **_pending())
        for m in SEED_MEMBERS
    ]
    rows += [PromoterORM(status=ApplicationStatus.PENDING.value, **p, **_pending()) for p in SEED_PROMOTERS]
    rows += [SellerORM(status=ApplicationStatus.PENDING.value, **s, **_pending()) for s in SEED_SELLERS]

    counts = {"inserted": 0, "skipped": 0}
    for row in rows:
        if await insert_row(db, row):
            counts["inserted"] += 1
        else:
            counts["skipped"] += 1
    return counts


async def main() -> None:
    setup_logging("seed")
    settings = get_settings()
    db = DatabaseManager(settings)
    await db.connect()
    try:
        counts = await seed(db)
    finally:
        await db.disconnect()

    print(f"\n{'='*60}")
    print(f"  Seeded {settings.database_url_safe_log}")
    print(f"  {counts['inserted']} inserted, {counts['skipped']} already present")
    print(f"{'='*60}")
    print("  Run a supervised pass: python -m verifier.main members --visible")
    print()


if __name__ == "__main__":
    asyncio.run(main())
