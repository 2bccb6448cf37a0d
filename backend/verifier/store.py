"""
Narrow read/write access to the subject tables.
The orchestrator depends on the VerificationStore protocol; SqlVerificationStore is the Postgres implementation.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol, Union

from sqlalchemy import func, or_, select

from shared.models.domain import VerificationSubject
from shared.models.enums import ApplicationStatus, RegistrationStatus, SubjectKind, VerificationStatus
from shared.models.orm import FraternityMemberORM, PromoterORM, SellerORM
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger

from verifier.errors import SubjectNotFoundError

logger = get_logger(__name__)

SubjectORM = Union[FraternityMemberORM, PromoterORM, SellerORM]

_ORM_BY_KIND: dict[SubjectKind, type] = {
    SubjectKind.MEMBER: FraternityMemberORM,
    SubjectKind.PROMOTER: PromoterORM,
    SubjectKind.SELLER: SellerORM,
}


class VerificationStore(Protocol):
    async def fetch_pending_subjects(self, kind: SubjectKind) -> list[VerificationSubject]:
        ...

    async def persist_verification_outcome(
        self,
        subject: VerificationSubject,
        status: VerificationStatus,
        note: str,
        auto_approve: bool = False,
    ) -> None:
        ...


def _pending_verification(model: type) -> object:
    return or_(
        model.verification_status.is_(None),
        model.verification_status == VerificationStatus.PENDING.value,
    )


class SqlVerificationStore:
    """Reads pending subjects and writes verification outcomes through SQLAlchemy."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def fetch_pending_subjects(self, kind: SubjectKind) -> list[VerificationSubject]:
        async with self._db.read_session() as session:
            if kind is SubjectKind.MEMBER:
                stmt = (
                    select(FraternityMemberORM)
                    .where(
                        FraternityMemberORM.registration_status == RegistrationStatus.COMPLETE.value,
                        _pending_verification(FraternityMemberORM),
                    )
                    .order_by(FraternityMemberORM.created_at.desc())
                )
                rows = (await session.execute(stmt)).scalars().all()
                return [
                    VerificationSubject(
                        id=m.id,
                        kind=kind,
                        name=m.name,
                        membership_number=m.membership_number,
                        email=m.email,
                    )
                    for m in rows
                ]

            model = _ORM_BY_KIND[kind]
            # Promoters and sellers are linked to their member record by email.
            stmt = (
                select(model, FraternityMemberORM.membership_number)
                .outerjoin(
                    FraternityMemberORM,
                    func.lower(FraternityMemberORM.email) == func.lower(model.email),
                )
                .where(
                    model.status == ApplicationStatus.PENDING.value,
                    _pending_verification(model),
                )
                .order_by(model.created_at.desc())
            )
            result = await session.execute(stmt)
            subjects: list[VerificationSubject] = []
            seen: set[int] = set()
            for row, membership_number in result.all():
                if row.id in seen:
                    continue
                seen.add(row.id)
                subjects.append(
                    VerificationSubject(
                        id=row.id,
                        kind=kind,
                        name=row.name,
                        membership_number=membership_number,
                        email=row.email,
                    )
                )
            return subjects

    async def persist_verification_outcome(
        self,
        subject: VerificationSubject,
        status: VerificationStatus,
        note: str,
        auto_approve: bool = False,
    ) -> None:
        if not status.is_terminal:
            raise ValueError("Verification outcomes must be terminal")
        model = _ORM_BY_KIND[subject.kind]
        async with self._db.write_session() as session:
            row: SubjectORM | None = await session.get(model, subject.id)
            if row is None:
                raise SubjectNotFoundError(subject.kind.value, subject.id)
            row.verification_status = status.value
            row.verification_date = datetime.now(timezone.utc)
            row.verification_notes = note or None
            approved = auto_approve and status is VerificationStatus.VERIFIED and subject.kind.auto_approves
            if approved:
                row.status = ApplicationStatus.APPROVED.value
        logger.debug(
            "verification_persisted",
            kind=subject.kind.value,
            subject_id=subject.id,
            status=status.value,
            approved=approved,
        )
