"""
Pydantic v2 domain models for identity verification.
These are the in-process representations passed between store, matcher and orchestrator, NOT ORM models.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.models.enums import (
    DiscriminatorType,
    OutcomeCategory,
    SubjectKind,
    VerificationStatus,
)


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True, frozen=True)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


# ── Subjects ────────────────────────────────────────────────────────────
class VerificationSubject(DomainModel):
    """A member, promoter or seller awaiting verification."""
    id: int
    kind: SubjectKind
    name: Optional[str] = None
    membership_number: Optional[str] = None
    email: Optional[str] = None

    @property
    def discriminator_type(self) -> DiscriminatorType:
        return self.kind.discriminator

    @property
    def discriminator(self) -> Optional[str]:
        if self.discriminator_type is DiscriminatorType.EMAIL:
            return self.email
        return self.membership_number

    def missing_fields(self) -> list[str]:
        missing = []
        if _is_blank(self.name):
            missing.append("name")
        if _is_blank(self.discriminator):
            missing.append(self.discriminator_type.label)
        return missing

    @property
    def label(self) -> str:
        return f"{self.name or '<no name>'} ({self.discriminator or '<none>'})"


# ── Page snapshot ───────────────────────────────────────────────────────
class PortalContent(DomainModel):
    """Lower-cased text and markup of one rendered page."""
    text: str = ""
    markup: str = ""
    url: str = ""
    captured_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def capture(cls, text: Optional[str], markup: Optional[str], url: str = "") -> "PortalContent":
        return cls(text=(text or "").lower(), markup=(markup or "").lower(), url=url)

    @property
    def is_empty(self) -> bool:
        return not self.text and not self.markup


# ── Match result ────────────────────────────────────────────────────────
class MatchResult(DomainModel):
    name_match: bool = False
    identifier_match: bool = False
    discriminator_type: DiscriminatorType = DiscriminatorType.MEMBERSHIP_NUMBER
    matched_name: Optional[str] = None
    matched_identifier: Optional[str] = None
    # Diagnostic only: name and identifier occur within a short distance of each other.
    found_together: Optional[bool] = None
    error: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.name_match and self.identifier_match

    def describe_mismatch(self, location: str) -> str:
        """Explain which half of the evidence was missing on the page."""
        ident = self.discriminator_type.label
        if not self.name_match and not self.identifier_match:
            return f"Neither name nor {ident} found on {location}."
        if not self.name_match:
            return f"Name not found on {location} ({ident} found)."
        if not self.identifier_match:
            return f"{ident.capitalize()} not found on {location} (name found)."
        return f"Name and {ident} found on {location}."


# ── Outcomes ────────────────────────────────────────────────────────────
class VerificationOutcome(DomainModel):
    subject: VerificationSubject
    status: VerificationStatus
    note: str
    category: OutcomeCategory
    auto_approve: bool = False

    @property
    def log_line(self) -> str:
        return f"{self.subject.label} → {self.category.value}: {self.note}"


class BatchSummary(BaseModel):
    """Mutable accumulator for one batch run."""
    job: str
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None
    verified: int = 0
    manual_review: int = 0
    errors: int = 0
    aborted: bool = False
    session_error: Optional[str] = None
    outcomes: list[VerificationOutcome] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    def record(self, outcome: VerificationOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.category is OutcomeCategory.VERIFIED:
            self.verified += 1
        elif outcome.category is OutcomeCategory.ERROR:
            self.errors += 1
        else:
            self.manual_review += 1

    def count(self, status: VerificationStatus) -> int:
        return sum(1 for o in self.outcomes if o.status is status)

    def as_log_fields(self) -> dict[str, Any]:
        return {
            "job": self.job,
            "verified": self.verified,
            "manual_review": self.manual_review,
            "errors": self.errors,
            "total": self.total,
            "aborted": self.aborted,
            "session_error": self.session_error,
        }
