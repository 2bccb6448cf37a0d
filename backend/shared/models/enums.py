"""Domain enumerations for identity verification."""
from __future__ import annotations

from enum import Enum


class SubjectKind(str, Enum):
    MEMBER = "member"
    PROMOTER = "promoter"
    SELLER = "seller"

    @property
    def discriminator(self) -> "DiscriminatorType":
        """Sellers are listed by email; members and promoters by membership number."""
        if self is SubjectKind.SELLER:
            return DiscriminatorType.EMAIL
        return DiscriminatorType.MEMBERSHIP_NUMBER

    @property
    def auto_approves(self) -> bool:
        """Promoter and seller applications are approved once verified."""
        return self is not SubjectKind.MEMBER


class DiscriminatorType(str, Enum):
    MEMBERSHIP_NUMBER = "membership_number"
    EMAIL = "email"

    @property
    def label(self) -> str:
        return "membership number" if self is DiscriminatorType.MEMBERSHIP_NUMBER else "email"


class VerificationStatus(str, Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    MANUAL_REVIEW = "MANUAL_REVIEW"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not VerificationStatus.PENDING


class ApplicationStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class RegistrationStatus(str, Enum):
    DRAFT = "DRAFT"
    COMPLETE = "COMPLETE"


class OutcomeCategory(str, Enum):
    """How a subject's result is counted in the batch summary."""
    VERIFIED = "verified"
    MANUAL_REVIEW = "manual_review"
    ERROR = "error"
