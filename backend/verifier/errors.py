"""
Typed failures raised by the browser layer and the store.
Session errors abort the current batch; everything else is resolved per subject.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError


class VerificationError(Exception):
    """Base for every error raised inside the engine."""


class SessionError(VerificationError):
    """The browser session cannot serve the batch any more."""


class LaunchError(SessionError):
    pass


class NavigationError(SessionError):
    def __init__(self, url: str, cause: Optional[BaseException] = None) -> None:
        self.url = url
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Failed to load {url}{detail}")


class ContentExtractionError(SessionError):
    def __init__(self, url: str, cause: Optional[BaseException] = None) -> None:
        self.url = url
        self.cause = cause
        detail = f": {cause}" if cause else ": page content is empty"
        super().__init__(f"Failed to extract page content from {url}{detail}")


class LoginError(SessionError):
    pass


class SubjectNotFoundError(VerificationError):
    def __init__(self, kind: str, subject_id: int) -> None:
        self.kind = kind
        self.subject_id = subject_id
        super().__init__(f"{kind} {subject_id} not found")


class SeedErrorKind(str, Enum):
    ALREADY_EXISTS = "already_exists"
    TRANSIENT = "transient"
    FATAL = "fatal"


# asyncpg SQLSTATE for unique_violation
_UNIQUE_VIOLATION = "23505"


def classify_seed_error(exc: BaseException) -> SeedErrorKind:
    """Classify a database error raised while seeding, by exception type and SQLSTATE."""
    if isinstance(exc, IntegrityError):
        sqlstate = getattr(getattr(exc, "orig", None), "sqlstate", None)
        if sqlstate in (None, _UNIQUE_VIOLATION):
            return SeedErrorKind.ALREADY_EXISTS
        return SeedErrorKind.FATAL
    if isinstance(exc, (OperationalError, InterfaceError)):
        return SeedErrorKind.TRANSIENT
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return SeedErrorKind.TRANSIENT
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return SeedErrorKind.TRANSIENT
    return SeedErrorKind.FATAL
