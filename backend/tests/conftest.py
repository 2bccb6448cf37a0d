"""
Shared fakes for orchestrator, directory and scheduler tests.
FakeSession implements BrowserSession without a browser; FakeStore records every persisted outcome.
"""
from __future__ import annotations

from typing import Callable, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.models.domain import PortalContent, VerificationSubject
from shared.models.enums import SubjectKind, VerificationStatus
from verifier.browser import BrowserSession, LaunchOptions, PlaywrightBrowserSession
from verifier.config import VerifierSettings


class FakeSession(BrowserSession):
    def __init__(
        self,
        pages: Optional[dict[str, str]] = None,
        default_text: str = "",
        fail_urls: Optional[dict[str, Exception]] = None,
        landing_url: str = "https://members.example.org/s/home",
    ) -> None:
        self.pages = pages or {}
        self.default_text = default_text
        self.fail_urls = fail_urls or {}
        self.landing_url = landing_url
        self.visited: list[str] = []
        self.forms: list[dict[str, str]] = []
        self.close_calls = 0
        self._url = "about:blank"

    @property
    def current_url(self) -> str:
        return self._url

    async def navigate(self, url: str, timeout_ms: Optional[int] = None) -> None:
        self.visited.append(url)
        if url in self.fail_urls:
            raise self.fail_urls[url]
        self._url = url

    async def extract_content(self) -> PortalContent:
        return PortalContent.capture(self.pages.get(self._url, self.default_text), "", url=self._url)

    async def submit_form(
        self,
        fields: dict[str, str],
        submit_selector: str,
        timeout_ms: Optional[int] = None,
    ) -> None:
        self.forms.append(dict(fields))
        self._url = self.landing_url

    async def close(self) -> None:
        self.close_calls += 1


class FakeStore:
    def __init__(self, pending: Optional[dict[SubjectKind, list[VerificationSubject]]] = None) -> None:
        self.pending = pending or {}
        self.persisted: list[tuple[VerificationSubject, VerificationStatus, str, bool]] = []
        self.fail_ids: set[int] = set()

    async def fetch_pending_subjects(self, kind: SubjectKind) -> list[VerificationSubject]:
        return list(self.pending.get(kind, []))

    async def persist_verification_outcome(
        self,
        subject: VerificationSubject,
        status: VerificationStatus,
        note: str,
        auto_approve: bool = False,
    ) -> None:
        if subject.id in self.fail_ids:
            raise RuntimeError("database unavailable")
        self.persisted.append((subject, status, note, auto_approve))

    def status_of(self, subject_id: int, kind: SubjectKind) -> Optional[VerificationStatus]:
        for subject, status, _note, _approve in self.persisted:
            if subject.id == subject_id and subject.kind is kind:
                return status
        return None

    def note_of(self, subject_id: int, kind: SubjectKind) -> str:
        for subject, _status, note, _approve in self.persisted:
            if subject.id == subject_id and subject.kind is kind:
                return note
        raise KeyError(subject_id)


def seller(subject_id: int, name: Optional[str], email: Optional[str]) -> VerificationSubject:
    return VerificationSubject(id=subject_id, kind=SubjectKind.SELLER, name=name, email=email)


def member(
    subject_id: int,
    name: Optional[str],
    number: Optional[str],
    kind: SubjectKind = SubjectKind.MEMBER,
) -> VerificationSubject:
    return VerificationSubject(id=subject_id, kind=kind, name=name, membership_number=number)


@pytest.fixture
def verifier_settings() -> VerifierSettings:
    return VerifierSettings(
        directory_username="operator",
        directory_password="secret",
        directory_login_url="https://members.example.org/s/login/",
        directory_search_url="https://members.example.org/s/search/{query}",
        vendor_listing_url="https://www.example.org/vendor-program/",
        cached_item_delay_s=0,
        navigated_item_delay_s=0,
        settle_delay_s=0,
        executable_path=None,
    )


@pytest.fixture
def session_factory() -> Callable[[BrowserSession], Callable[[], AsyncMock]]:
    """Wrap a session in a factory that counts how often a session was created."""

    def build(session: BrowserSession) -> AsyncMock:
        return AsyncMock(return_value=session)

    return build


@pytest.fixture
def mock_page() -> MagicMock:
    page = MagicMock()
    page.url = "https://www.example.org/vendor-program/"
    page.goto = AsyncMock(return_value=None)
    page.wait_for_function = AsyncMock(return_value=None)
    page.wait_for_load_state = AsyncMock(return_value=None)
    page.evaluate = AsyncMock(return_value={"text": "", "markup": ""})
    page.fill = AsyncMock(return_value=None)
    page.click = AsyncMock(return_value=None)
    page.close = AsyncMock(return_value=None)
    return page


@pytest.fixture
def playwright_session(mock_page: MagicMock) -> PlaywrightBrowserSession:
    playwright = MagicMock()
    playwright.stop = AsyncMock(return_value=None)
    browser = MagicMock()
    browser.close = AsyncMock(return_value=None)
    context = MagicMock()
    context.close = AsyncMock(return_value=None)
    return PlaywrightBrowserSession(
        playwright, browser, context, mock_page, LaunchOptions(timeout_ms=1000, settle_delay_s=0)
    )
