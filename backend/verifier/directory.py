"""
Gated member directory: login once per batch, then one search per subject.
Also hosts the record mode used to re-derive selectors when the portal markup changes.
"""
from __future__ import annotations

import asyncio
import re
import time
from typing import Any
from urllib.parse import quote, quote_plus, urlparse

from shared.models.domain import PortalContent, VerificationSubject
from shared.utils.logging import get_logger

from verifier.browser import BrowserSession, PlaywrightBrowserSession
from verifier.config import VerifierSettings
from verifier.errors import LoginError

logger = get_logger(__name__)

STRUCTURE_JS = """() => {
    const attrs = (el, names) => Object.fromEntries(
        names.map((n) => [n, el.getAttribute(n)]).filter(([, v]) => v)
    );
    return {
        url: location.href,
        title: document.title,
        forms: [...document.querySelectorAll('form')].map((f) => attrs(f, ['id', 'name', 'action', 'method'])),
        inputs: [...document.querySelectorAll('input, textarea, select')].map(
            (i) => attrs(i, ['type', 'name', 'id', 'placeholder', 'aria-label', 'class'])
        ),
        buttons: [...document.querySelectorAll('button, [role=button], input[type=submit]')].map(
            (b) => ({ ...attrs(b, ['type', 'id', 'class', 'aria-label']), text: (b.innerText || '').trim().slice(0, 60) })
        ),
        search_fields: [...document.querySelectorAll('input[type=search], [role=search] input, input[placeholder*=earch]')].map(
            (i) => attrs(i, ['name', 'id', 'placeholder', 'class'])
        ),
    };
}"""

# Headings the results page uses to repeat the query back, e.g. 'Search results for "100234"'.
ECHO_PREFIX = r"\b(?:search\s+results\s+for|results\s+for|you\s+searched\s+for|searched\s+for|search(?:ing)?\s+for|search|query|keyword)"
ECHO_QUOTES = "\"'“”‘’"


def strip_query_echo(content: PortalContent, term: str) -> PortalContent:
    """
    Drop the places where the directory repeats the search term back to the user.

    Attributes carrying the term (the search box value, pagination and sort
    links) are removed from the markup, and "results for <term>" headings are
    removed from both text and markup. Result rows that contain the term are
    left untouched, so an identifier match still means the directory returned
    a record for it.
    """
    term = (term or "").strip().lower()
    if not term:
        return content
    needles = "|".join(
        re.escape(t) for t in sorted({term, quote(term, safe="").lower(), quote_plus(term).lower()})
    )
    attribute = re.compile(rf"""\s[\w:-]+\s*=\s*(?:"[^"]*(?:{needles})[^"]*"|'[^']*(?:{needles})[^']*')""")
    echo = re.compile(rf"{ECHO_PREFIX}\s*:?\s*[{ECHO_QUOTES}]?\s*{re.escape(term)}\s*[{ECHO_QUOTES}]?")

    text = echo.sub(" ", content.text)
    markup = echo.sub(" ", attribute.sub("", content.markup))
    if text == content.text and markup == content.markup:
        return content
    logger.debug("directory_query_echo_removed", url=content.url)
    return content.model_copy(update={"text": text, "markup": markup})


def _on_login_page(url: str) -> bool:
    return "login" in urlparse(url).path.lower()


class MemberDirectory:
    """Login and search against the member portal through a BrowserSession."""

    location = "member directory"

    def __init__(self, settings: VerifierSettings) -> None:
        self._settings = settings

    async def login(self, session: BrowserSession) -> None:
        s = self._settings
        if not s.has_directory_credentials:
            raise LoginError("Directory credentials are not configured")
        await session.navigate(s.directory_login_url)
        try:
            await session.submit_form(
                {
                    s.login_username_selector: s.directory_username,
                    s.login_password_selector: s.directory_password,
                },
                s.login_submit_selector,
            )
        except Exception as exc:
            raise LoginError(f"Login form interaction failed: {exc}") from exc

        url = session.current_url
        if _on_login_page(url) or s.login_success_url_fragment not in url:
            raise LoginError(f"Still on login page after submitting credentials ({url})")
        logger.info("directory_login_succeeded", url=url)

    def search_term(self, subject: VerificationSubject) -> str:
        if self._settings.search_by == "name":
            return (subject.name or "").strip()
        return (subject.membership_number or "").strip()

    def search_url(self, subject: VerificationSubject) -> str:
        return self._settings.directory_search_url.format(query=quote(self.search_term(subject), safe=""))

    async def search(self, session: BrowserSession, subject: VerificationSubject) -> PortalContent:
        """Run the directory search for one subject and snapshot the results page."""
        url = self.search_url(subject)
        logger.debug("directory_search", subject_id=subject.id, kind=subject.kind.value, url=url)
        await session.navigate(url)
        content = await session.extract_content()
        return strip_query_echo(content, self.search_term(subject))


async def record_manual_login(
    session: PlaywrightBrowserSession,
    settings: VerifierSettings,
) -> dict[str, Any]:
    """
    Open the login page, wait for an operator to sign in by hand, then log
    the structural hints of both pages so selectors can be updated.
    """
    await session.navigate(settings.directory_login_url)
    login_hints = await session.page.evaluate(STRUCTURE_JS)
    logger.info("record_login_page_structure", **login_hints)
    logger.info(
        "record_waiting_for_manual_login",
        timeout_s=settings.record_login_timeout_s,
        hint="Complete the login in the browser window",
    )

    deadline = time.monotonic() + settings.record_login_timeout_s
    while _on_login_page(session.current_url):
        if time.monotonic() >= deadline:
            raise LoginError("Timed out waiting for manual login")
        await asyncio.sleep(1.0)

    await asyncio.sleep(settings.settle_delay_s)
    landing_hints = await session.page.evaluate(STRUCTURE_JS)
    logger.info("record_landing_page_structure", **landing_hints)
    return {"login": login_hints, "landing": landing_hints}
