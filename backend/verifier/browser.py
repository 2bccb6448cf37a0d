"""
Browser session management.

BrowserSession is the only surface the directory flow and the orchestrator
see: navigate, extract_content, submit_form, close. PlaywrightBrowserSession
implements it on headless Chromium. Every network-facing call gets exactly
one fallback before a typed SessionError is raised.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from shared.models.domain import PortalContent
from shared.utils.logging import get_logger
from shared.utils.metrics import CONTENT_FALLBACKS, NAVIGATION_RETRIES

from verifier.config import VerifierSettings
from verifier.errors import ContentExtractionError, LaunchError, NavigationError

logger = get_logger(__name__)

BASE_ARGS = ["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"]
HEADLESS_ARGS = ["--disable-accelerated-2d-canvas", "--disable-gpu"]
VISIBLE_VIEWPORT = {"width": 1280, "height": 720}

BODY_READY_JS = "() => !!document.body && (document.body.innerText || '').length > 0"

EXTRACT_JS = """() => {
    if (!document.body) {
        return { text: '', markup: '' };
    }
    return {
        text: document.body.innerText || document.body.textContent || '',
        markup: document.body.innerHTML || '',
    };
}"""

FALLBACK_EXTRACT_JS = """(selectors) => selectors
    .map((sel) => [sel, document.querySelector(sel)])
    .filter(([, el]) => !!el)
    .map(([sel, el]) => ({
        selector: sel,
        text: el.innerText || el.textContent || '',
        markup: el.innerHTML || '',
    }))"""

FALLBACK_SELECTORS = ["main", "#content", "article", "body"]


def first_populated(candidates: list[dict[str, Any]], url: str = "") -> Optional[PortalContent]:
    """First candidate, in selector order, whose text or markup is not blank."""
    for candidate in candidates or []:
        text = candidate.get("text") or ""
        markup = candidate.get("markup") or ""
        if text.strip() or markup.strip():
            logger.debug("content_fallback_selected", selector=candidate.get("selector"), url=url)
            return PortalContent.capture(text, markup, url=url)
    return None


@dataclass
class LaunchOptions:
    executable_path: Optional[str] = None
    timeout_ms: int = 30_000
    settle_delay_s: float = 1.0
    extra_args: list[str] = field(default_factory=list)

    @classmethod
    def from_settings(cls, settings: VerifierSettings) -> "LaunchOptions":
        return cls(
            executable_path=settings.executable_path,
            timeout_ms=settings.effective_timeout_ms,
            settle_delay_s=settings.settle_delay_s,
        )


def launch_args(headless: bool, extra: Optional[list[str]] = None) -> list[str]:
    args = list(BASE_ARGS)
    if headless:
        args.extend(HEADLESS_ARGS)
    if extra:
        args.extend(a for a in extra if a not in args)
    return args


class BrowserSession(ABC):
    """Backend-agnostic automation session owned by one batch."""

    @property
    @abstractmethod
    def current_url(self) -> str:
        pass

    @abstractmethod
    async def navigate(self, url: str, timeout_ms: Optional[int] = None) -> None:
        """Load url; raises NavigationError after the retry is exhausted."""

    @abstractmethod
    async def extract_content(self) -> PortalContent:
        """Snapshot the rendered page; raises ContentExtractionError when empty after fallback."""

    @abstractmethod
    async def submit_form(
        self,
        fields: dict[str, str],
        submit_selector: str,
        timeout_ms: Optional[int] = None,
    ) -> None:
        """Fill selectors with values, click submit and wait for the page to settle."""

    @abstractmethod
    async def close(self) -> None:
        """Release every resource; never raises."""


class PlaywrightBrowserSession(BrowserSession):
    def __init__(
        self,
        playwright: Playwright,
        browser: Browser,
        context: BrowserContext,
        page: Page,
        options: LaunchOptions,
    ) -> None:
        self._playwright = playwright
        self._browser = browser
        self._context = context
        self._page = page
        self._options = options
        self._closed = False

    @property
    def page(self) -> Page:
        return self._page

    @property
    def current_url(self) -> str:
        return self._page.url

    @property
    def closed(self) -> bool:
        return self._closed

    async def navigate(self, url: str, timeout_ms: Optional[int] = None) -> None:
        timeout = timeout_ms or self._options.timeout_ms
        try:
            await self._page.goto(url, wait_until="domcontentloaded", timeout=timeout)
        except PlaywrightError as first_exc:
            NAVIGATION_RETRIES.inc()
            logger.warning("navigation_retry", url=url, error=str(first_exc))
            try:
                await self._page.goto(url, wait_until="networkidle", timeout=timeout)
            except PlaywrightError as exc:
                raise NavigationError(url, exc) from exc

        try:
            await self._page.wait_for_function(BODY_READY_JS, timeout=timeout)
        except PlaywrightError as exc:
            # Extraction decides whether the page is usable.
            logger.warning("body_not_ready", url=url, error=str(exc))
        if self._options.settle_delay_s > 0:
            await asyncio.sleep(self._options.settle_delay_s)

    async def extract_content(self) -> PortalContent:
        url = self._page.url
        try:
            raw = await self._page.evaluate(EXTRACT_JS)
            content = PortalContent.capture(raw.get("text"), raw.get("markup"), url=url)
            if not content.is_empty:
                return content
            logger.warning("content_empty", url=url)
        except PlaywrightError as exc:
            logger.warning("content_extract_failed", url=url, error=str(exc))

        CONTENT_FALLBACKS.inc()
        try:
            candidates = await self._page.evaluate(FALLBACK_EXTRACT_JS, FALLBACK_SELECTORS)
        except PlaywrightError as exc:
            raise ContentExtractionError(url, exc) from exc
        content = first_populated(candidates, url=url)
        if content is None:
            raise ContentExtractionError(url)
        return content

    async def submit_form(
        self,
        fields: dict[str, str],
        submit_selector: str,
        timeout_ms: Optional[int] = None,
    ) -> None:
        timeout = timeout_ms or self._options.timeout_ms
        for selector, value in fields.items():
            await self._page.fill(selector, value, timeout=timeout)
        await self._page.click(submit_selector, timeout=timeout)
        try:
            await self._page.wait_for_load_state("networkidle", timeout=timeout)
        except PlaywrightError as exc:
            logger.debug("form_settle_timeout", error=str(exc))
        if self._options.settle_delay_s > 0:
            await asyncio.sleep(self._options.settle_delay_s)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for label, closer in (
            ("page", self._page.close),
            ("context", self._context.close),
            ("browser", self._browser.close),
            ("playwright", self._playwright.stop),
        ):
            try:
                await closer()
            except Exception as exc:
                logger.warning("browser_close_error", resource=label, error=str(exc))
        logger.debug("browser_session_closed")


async def create_session(
    headless: bool = True,
    launch_options: Optional[LaunchOptions] = None,
) -> PlaywrightBrowserSession:
    """Launch Chromium and open one page with default timeouts applied."""
    options = launch_options or LaunchOptions()
    playwright: Optional[Playwright] = None
    browser: Optional[Browser] = None
    try:
        playwright = await async_playwright().start()
        launch_kwargs: dict[str, Any] = {
            "headless": headless,
            "args": launch_args(headless, options.extra_args),
        }
        if options.executable_path:
            launch_kwargs["executable_path"] = options.executable_path
        browser = await playwright.chromium.launch(**launch_kwargs)
        context = await browser.new_context(viewport=None if headless else VISIBLE_VIEWPORT)
        page = await context.new_page()
    except Exception as exc:
        if browser is not None:
            try:
                await browser.close()
            except Exception:
                logger.debug("browser_close_after_launch_failure")
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception:
                logger.debug("playwright_stop_after_launch_failure")
        raise LaunchError(f"Failed to launch browser: {exc}") from exc

    page.set_default_timeout(options.timeout_ms)
    page.set_default_navigation_timeout(options.timeout_ms)
    logger.info(
        "browser_session_created",
        headless=headless,
        executable_path=options.executable_path,
        timeout_ms=options.timeout_ms,
    )
    return PlaywrightBrowserSession(playwright, browser, context, page, options)


SessionFactory = Callable[[], Awaitable[BrowserSession]]


def session_factory_from_settings(settings: VerifierSettings) -> SessionFactory:
    options = LaunchOptions.from_settings(settings)
    headless = settings.effective_headless

    async def factory() -> BrowserSession:
        return await create_session(headless, options)

    return factory


@asynccontextmanager
async def browser_session(factory: SessionFactory) -> AsyncIterator[BrowserSession]:
    """Yield a session and close it on every exit path."""
    session = await factory()
    try:
        yield session
    finally:
        await session.close()
