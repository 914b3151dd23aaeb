"""Playwright browser session owned by a single automation request."""

from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

import structlog
from playwright.async_api import (
    async_playwright,
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    Response,
)

from .config import Settings, get_settings
from .errors import BrowserLaunchError
from .logging import get_logger

logger = get_logger(__name__)

# Flags for running Chromium inside a container without OS sandboxing or GPU
LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
]

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

EXTRA_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "tr-TR,tr;q=0.9,en-US;q=0.8,en;q=0.7",
}


class BrowserSession:
    """One browser process and one page for the lifetime of one request."""

    def __init__(
        self,
        log: Optional[structlog.BoundLogger] = None,
        response_markers: Optional[List[str]] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.log = log or logger
        self.response_markers = response_markers or []
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self._released = False
        self._listening = False

    async def acquire(self) -> Page:
        """
        Start Playwright, launch Chromium and open the request's page.

        Returns:
            The page all pipeline stages drive

        Raises:
            BrowserLaunchError: If the browser could not be started
        """
        if self.page:
            return self.page

        self.log.info("Launching browser", headless=self.settings.headless)

        try:
            self.playwright = await async_playwright().start()
            self.browser = await self.playwright.chromium.launch(
                headless=self.settings.headless,
                timeout=self.settings.browser_launch_timeout,
                args=LAUNCH_ARGS,
            )
            self.context = await self.browser.new_context(
                user_agent=USER_AGENT,
                extra_http_headers=EXTRA_HEADERS,
                locale="tr-TR",
                java_script_enabled=True,
                accept_downloads=False,
            )
            self.page = await self.context.new_page()
        except (PlaywrightError, OSError) as e:
            self.log.error("Browser launch failed", error=str(e))
            raise BrowserLaunchError(f"Browser launch failed: {e}") from e

        if self.response_markers:
            self.page.on("response", self._log_bank_response)
            self._listening = True

        self.log.info("Browser started")
        return self.page

    async def release(self) -> None:
        """Close page, context, browser and driver. Close errors are logged, not raised."""
        if self._released:
            return
        self._released = True

        if self.page and self._listening:
            self.page.remove_listener("response", self._log_bank_response)
            self._listening = False

        for name, closer in (
            ("page", self.page.close if self.page else None),
            ("context", self.context.close if self.context else None),
            ("browser", self.browser.close if self.browser else None),
            ("playwright", self.playwright.stop if self.playwright else None),
        ):
            if closer is None:
                continue
            try:
                await closer()
            except Exception as e:
                self.log.warning("Failed to close browser resource", resource=name, error=str(e))

        self.page = None
        self.context = None
        self.browser = None
        self.playwright = None
        self.log.info("Browser stopped")

    def _log_bank_response(self, response: Response) -> None:
        url = response.url
        if any(marker in url for marker in self.response_markers):
            self.log.debug(
                "Bank response received",
                url=url,
                status=response.status,
                content_type=response.headers.get("content-type"),
            )


@asynccontextmanager
async def browser_session(
    log: Optional[structlog.BoundLogger] = None,
    response_markers: Optional[List[str]] = None,
    settings: Optional[Settings] = None,
) -> AsyncIterator[Page]:
    """
    Scoped browser acquisition.

    Usage:
        async with browser_session(log) as page:
            # ... drive page
    """
    session = BrowserSession(log=log, response_markers=response_markers, settings=settings)
    try:
        yield await session.acquire()
    finally:
        await session.release()
