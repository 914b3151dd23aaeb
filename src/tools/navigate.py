"""Wait for the injected form to land on the bank's challenge page."""

from typing import List, Optional

import structlog
from playwright.async_api import Page, Error as PlaywrightError

from ..core.config import NAVIGATION_FIRST_TIMEOUT, NAVIGATION_RETRY_TIMEOUT
from ..core.errors import ErrorType
from ..core.heuristics import Heuristics
from ..core.logging import get_logger
from ..core.models import NavigationOutcome

logger = get_logger(__name__)

# Timeout constants (in milliseconds)
RETRY_DELAY = 2000  # Pause before the next navigation attempt
STABILIZE_DELAY = 2000  # Let the bank page settle before reading it
SNAPSHOT_LENGTH = 500  # Characters of page content kept for diagnostics

CONTENT_UNAVAILABLE = "[Content unavailable - context destroyed]"

_PAGE_INVENTORY_JS = """
() => ({
  inputs: Array.from(document.querySelectorAll('input')).map(i => ({
    type: i.type, name: i.name, id: i.id, placeholder: i.placeholder, className: i.className
  })),
  buttons: Array.from(document.querySelectorAll('button, input[type="submit"], input[type="button"]')).map(b => ({
    type: b.type, name: b.name, id: b.id, className: b.className,
    text: (b.textContent || '').trim(), value: b.value
  }))
})
"""


def is_challenge_url(url: str, markers: List[str]) -> bool:
    """True if the URL looks like a bank ACS/BKM challenge page."""
    return any(marker in url for marker in markers)


def _left_form(url: str) -> bool:
    return not url.startswith("about:")


async def page_snapshot(page: Page, length: int = SNAPSHOT_LENGTH) -> str:
    """Truncated page HTML, tolerating a destroyed execution context."""
    try:
        content = await page.content()
    except PlaywrightError as e:
        logger.debug("Could not get page content", error=str(e))
        return CONTENT_UNAVAILABLE
    return content[:length]


async def _safe_title(page: Page) -> str:
    try:
        return await page.title()
    except PlaywrightError:
        return ""


async def acquire_challenge_page(
    page: Page,
    heuristics: Heuristics,
    first_timeout: int = NAVIGATION_FIRST_TIMEOUT,
    retry_timeout: int = NAVIGATION_RETRY_TIMEOUT,
    max_attempts: int = 3,
    log: Optional[structlog.BoundLogger] = None,
) -> NavigationOutcome:
    """
    Wait for the page to leave the injected form and reach the bank.

    The first attempt uses a shorter timeout, later attempts a longer one.
    Between attempts the current URL is checked against challenge markers
    and accepted without further waiting when it matches.

    Args:
        page: Page the form was injected into
        heuristics: Challenge URL and error-title markers
        first_timeout: First attempt timeout in milliseconds
        retry_timeout: Later attempts timeout in milliseconds
        max_attempts: Maximum number of attempts
        log: Request-scoped logger

    Returns:
        NavigationOutcome; reached_challenge_page is False on timeout or when
        the bank rendered an error page
    """
    log = log or logger
    markers = heuristics.challenge_url_markers
    reached = False
    attempts = 0
    last_error: Optional[str] = None

    for attempt in range(1, max_attempts + 1):
        attempts = attempt
        timeout = first_timeout if attempt == 1 else retry_timeout
        try:
            log.info("Navigation attempt", attempt=attempt, max_attempts=max_attempts, timeout_ms=timeout)
            await page.wait_for_url(_left_form, wait_until="networkidle", timeout=timeout)
            reached = True
            break
        except PlaywrightError as e:
            last_error = str(e)
            log.warning("Navigation attempt failed", attempt=attempt, error=last_error)
            log.info(
                "Current page state",
                url=page.url,
                title=await _safe_title(page),
                content_preview=await page_snapshot(page),
            )

            if attempt < max_attempts:
                await page.wait_for_timeout(RETRY_DELAY)
                if is_challenge_url(page.url, markers):
                    log.info("Already on bank page", url=page.url)
                    reached = True
                    break

    if not reached:
        current_url = page.url
        snapshot = await page_snapshot(page)
        if is_challenge_url(current_url, markers):
            log.info("Found bank page despite navigation timeout", url=current_url)
        else:
            log.error("Failed to reach bank page", url=current_url, attempts=attempts)
            return NavigationOutcome(
                reached_challenge_page=False,
                current_url=current_url,
                attempts_used=attempts,
                last_error=last_error or "Failed to reach bank page after multiple attempts",
                error_type=ErrorType.NAVIGATION_FAILED,
                page_title=await _safe_title(page),
                content_snapshot=snapshot,
            )

    log.info("Bank page loaded", url=page.url)
    await page.wait_for_timeout(STABILIZE_DELAY)

    try:
        page_url = page.url
        page_title = await page.title()
    except PlaywrightError as e:
        log.error("Error getting page info", error=str(e))
        return NavigationOutcome(
            reached_challenge_page=False,
            current_url=page.url,
            attempts_used=attempts,
            last_error=f"Failed to extract page information: {e}",
            error_type=ErrorType.PAGE_EXTRACTION_ERROR,
        )

    if any(marker in page_title for marker in heuristics.error_title_markers):
        log.error("Received error page", title=page_title, url=page_url)
        return NavigationOutcome(
            reached_challenge_page=False,
            current_url=page_url,
            attempts_used=attempts,
            last_error=f"3D API returned error page: {page_title}",
            error_type=ErrorType.REDIRECT_ERROR,
            page_title=page_title,
            content_snapshot=await page_snapshot(page, 1000),
        )

    await _log_page_inventory(page, log)
    return NavigationOutcome(
        reached_challenge_page=True,
        current_url=page_url,
        attempts_used=attempts,
        page_title=page_title,
    )


async def _log_page_inventory(page: Page, log: structlog.BoundLogger) -> None:
    """Log the inputs and buttons on the bank page to help tune selectors."""
    try:
        inventory = await page.evaluate(_PAGE_INVENTORY_JS)
    except PlaywrightError as e:
        log.debug("Could not extract page inventory", error=str(e))
        return
    inventory = inventory or {}
    log.debug("Bank page inventory", inputs=inventory.get("inputs"), buttons=inventory.get("buttons"))
