"""
Challenge completion on the bank's ACS page.

Types the OTP, submits it, and decides whether the ACS accepted it. Outcome
precedence without a success pattern: visible error evidence first, then
success keywords in the URL, then success keywords in the page text, then
bank completion URLs. No signal at all is a failure.
"""

from typing import Optional

import structlog
from playwright.async_api import Page, Error as PlaywrightError, TimeoutError as PlaywrightTimeout

from ..core.config import SELECTOR_TIMEOUT_DEFAULT
from ..core.heuristics import Heuristics
from ..core.logging import get_logger
from ..core.models import ChallengeResult, ChallengeSignal
from .classify import ContentClassifier, ErrorIndicator, UrlSignal
from .discover import check_success_pattern, find_submit_control

logger = get_logger(__name__)

# Timeout constants (in milliseconds)
TYPING_DELAY = 50  # Delay between keystrokes
POST_TYPING_DELAY = 1000  # Let input listeners react before submitting
SUCCESS_RECHECK_TIMEOUT = 2000  # Last look for the success pattern after an error

CONTENT_PREVIEW_LENGTH = 500

# First visible, non-empty element matching any selector, text trimmed
_ERROR_SCAN_JS = """
(selectors) => {
  for (const selector of selectors) {
    let elements;
    try {
      elements = document.querySelectorAll(selector);
    } catch (e) {
      continue;
    }
    for (const el of elements) {
      const text = (el.textContent || '').trim();
      if (text && el.offsetHeight > 0 && el.offsetWidth > 0) {
        return { text, selector };
      }
    }
  }
  return null;
}
"""

_BODY_TEXT_JS = "() => document.body ? document.body.innerText : ''"


async def enter_otp(
    page: Page,
    otp_selector: str,
    otp: str,
    log: Optional[structlog.BoundLogger] = None,
) -> None:
    """Type the OTP one key at a time so the page's input listeners fire."""
    log = log or logger
    log.info("Filling OTP", selector=otp_selector, length=len(otp))
    await page.click(otp_selector)
    await page.type(otp_selector, otp, delay=TYPING_DELAY)
    await page.wait_for_timeout(POST_TYPING_DELAY)


async def _press_submit(page: Page, submit_selector: Optional[str], log: structlog.BoundLogger) -> None:
    if submit_selector:
        log.info("Clicking submit button", selector=submit_selector)
        await page.click(submit_selector)
    else:
        log.info("No submit button found, pressing Enter")
        await page.keyboard.press("Enter")


async def submit_challenge(
    page: Page,
    heuristics: Heuristics,
    submit_selector: Optional[str] = None,
    wait_for_navigation: bool = True,
    timeout: int = 30000,
    selector_timeout: int = SELECTOR_TIMEOUT_DEFAULT,
    log: Optional[structlog.BoundLogger] = None,
) -> Optional[str]:
    """
    Find the submit control and submit the challenge.

    Args:
        page: ACS page with the OTP already typed
        heuristics: Submit selector candidates
        submit_selector: Operator selector, tried first
        wait_for_navigation: Wait for the resulting navigation to go network idle
        timeout: Navigation wait in milliseconds
        selector_timeout: Per-candidate discovery timeout in milliseconds
        log: Request-scoped logger

    Returns:
        The submit selector that was clicked, or None if Enter was pressed
    """
    log = log or logger
    selector = await find_submit_control(page, heuristics, submit_selector, timeout=selector_timeout, log=log)

    if not wait_for_navigation:
        await _press_submit(page, selector, log)
        return selector

    try:
        async with page.expect_navigation(wait_until="networkidle", timeout=timeout):
            await _press_submit(page, selector, log)
        log.info("Navigation completed", url=page.url)
    except PlaywrightTimeout:
        log.info("Navigation timeout, checking current state", url=page.url)
    return selector


async def scan_for_errors(
    page: Page,
    heuristics: Heuristics,
    classifier: ContentClassifier,
    page_text: str,
    log: Optional[structlog.BoundLogger] = None,
) -> Optional[ErrorIndicator]:
    """Visible error elements win over error keywords in the page text."""
    log = log or logger
    found = await page.evaluate(_ERROR_SCAN_JS, heuristics.error_selectors)
    if found and found.get("text"):
        return ErrorIndicator(text=found["text"], source=found.get("selector", ""))
    return classifier.text_error(page_text)


async def _wait_for_success_pattern(
    page: Page, success_pattern: str, timeout: int, log: structlog.BoundLogger
) -> ChallengeResult:
    log.info("Waiting for success pattern", pattern=success_pattern, timeout_ms=timeout)
    try:
        await page.wait_for_selector(success_pattern, state="attached", timeout=timeout)
    except PlaywrightTimeout:
        log.warning("Success pattern not found", pattern=success_pattern)
        return ChallengeResult(acs_success=False, final_url=page.url)
    log.info("Success pattern found", pattern=success_pattern)
    return ChallengeResult(acs_success=True, final_url=page.url, signal=ChallengeSignal.SUCCESS_PATTERN)


async def _classify_page(
    page: Page, heuristics: Heuristics, classifier: ContentClassifier, log: structlog.BoundLogger
) -> ChallengeResult:
    final_url = page.url
    page_text = await page.evaluate(_BODY_TEXT_JS) or ""
    log.info("Page content after submit", url=final_url, content_preview=page_text[:CONTENT_PREVIEW_LENGTH])

    indicator = await scan_for_errors(page, heuristics, classifier, page_text, log)
    if indicator:
        log.warning("Error detected on page", error_text=indicator.text, found_via=indicator.source)
        return ChallengeResult(
            acs_success=False, final_url=final_url, error_text=indicator.text, signal=ChallengeSignal.ERROR
        )

    url_signal = classifier.url_signal(final_url)
    if url_signal is UrlSignal.SUCCESS:
        log.info("Success detected from URL", url=final_url)
        return ChallengeResult(acs_success=True, final_url=final_url, signal=ChallengeSignal.URL)

    if classifier.text_success(page_text):
        log.info("Success detected from content")
        return ChallengeResult(acs_success=True, final_url=final_url, signal=ChallengeSignal.CONTENT)

    if url_signal is UrlSignal.BANK_COMPLETION:
        log.info("Success detected from bank completion URL", url=final_url)
        return ChallengeResult(acs_success=True, final_url=final_url, signal=ChallengeSignal.BANK_URL)

    log.warning("No clear success indicators found", url=final_url)
    return ChallengeResult(acs_success=False, final_url=final_url)


async def determine_outcome(
    page: Page,
    heuristics: Heuristics,
    success_pattern: Optional[str] = None,
    timeout: int = 30000,
    classifier: Optional[ContentClassifier] = None,
    log: Optional[structlog.BoundLogger] = None,
) -> ChallengeResult:
    """
    Decide whether the ACS accepted the OTP.

    With a success pattern only that selector counts. Without one the page
    is classified from error evidence, URL and text, in that order.

    Args:
        page: Page after submission (navigation already awaited)
        heuristics: Error selectors and keyword tables
        success_pattern: Selector whose presence is definitive success
        timeout: Success pattern wait in milliseconds
        classifier: Keyword classifier, built from heuristics if omitted
        log: Request-scoped logger

    Returns:
        ChallengeResult
    """
    log = log or logger
    classifier = classifier or ContentClassifier(heuristics.keywords)

    try:
        if success_pattern:
            return await _wait_for_success_pattern(page, success_pattern, timeout, log)
        return await _classify_page(page, heuristics, classifier, log)
    except PlaywrightError as e:
        log.error("Exception during result processing", error=str(e))
        final_url = page.url
        if success_pattern and await check_success_pattern(page, success_pattern, SUCCESS_RECHECK_TIMEOUT, log):
            return ChallengeResult(acs_success=True, final_url=final_url, signal=ChallengeSignal.SUCCESS_PATTERN)
        return ChallengeResult(acs_success=False, final_url=final_url)
