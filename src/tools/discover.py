"""Find the OTP input and submit control on an ACS page of unknown markup."""

from typing import Iterable, Optional

import structlog
from playwright.async_api import Page, Error as PlaywrightError, TimeoutError as PlaywrightTimeout

from ..core.config import SELECTOR_TIMEOUT_DEFAULT
from ..core.heuristics import Heuristics
from ..core.logging import get_logger

logger = get_logger(__name__)

# Timeout constants (in milliseconds)
LATE_VISIBLE_DELAY = 3000  # Extra wait for submit buttons revealed after typing

# Visible means rendered with height and not hidden by style; submit controls
# must also be enabled.
INTERACTABLE_JS = """
(el, requireEnabled) => {
  const style = window.getComputedStyle(el);
  const visible = style.display !== 'none' && style.visibility !== 'hidden' && el.offsetHeight > 0;
  return visible && (!requireEnabled || !el.disabled);
}
"""


async def is_interactable(page: Page, selector: str, require_enabled: bool = False) -> bool:
    """Check the first element matching selector is visible (and enabled if required)."""
    handle = await page.query_selector(selector)
    if not handle:
        return False
    return bool(await handle.evaluate(INTERACTABLE_JS, require_enabled))


async def find_visible(
    page: Page,
    candidates: Iterable[str],
    require_enabled: bool = False,
    timeout: int = SELECTOR_TIMEOUT_DEFAULT,
    late_visible: Iterable[str] = (),
    log: Optional[structlog.BoundLogger] = None,
) -> Optional[str]:
    """
    Return the first candidate selector whose element is present and interactable.

    Candidates are tried in order. Presence alone never qualifies: a match
    that is hidden, has no rendered height, or (for submit controls) is
    disabled is skipped and the search continues.

    Args:
        page: Page to search
        candidates: Ordered selectors
        require_enabled: Also require the element not to be disabled
        timeout: Per-candidate presence timeout in milliseconds
        late_visible: Selectors given one extra wait before being skipped
        log: Request-scoped logger

    Returns:
        Matching selector, or None
    """
    log = log or logger
    late_visible = set(late_visible)

    for selector in candidates:
        try:
            handle = await page.wait_for_selector(selector, state="attached", timeout=timeout)
        except PlaywrightTimeout:
            log.debug("Selector not found", selector=selector)
            continue
        except PlaywrightError as e:
            log.debug("Selector rejected", selector=selector, error=str(e))
            continue

        if not handle:
            continue

        try:
            if await handle.evaluate(INTERACTABLE_JS, require_enabled):
                log.info("Found visible element", selector=selector)
                return selector

            log.debug("Found but hidden or disabled", selector=selector)
            if selector in late_visible:
                log.info("Waiting for element to become visible", selector=selector)
                await page.wait_for_timeout(LATE_VISIBLE_DELAY)
                if await is_interactable(page, selector, require_enabled):
                    log.info("Element now visible", selector=selector)
                    return selector
        except PlaywrightError as e:
            log.debug("Visibility check failed", selector=selector, error=str(e))

    return None


async def find_otp_input(
    page: Page,
    heuristics: Heuristics,
    challenge_selector: Optional[str] = None,
    timeout: int = SELECTOR_TIMEOUT_DEFAULT,
    log: Optional[structlog.BoundLogger] = None,
) -> Optional[str]:
    """Operator selector first, then bank-specific markup, then generic inputs."""
    log = log or logger
    candidates = heuristics.otp_candidates(challenge_selector)
    log.info("Searching for OTP input", candidates=len(candidates))
    return await find_visible(page, candidates, timeout=timeout, log=log)


async def find_submit_control(
    page: Page,
    heuristics: Heuristics,
    submit_selector: Optional[str] = None,
    timeout: int = SELECTOR_TIMEOUT_DEFAULT,
    log: Optional[structlog.BoundLogger] = None,
) -> Optional[str]:
    """Search submit controls after the OTP is typed, since some banks enable them late."""
    log = log or logger
    candidates = heuristics.submit_candidates(submit_selector)
    log.info("Searching for submit button", candidates=len(candidates))
    return await find_visible(
        page,
        candidates,
        require_enabled=True,
        timeout=timeout,
        late_visible=heuristics.late_visible_submit_selectors,
        log=log,
    )


async def check_success_pattern(
    page: Page,
    success_pattern: str,
    timeout: int,
    log: Optional[structlog.BoundLogger] = None,
) -> bool:
    """True if the success selector appears within timeout."""
    log = log or logger
    try:
        await page.wait_for_selector(success_pattern, state="attached", timeout=timeout)
    except PlaywrightError as e:
        log.debug("Success pattern not found", pattern=success_pattern, error=str(e))
        return False
    log.info("Success pattern found", pattern=success_pattern)
    return True
