"""
Hand the 3DS session back to the merchant after the ACS accepted the OTP.

Banks differ in how (and whether) they redirect to the merchant result
endpoint, so finalize runs an escalating cascade:
1. automatic: wait for the bank's own redirect
2. forced-post, then forced-get: navigate to the result endpoint ourselves
3. fetch-post-retry: raw POST when the navigation was rejected (405)
   - html-auto-submit: render a self-submitting response body
   - manual-form-submit: post a form carrying the session id
4. manual-callback: notify the callback from the page when nothing reached
   the merchant

A matching merchant URL with a non-2xx status is still a success, but with
merchant_finalize False ("partial-finalize").
"""

import asyncio
import re
from typing import Awaitable, Callable, Dict, List, Optional, Pattern, Tuple
from urllib.parse import urlencode

import structlog
from playwright.async_api import Page, Error as PlaywrightError, Response

from ..core.config import RESULT_SESSION_PARAM, Environment, Settings, callback_url, get_settings
from ..core.heuristics import Heuristics
from ..core.logging import get_logger
from ..core.models import CallbackTarget, FinalizeMethod, FinalizeResult, utc_timestamp

logger = get_logger(__name__)

# Timeout constants (in milliseconds)
AUTOMATIC_REDIRECT_TIMEOUT = 8000  # Race window for the bank's own redirect
FORCED_POST_TIMEOUT = 10000  # Navigation after the in-page form POST
FORCED_GET_TIMEOUT = 15000  # Direct GET of the result URL
HTML_RENDER_TIMEOUT = 5000  # Rendering a self-submitting response body
AUTO_SUBMIT_DELAY = 1000  # Let rendered scripts submit
MANUAL_SUBMIT_TIMEOUT = 10000  # Navigation after the manual form

BODY_PREVIEW_LENGTH = 500
MANUAL_CALLBACK_SOURCE = "headless-manual-fallback"

_SUBMIT_FORM_JS = """
(url) => {
  const form = document.createElement('form');
  form.method = 'POST';
  form.action = url;
  form.style.display = 'none';
  document.body.appendChild(form);
  form.submit();
}
"""

_NAVIGATION_STATUS_JS = """
() => {
  const perf = window.performance;
  const entries = perf && perf.getEntriesByType ? perf.getEntriesByType('navigation') : [];
  return (entries[0] && entries[0].responseStatus) || null;
}
"""

_FETCH_POST_JS = """
async ({ url, body, previewLength }) => {
  const response = await fetch(url, {
    method: 'POST',
    headers: {
      'Content-Type': 'application/x-www-form-urlencoded',
      'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8'
    },
    body,
    credentials: 'include'
  });
  return {
    status: response.status,
    statusText: response.statusText,
    headers: Object.fromEntries([...response.headers.entries()]),
    bodyPreview: (await response.text()).substring(0, previewLength)
  };
}
"""

_MANUAL_FORM_JS = """
({ url, field }) => {
  const sessionId = new URL(url).searchParams.get(field);
  if (!sessionId) {
    return { submitted: false, reason: 'no-sessionid' };
  }
  const form = document.createElement('form');
  form.method = 'POST';
  form.action = url;
  form.style.display = 'none';
  const input = document.createElement('input');
  input.type = 'hidden';
  input.name = field;
  input.value = sessionId;
  form.appendChild(input);
  document.body.appendChild(form);
  form.submit();
  return { submitted: true };
}
"""

_NOTIFY_CALLBACK_JS = """
async ({ url, payload }) => {
  try {
    const response = await fetch(url, {
      method: 'POST',
      headers: { 'Content-Type': 'application/json' },
      body: JSON.stringify(payload)
    });
    return { delivered: true, status: response.status };
  } catch (e) {
    return { delivered: false, error: e.message };
  }
}
"""


def _compile(patterns: List[str]) -> List[Pattern]:
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern, re.IGNORECASE))
        except re.error as e:
            logger.warning("Ignoring invalid merchant pattern", pattern=pattern, error=str(e))
    return compiled


def _is_2xx(status: Optional[int]) -> bool:
    return status is not None and 200 <= status < 300


class MerchantMatcher:
    """Recognizes merchant result/callback URLs."""

    def __init__(self, heuristics: Heuristics):
        self.endpoints = _compile(heuristics.merchant_url_patterns)
        self.result_markers = _compile(heuristics.merchant_result_markers)

    def is_merchant_url(self, url: str) -> bool:
        return any(p.search(url or "") for p in self.endpoints)

    def is_result_url(self, url: str) -> bool:
        """Merchant endpoints plus bank-side result pages."""
        return self.is_merchant_url(url) or any(p.search(url or "") for p in self.result_markers)

    def is_merchant_response(self, response: Response) -> bool:
        return self.is_merchant_url(response.url)


async def _race(waiters: Dict[str, Awaitable], action: Optional[Callable[[], Awaitable]] = None) -> Optional[str]:
    """Wait until one of the named waiters fires and abandon the rest.

    The waiters are armed before ``action`` runs. Returns the name of the
    waiter that fired, or None when every waiter ended with an error
    (usually a timeout).
    """
    tasks = {asyncio.ensure_future(waiter): name for name, waiter in waiters.items()}
    try:
        if action is not None:
            await asyncio.sleep(0)  # let the waiters register their listeners
            await action()
        pending = set(tasks)
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                error = task.exception()
                if error is None:
                    return tasks[task]
                logger.debug("Wait ended without event", waiter=tasks[task], error=str(error))
        return None
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def _merchant_waiters(page: Page, matcher: MerchantMatcher, start_url: str, timeout: int) -> Dict[str, Awaitable]:
    """Waiters for a main-frame move to a new merchant URL or a merchant response."""

    def moved_to_merchant(frame) -> bool:
        return frame.parent_frame is None and frame.url != start_url and matcher.is_merchant_url(frame.url)

    return {
        "navigation": page.wait_for_event("framenavigated", predicate=moved_to_merchant, timeout=timeout),
        "response": page.wait_for_event("response", predicate=matcher.is_merchant_response, timeout=timeout),
    }


def _reached_merchant(fired: Optional[str], start_url: str, current_url: str, matcher: MerchantMatcher) -> bool:
    # An unchanged URL never counts: the page may already be on the result URL
    if fired is not None:
        return True
    return current_url != start_url and matcher.is_merchant_url(current_url)


def has_auto_submit(body: str, markers: List[str]) -> bool:
    """True if an HTML body looks like it will submit or redirect itself."""
    return any(marker in body for marker in markers)


async def _await_automatic_redirect(
    page: Page, matcher: MerchantMatcher, log: structlog.BoundLogger
) -> Optional[FinalizeResult]:
    log.info("Waiting for automatic redirect to merchant", timeout_ms=AUTOMATIC_REDIRECT_TIMEOUT)
    fired = await _race({
        "load": page.wait_for_event("load", timeout=AUTOMATIC_REDIRECT_TIMEOUT),
        "response": page.wait_for_event(
            "response", predicate=matcher.is_merchant_response, timeout=AUTOMATIC_REDIRECT_TIMEOUT
        ),
    })
    final_url = page.url
    if matcher.is_merchant_url(final_url):
        log.info("Already at merchant result page", url=final_url)
        return FinalizeResult(
            success=True,
            merchant_finalize=True,
            final_url=final_url,
            method=FinalizeMethod.AUTOMATIC,
            source="automatic",
        )
    log.info("No automatic redirect detected", url=final_url, event_fired=fired)
    return None


async def _navigation_status(page: Page, response: Optional[Response], log: structlog.BoundLogger) -> Optional[int]:
    if response is not None:
        return response.status
    try:
        return await page.evaluate(_NAVIGATION_STATUS_JS)
    except PlaywrightError as e:
        log.debug("Could not get response status", error=str(e))
        return None


async def _render_auto_submit(
    page: Page, body: str, status: int, matcher: MerchantMatcher, log: structlog.BoundLogger
) -> Optional[FinalizeResult]:
    log.info("Rendering response body to let it auto-submit")
    start_url = page.url

    async def render():
        try:
            await page.set_content(body, wait_until="domcontentloaded", timeout=HTML_RENDER_TIMEOUT)
        except PlaywrightError as e:
            # A body that submits immediately interrupts set_content
            log.warning("HTML render interrupted", error=str(e))

    fired = await _race(
        _merchant_waiters(page, matcher, start_url, HTML_RENDER_TIMEOUT + AUTO_SUBMIT_DELAY), action=render
    )
    current_url = page.url
    if _reached_merchant(fired, start_url, current_url, matcher):
        log.info("Auto-submit navigation completed", url=current_url, event_fired=fired)
        return FinalizeResult(
            success=True,
            merchant_finalize=True,
            final_url=current_url,
            method=FinalizeMethod.HTML_AUTO_SUBMIT,
            http_status=status,
            source="html-auto-submit",
        )
    log.info("Auto-submit did not reach merchant", url=current_url)
    return None


async def _submit_manual_form(
    page: Page, result_url: str, status: int, matcher: MerchantMatcher, log: structlog.BoundLogger
) -> Optional[FinalizeResult]:
    log.info("Creating manual form submission")
    start_url = page.url
    try:
        submitted = await page.evaluate(_MANUAL_FORM_JS, {"url": result_url, "field": RESULT_SESSION_PARAM})
    except PlaywrightError as e:
        log.warning("Manual form submit failed", error=str(e))
        return None

    if not submitted or not submitted.get("submitted"):
        log.warning("Manual form not submitted", reason=(submitted or {}).get("reason"))
        return None

    fired = await _race(_merchant_waiters(page, matcher, start_url, MANUAL_SUBMIT_TIMEOUT))
    current_url = page.url
    if _reached_merchant(fired, start_url, current_url, matcher):
        log.info("Manual submit navigation completed", url=current_url, event_fired=fired)
        return FinalizeResult(
            success=True,
            merchant_finalize=True,
            final_url=current_url,
            method=FinalizeMethod.MANUAL_FORM_SUBMIT,
            http_status=status,
            source="manual-form-submit",
        )
    log.warning("Manual submit did not reach merchant", url=current_url)
    return None


async def _fetch_post_retry(
    page: Page,
    result_url: str,
    final_url: str,
    session_id: str,
    heuristics: Heuristics,
    matcher: MerchantMatcher,
    log: structlog.BoundLogger,
) -> Tuple[Optional[int], Optional[FinalizeResult]]:
    """POST the session id with fetch; returns (status, result if finalized)."""
    log.info("Got 405 or suspicious response, retrying with fetch POST")
    try:
        post = await page.evaluate(
            _FETCH_POST_JS,
            {
                "url": result_url,
                "body": urlencode({RESULT_SESSION_PARAM: session_id}),
                "previewLength": BODY_PREVIEW_LENGTH,
            },
        )
    except PlaywrightError as e:
        log.warning("Fetch POST retry failed", error=str(e))
        return None, None

    status = post.get("status")
    preview = post.get("bodyPreview") or ""
    log.info("Fetch POST result", status=status, body_preview=preview[:200])

    if not _is_2xx(status):
        return status, None

    if has_auto_submit(preview, heuristics.auto_submit_markers):
        result = await _render_auto_submit(page, preview, status, matcher, log)
        if result:
            return status, result

    result = await _submit_manual_form(page, result_url, status, matcher, log)
    if result:
        return status, result

    log.info("Successful POST finalize", status=status)
    return status, FinalizeResult(
        success=True,
        merchant_finalize=True,
        final_url=final_url,
        method=FinalizeMethod.FETCH_POST_RETRY,
        http_status=status,
        source="fetch-post-retry",
    )


async def _force_result_navigation(
    page: Page,
    result_url: str,
    session_id: str,
    heuristics: Heuristics,
    matcher: MerchantMatcher,
    log: structlog.BoundLogger,
) -> Optional[FinalizeResult]:
    log.info("Forcing navigation to merchant result", url=result_url)
    method = FinalizeMethod.FORCED_POST
    try:
        async with page.expect_navigation(wait_until="domcontentloaded", timeout=FORCED_POST_TIMEOUT) as navigation:
            await page.evaluate(_SUBMIT_FORM_JS, result_url)
        response = await navigation.value
        log.info("POST submission successful")
    except PlaywrightError as e:
        log.warning("POST navigation failed, trying GET", error=str(e))
        method = FinalizeMethod.FORCED_GET
        response = await page.goto(result_url, wait_until="domcontentloaded", timeout=FORCED_GET_TIMEOUT)

    final_url = page.url
    http_status = await _navigation_status(page, response, log)
    log.info("Forced navigation completed", url=final_url, method=method.value, status=http_status)

    suspicious = (
        http_status == 405
        or "405" in final_url
        or (method is FinalizeMethod.FORCED_GET and final_url == result_url)
    )
    if suspicious:
        status, result = await _fetch_post_retry(page, result_url, final_url, session_id, heuristics, matcher, log)
        if result:
            return result
        if status is not None:
            http_status = status
            method = FinalizeMethod.FETCH_POST_RETRY

    if not matcher.is_result_url(final_url):
        log.warning("Forced navigation did not reach merchant result page", url=final_url, status=http_status)
        return None

    if http_status is None or _is_2xx(http_status):
        log.info("Reached merchant result page", method=method.value, status=http_status)
        return FinalizeResult(
            success=True,
            merchant_finalize=True,
            final_url=final_url,
            method=method,
            http_status=http_status,
            source="forced-navigation",
        )

    log.warning("Reached merchant URL with non-2xx status", status=http_status, url=final_url)
    return FinalizeResult(
        success=True,
        merchant_finalize=False,
        final_url=final_url,
        method=method,
        http_status=http_status,
        source="partial-finalize",
    )


async def _notify_callback_from_page(
    page: Page, session_id: str, callback: CallbackTarget, log: structlog.BoundLogger
) -> Optional[FinalizeResult]:
    url = callback_url(callback.base_url)
    payload = {
        "runKey": callback.run_key,
        "status": "success",
        "threeDSessionId": session_id,
        "acsSuccess": True,
        "merchantFinalize": False,
        "finalizeMethod": "manual",
        "httpStatus": None,
        "source": MANUAL_CALLBACK_SOURCE,
        "timestamp": utc_timestamp(),
    }
    log.info("Manually notifying callback", url=url)
    try:
        outcome = await page.evaluate(_NOTIFY_CALLBACK_JS, {"url": url, "payload": payload})
    except PlaywrightError as e:
        log.error("Manual callback notification failed", url=url, error=str(e))
        return None

    if not outcome or not outcome.get("delivered"):
        log.error("Manual callback notification failed", url=url, error=(outcome or {}).get("error"))
        return None

    log.info("Notified callback manually", url=url, status=outcome.get("status"))
    return FinalizeResult(
        success=True,
        merchant_finalize=False,
        final_url=url,
        method=FinalizeMethod.MANUAL_CALLBACK,
        http_status=outcome.get("status"),
        source="manual-callback",
    )


async def finalize_session(
    page: Page,
    session_id: str,
    environment: Environment,
    heuristics: Heuristics,
    callback: Optional[CallbackTarget] = None,
    settings: Optional[Settings] = None,
    log: Optional[structlog.BoundLogger] = None,
) -> FinalizeResult:
    """
    Run the finalize cascade until some path reaches or notifies the merchant.

    Args:
        page: Page left on the bank after ACS success
        session_id: 3DS session id
        environment: Selects the merchant result host
        heuristics: Merchant URL patterns and auto-submit markers
        callback: Callback target for the last-resort notification
        settings: Settings providing bank hosts
        log: Request-scoped logger

    Returns:
        FinalizeResult; success False only when every path failed
    """
    log = log or logger
    settings = settings or get_settings()
    matcher = MerchantMatcher(heuristics)
    log.info("Starting finalize process")

    result = await _await_automatic_redirect(page, matcher, log)
    if result:
        return result

    result_url = settings.result_url(environment, session_id)
    try:
        result = await _force_result_navigation(page, result_url, session_id, heuristics, matcher, log)
        if result:
            return result
    except PlaywrightError as e:
        log.warning("Forced navigation failed", error=str(e))

    if callback and callback.enabled:
        result = await _notify_callback_from_page(page, session_id, callback, log)
        if result:
            return result

    final_url = page.url
    log.error("Finalize failed", url=final_url)
    return FinalizeResult(
        success=False,
        merchant_finalize=False,
        final_url=final_url,
        method=FinalizeMethod.NONE,
        source="finalize-failed",
    )
