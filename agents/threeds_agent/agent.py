"""3DS challenge pipeline orchestrator.

One request owns one browser session from launch to release:
inject form -> reach bank page -> find OTP input -> submit OTP ->
classify outcome -> finalize with merchant (when the ACS leg needs it).

Stage failures come back as data and end in an AutomationResult with
resultCode 1. Anything unexpected is caught here and reported with
resultCode 500; the browser session is released either way.
"""

from typing import Optional

import structlog
from playwright.async_api import Page

from src.core.browser import browser_session
from src.core.config import Settings, get_settings
from src.core.errors import BrowserLaunchError, ErrorType
from src.core.heuristics import Heuristics, get_heuristics
from src.core.logging import request_logger
from src.core.models import AutomationRequest, AutomationResult, ChallengeResult, NavigationOutcome
from src.tools.challenge import determine_outcome, enter_otp, submit_challenge
from src.tools.classify import ContentClassifier
from src.tools.discover import check_success_pattern, find_otp_input
from src.tools.finalize import finalize_session
from src.tools.inject import inject_form
from src.tools.navigate import acquire_challenge_page

NAVIGATION_FAILED_MESSAGE = "Failed to reach bank page after multiple attempts"
NO_OTP_INPUT_MESSAGE = "No OTP input found and no success pattern"
SUCCESS_NOT_CONFIRMED_MESSAGE = "Success not confirmed"

# Timeout constants (in milliseconds)
SKIPPED_CHALLENGE_TIMEOUT = 5000  # Success pattern check when the ACS showed no OTP input


def _navigation_failure(outcome: NavigationOutcome) -> AutomationResult:
    if outcome.error_type is ErrorType.NAVIGATION_FAILED:
        error = NAVIGATION_FAILED_MESSAGE
    else:
        error = outcome.last_error or NAVIGATION_FAILED_MESSAGE
    return AutomationResult(
        success=False,
        final_url=outcome.current_url,
        error=error,
        error_type=outcome.error_type.value if outcome.error_type else None,
        result_code=1,
        page_title=outcome.page_title or None,
        final_content=outcome.content_snapshot,
    )


async def _finalize_challenge(
    page: Page,
    request: AutomationRequest,
    challenge: ChallengeResult,
    settings: Settings,
    heuristics: Heuristics,
    log: structlog.BoundLogger,
) -> AutomationResult:
    """Turn the ACS outcome into the final result, running finalize when needed."""
    if not challenge.acs_success:
        error_details = challenge.error_text or None
        return AutomationResult(
            success=False,
            final_url=challenge.final_url,
            error=error_details or SUCCESS_NOT_CONFIRMED_MESSAGE,
            error_details=error_details,
            error_type=(ErrorType.CHALLENGE_ERROR if error_details else ErrorType.SUCCESS_NOT_CONFIRMED).value,
            result_code=1,
            acs_success=False,
        )

    if not (challenge.needs_finalize and settings.finalize_enabled):
        return AutomationResult(
            success=True,
            final_url=challenge.final_url,
            result_code=0,
            acs_success=True,
        )

    finalize = await finalize_session(
        page,
        request.session_id,
        request.environment,
        heuristics,
        callback=request.callback,
        settings=settings,
        log=log,
    )
    if finalize.success:
        log.info(
            "Finalize complete" if finalize.merchant_finalize else "Finalize partial",
            method=finalize.method.value,
            source=finalize.source,
            status=finalize.http_status,
            url=finalize.final_url,
        )
    else:
        # ACS passed; the missing merchant leg is reported, not failed
        log.warning("Finalize failed after ACS success", url=finalize.final_url)

    return AutomationResult(
        success=True,
        final_url=finalize.final_url if finalize.success else challenge.final_url,
        result_code=0,
        acs_success=True,
        merchant_finalize=finalize.merchant_finalize,
        finalize_method=finalize.method.value,
        http_status=finalize.http_status,
    )


async def _run_pipeline(
    page: Page,
    request: AutomationRequest,
    settings: Settings,
    heuristics: Heuristics,
    log: structlog.BoundLogger,
) -> AutomationResult:
    await inject_form(
        page,
        settings.initiation_url(request.environment),
        request.session_id,
        request.context_fields,
        log=log,
    )

    navigation = await acquire_challenge_page(
        page,
        heuristics,
        first_timeout=settings.navigation_first_timeout_ms,
        retry_timeout=settings.navigation_retry_timeout_ms,
        max_attempts=settings.navigation_max_attempts,
        log=log,
    )
    if not navigation.reached_challenge_page:
        return _navigation_failure(navigation)

    otp_selector = await find_otp_input(
        page, heuristics, request.challenge_selector, timeout=settings.selector_timeout_ms, log=log
    )
    if not otp_selector:
        # The ACS may have skipped the challenge entirely
        if request.success_pattern and await check_success_pattern(
            page, request.success_pattern, SKIPPED_CHALLENGE_TIMEOUT, log
        ):
            log.info("Success pattern found without OTP")
            return AutomationResult(success=True, final_url=page.url, result_code=0, acs_success=True)
        log.error("No OTP input found")
        return AutomationResult(
            success=False,
            final_url=page.url,
            error=NO_OTP_INPUT_MESSAGE,
            error_type=ErrorType.OTP_INPUT_NOT_FOUND.value,
            result_code=1,
        )

    await enter_otp(page, otp_selector, request.otp, log=log)
    await submit_challenge(
        page,
        heuristics,
        request.submit_selector,
        wait_for_navigation=not request.success_pattern,
        timeout=request.timeout_ms,
        selector_timeout=settings.selector_timeout_ms,
        log=log,
    )

    challenge = await determine_outcome(
        page,
        heuristics,
        success_pattern=request.success_pattern,
        timeout=request.timeout_ms,
        classifier=ContentClassifier(heuristics.keywords),
        log=log,
    )
    return await _finalize_challenge(page, request, challenge, settings, heuristics, log)


async def perform_automation(
    request: AutomationRequest,
    settings: Optional[Settings] = None,
    heuristics: Optional[Heuristics] = None,
) -> AutomationResult:
    """
    Run the full 3DS challenge for one request.

    Args:
        request: Validated automation request
        settings: Settings override (defaults to process settings)
        heuristics: Heuristics override (defaults to process heuristics)

    Returns:
        AutomationResult; never raises
    """
    settings = settings or get_settings()
    heuristics = heuristics or get_heuristics()
    log = request_logger(__name__, request.session_id, request.callback.run_key)

    log.info(
        "Starting 3D automation",
        environment=request.environment.value,
        timeout_ms=request.timeout_ms,
        has_success_pattern=bool(request.success_pattern),
    )

    try:
        async with browser_session(log, heuristics.bank_response_markers, settings=settings) as page:
            result = await _run_pipeline(page, request, settings, heuristics, log)
    except BrowserLaunchError as e:
        log.error("Browser launch failed", error=str(e))
        return AutomationResult(
            success=False,
            error=str(e),
            error_type=ErrorType.BROWSER_LAUNCH_FAILED.value,
            result_code=500,
        )
    except Exception as e:
        log.error("Automation failed", error=str(e), exc_info=True)
        return AutomationResult(
            success=False,
            error=str(e),
            error_type=ErrorType.UNEXPECTED_ERROR.value,
            result_code=500,
        )

    log.info(
        "Automation completed",
        success=result.success,
        final_url=result.final_url,
        error=result.error,
        result_code=result.result_code,
    )
    return result
