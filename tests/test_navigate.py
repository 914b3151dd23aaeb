"""Tests for reaching the bank challenge page."""

from playwright.async_api import Error as PlaywrightError

from conftest import BANK_URL, FakePage
from src.core.errors import ErrorType
from src.tools.navigate import (
    CONTENT_UNAVAILABLE,
    RETRY_DELAY,
    STABILIZE_DELAY,
    acquire_challenge_page,
    is_challenge_url,
    page_snapshot,
)


def test_is_challenge_url(heuristics):
    markers = heuristics.challenge_url_markers

    assert is_challenge_url("https://goguvenliodeme.bkm.com.tr/troy/approve", markers)
    assert is_challenge_url("https://bank.example.com/acs/challenge", markers)
    assert is_challenge_url("https://bank.example.com/3dsecure/otp", markers)
    assert not is_challenge_url("https://merchant.example.com/checkout", markers)


async def test_reaches_bank_page_on_first_attempt(heuristics):
    """Leaving the injected form and settling counts as reaching the bank."""
    page = FakePage(url=BANK_URL)
    page.page_title = "3D Secure"

    outcome = await acquire_challenge_page(page, heuristics, first_timeout=10, retry_timeout=10)

    assert outcome.reached_challenge_page is True
    assert outcome.attempts_used == 1
    assert outcome.current_url == BANK_URL
    assert outcome.page_title == "3D Secure"
    assert STABILIZE_DELAY in page.waits


async def test_bank_url_accepted_between_attempts(heuristics):
    """A challenge URL seen during the retry pause is accepted without another wait."""
    page = FakePage(url="about:blank")
    page.page_title = "OTP"

    def land_on_bank(p, timeout):
        if timeout == RETRY_DELAY:
            p.url = BANK_URL

    page.on_wait = land_on_bank

    outcome = await acquire_challenge_page(page, heuristics, first_timeout=10, retry_timeout=10)

    assert outcome.reached_challenge_page is True
    assert outcome.attempts_used == 1


async def test_fails_after_bounded_attempts(heuristics):
    """The page never leaves the form: NAVIGATION_FAILED with a truncated snapshot."""
    page = FakePage(url="about:blank")
    page.html = "<html>" + "x" * 2000 + "</html>"

    outcome = await acquire_challenge_page(page, heuristics, first_timeout=10, retry_timeout=10, max_attempts=3)

    assert outcome.reached_challenge_page is False
    assert outcome.attempts_used == 3
    assert outcome.error_type is ErrorType.NAVIGATION_FAILED
    assert outcome.current_url == "about:blank"
    assert len(outcome.content_snapshot) == 500
    assert page.waits.count(RETRY_DELAY) == 2


async def test_error_page_title_is_redirect_error(heuristics):
    """The 3DS host rendering its own error page is distinct from a timeout."""
    page = FakePage(url="https://omccstb.turkcell.com.tr/paymentmanagement/rest/threeDSecure")
    page.page_title = "3D Yönlendirme Hatası"

    outcome = await acquire_challenge_page(page, heuristics, first_timeout=10, retry_timeout=10)

    assert outcome.reached_challenge_page is False
    assert outcome.error_type is ErrorType.REDIRECT_ERROR
    assert outcome.last_error == "3D API returned error page: 3D Yönlendirme Hatası"
    assert outcome.page_title == "3D Yönlendirme Hatası"


async def test_title_failure_is_page_extraction_error(heuristics):
    page = FakePage(url=BANK_URL)

    async def broken_title():
        raise PlaywrightError("Execution context was destroyed")

    page.title = broken_title

    outcome = await acquire_challenge_page(page, heuristics, first_timeout=10, retry_timeout=10)

    assert outcome.reached_challenge_page is False
    assert outcome.error_type is ErrorType.PAGE_EXTRACTION_ERROR


async def test_snapshot_tolerates_destroyed_context():
    page = FakePage()

    async def broken_content():
        raise PlaywrightError("Execution context was destroyed")

    page.content = broken_content

    assert await page_snapshot(page) == CONTENT_UNAVAILABLE
