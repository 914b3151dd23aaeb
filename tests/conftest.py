"""Shared pytest fixtures for all tests."""

import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeout

os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("JSON_LOGS", "false")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from src.core.config import Settings, reload_settings
from src.core.heuristics import Heuristics
from src.core.logging import setup_logging
from src.tools.navigate import _PAGE_INVENTORY_JS

setup_logging()

BANK_URL = "https://goguvenliodeme.bkm.com.tr/troy/approve"
MERCHANT_RESULT_URL = "https://omccstb.turkcell.com.tr/paymentmanagement/rest/threeDSecureResult?xpaycellsid=S1"


@dataclass
class FakeElement:
    """Element state the visibility check reads."""
    visible: bool = True
    enabled: bool = True

    async def evaluate(self, script: str, require_enabled: bool = False) -> bool:
        return self.visible and (self.enabled or not require_enabled)


@dataclass
class FakeResponse:
    url: str
    status: int = 200


class FakeNavigationInfo:
    def __init__(self, response: Optional[FakeResponse]):
        self._response = response

    @property
    async def value(self) -> Optional[FakeResponse]:
        return self._response


class FakeKeyboard:
    def __init__(self, page: "FakePage"):
        self.page = page
        self.pressed: List[str] = []

    async def press(self, key: str) -> None:
        self.pressed.append(key)
        if self.page.on_submit:
            self.page.on_submit(self.page)


class FakePage:
    """
    Scripted stand-in for a Playwright page.

    Elements present on the page live in ``elements`` (selector -> FakeElement).
    ``scripts`` maps page.evaluate scripts to a value, a callable taking the
    argument, or an exception to raise. ``navigations`` is consumed by each
    expect_navigation block: a URL, a (url, status) tuple, or an exception.
    """

    def __init__(self, url: str = "about:blank"):
        self.url = url
        self.page_title = ""
        self.html = ""
        self.elements: Dict[str, FakeElement] = {}
        self.invalid_selectors: set = set()
        self.scripts: Dict[str, Any] = {_PAGE_INVENTORY_JS: {"inputs": [], "buttons": []}}
        self.navigations: List[Any] = []
        self.goto_status: Optional[int] = 200
        self.goto_error: Optional[Exception] = None
        self.events: Dict[str, Any] = {}
        self.keyboard = FakeKeyboard(self)
        self.on_set_content: Optional[Callable[["FakePage", str], None]] = None
        self.on_submit: Optional[Callable[["FakePage"], None]] = None
        self.on_wait: Optional[Callable[["FakePage", int], None]] = None
        self.clicked: List[str] = []
        self.typed: List[tuple] = []
        self.evaluated: List[tuple] = []
        self.waits: List[int] = []
        self.listeners: Dict[str, List[Callable]] = {}
        self.closed = False

    # Content

    async def set_content(self, html: str, wait_until: str = "load", timeout: Optional[int] = None) -> None:
        self.html = html
        if self.on_set_content:
            self.on_set_content(self, html)

    async def content(self) -> str:
        return self.html

    async def title(self) -> str:
        return self.page_title

    # Waiting

    async def wait_for_url(self, predicate, wait_until: str = "load", timeout: Optional[int] = None) -> None:
        if not predicate(self.url):
            raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded waiting for URL")

    async def wait_for_timeout(self, timeout: int) -> None:
        self.waits.append(timeout)
        if self.on_wait:
            self.on_wait(self, timeout)

    async def wait_for_selector(self, selector: str, state: str = "visible", timeout: Optional[int] = None):
        if selector in self.invalid_selectors:
            raise PlaywrightError(f"Unexpected token in selector {selector}")
        if selector not in self.elements:
            raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded waiting for {selector}")
        return self.elements[selector]

    async def query_selector(self, selector: str):
        return self.elements.get(selector)

    async def wait_for_event(self, event: str, predicate=None, timeout: Optional[int] = None):
        outcome = self.events.get(event)
        if outcome is None:
            raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded while waiting for event \"{event}\"")
        if callable(outcome):
            outcome(self)
            return None
        return outcome

    @asynccontextmanager
    async def expect_navigation(self, wait_until: str = "load", timeout: Optional[int] = None):
        yield_info = FakeNavigationInfo(None)
        outcome = self.navigations.pop(0) if self.navigations else None
        yield yield_info
        if outcome is None:
            raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded waiting for navigation")
        if isinstance(outcome, Exception):
            raise outcome
        url, status = outcome if isinstance(outcome, tuple) else (outcome, 200)
        self.url = url
        yield_info._response = FakeResponse(url=url, status=status)

    async def goto(self, url: str, wait_until: str = "load", timeout: Optional[int] = None):
        if self.goto_error:
            raise self.goto_error
        self.url = url
        if self.goto_status is None:
            return None
        return FakeResponse(url=url, status=self.goto_status)

    # Interaction

    async def click(self, selector: str) -> None:
        self.clicked.append(selector)
        # Clicks after the OTP was typed submit the challenge
        if self.typed and self.on_submit:
            self.on_submit(self)

    async def type(self, selector: str, text: str, delay: Optional[int] = None) -> None:
        self.typed.append((selector, text, delay))

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluated.append((script, arg))
        outcome = self.scripts.get(script)
        if isinstance(outcome, Exception):
            raise outcome
        if callable(outcome):
            return outcome(arg)
        return outcome

    # Lifecycle

    def on(self, event: str, handler: Callable) -> None:
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler: Callable) -> None:
        self.listeners[event].remove(handler)

    async def close(self) -> None:
        self.closed = True

    def evaluated_scripts(self) -> List[str]:
        return [script for script, _ in self.evaluated]


@pytest.fixture
def settings():
    """Settings with fast waits for pipeline tests."""
    return Settings(
        log_file="",
        navigation_first_timeout_ms=100,
        navigation_retry_timeout_ms=100,
        selector_timeout_ms=10,
        automation_timeout_ms=100,
    )


@pytest.fixture
def heuristics():
    return Heuristics()


@pytest.fixture
def fake_page():
    return FakePage()


@pytest.fixture
def bank_page():
    """Fake page already sitting on a BKM ACS page with an OTP field and submit button."""
    page = FakePage(url=BANK_URL)
    page.page_title = "3D Secure Doğrulama"
    page.elements = {
        "#passwordfield": FakeElement(),
        "#submitbutton": FakeElement(),
    }
    return page


@pytest.fixture
def fake_playwright():
    """
    Patch async_playwright so BrowserSession drives the given page.

    Returns a factory: install(page, launch_error=None) -> (playwright, browser, context).
    """
    patchers = []

    def install(page, launch_error: Optional[Exception] = None):
        context = MagicMock()
        context.new_page = AsyncMock(return_value=page)
        context.close = AsyncMock()

        browser = MagicMock()
        browser.new_context = AsyncMock(return_value=context)
        browser.close = AsyncMock()

        playwright = MagicMock()
        playwright.chromium.launch = AsyncMock(return_value=browser, side_effect=launch_error)
        playwright.stop = AsyncMock()

        starter = MagicMock()
        starter.start = AsyncMock(return_value=playwright)

        patcher = patch("src.core.browser.async_playwright", return_value=starter)
        patcher.start()
        patchers.append(patcher)
        return playwright, browser, context

    yield install

    for patcher in patchers:
        patcher.stop()


@pytest.fixture
def reset_settings():
    """Reload settings after a test that changes the environment."""
    yield
    reload_settings()


@pytest.fixture
async def chromium_page():
    """Real Chromium page; skips when the browser is not installed."""
    from playwright.async_api import async_playwright

    playwright = await async_playwright().start()
    try:
        browser = await playwright.chromium.launch(headless=True, args=["--no-sandbox"])
    except PlaywrightError as e:
        await playwright.stop()
        pytest.skip(f"Chromium not available: {e}")

    context = await browser.new_context()
    page = await context.new_page()
    yield page
    await context.close()
    await browser.close()
    await playwright.stop()
