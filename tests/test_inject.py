"""Tests for the injected 3DS initiation form."""

from playwright.async_api import Error as PlaywrightError

from src.tools.inject import build_form_html, inject_form

ACTION_URL = "https://omccstb.turkcell.com.tr/paymentmanagement/rest/threeDSecure"


def test_form_posts_session_and_context_fields():
    html = build_form_html(ACTION_URL, "S1", {"cardnumber": "4355084355084358", "amount": "10"})

    assert '<form id="threeDForm" action="' + ACTION_URL + '" method="POST">' in html
    assert '<input type="hidden" name="threeDSessionId" value="S1">' in html
    assert '<input type="hidden" name="cardnumber" value="4355084355084358">' in html
    assert '<input type="hidden" name="amount" value="10">' in html
    assert "document.getElementById('threeDForm').submit();" in html


def test_missing_values_render_empty():
    html = build_form_html(ACTION_URL, "S1", {"pin": None})

    assert '<input type="hidden" name="pin" value="">' in html


def test_values_are_attribute_escaped():
    """Field values cannot break out of the attribute."""
    html = build_form_html(ACTION_URL, 'S1"><script>alert(1)</script>', {"cardholdername": "O'Neil & Co"})

    assert "<script>alert(1)</script>" not in html
    assert 'value="S1&quot;&gt;&lt;script&gt;alert(1)&lt;/script&gt;"' in html
    assert 'value="O&#x27;Neil &amp; Co"' in html


async def test_inject_loads_form_as_page_content(fake_page):
    await inject_form(fake_page, ACTION_URL, "S1", {"amount": "10"})

    assert 'name="threeDSessionId" value="S1"' in fake_page.html


async def test_inject_tolerates_navigation_interrupting_content_load(fake_page):
    """The form may navigate away before set_content settles."""
    def interrupt(page, html):
        raise PlaywrightError("Navigation interrupted by another navigation")

    fake_page.on_set_content = interrupt

    await inject_form(fake_page, ACTION_URL, "S1", {})
