"""Inject the auto-submitting 3DS initiation form into the page."""

from html import escape
from typing import Dict, Optional

import structlog
from playwright.async_api import Error as PlaywrightError, Page

from ..core.logging import get_logger

logger = get_logger(__name__)

FORM_ID = "threeDForm"
SESSION_FIELD = "threeDSessionId"


def build_form_html(action_url: str, session_id: str, context_fields: Dict[str, Optional[str]]) -> str:
    """
    Render a document whose form posts the session to the bank on load.

    Args:
        action_url: Bank 3DS initiation endpoint
        session_id: 3DS session id
        context_fields: Card/context fields forwarded verbatim

    Returns:
        HTML document as string
    """
    fields = {SESSION_FIELD: session_id, **context_fields}
    inputs = "\n".join(
        f'      <input type="hidden" name="{escape(str(name), quote=True)}" '
        f'value="{escape("" if value is None else str(value), quote=True)}">'
        for name, value in fields.items()
    )
    return (
        "<html>\n"
        "  <body>\n"
        f'    <form id="{FORM_ID}" action="{escape(action_url, quote=True)}" method="POST">\n'
        f"{inputs}\n"
        "    </form>\n"
        "    <script>\n"
        f"      document.getElementById('{FORM_ID}').submit();\n"
        "    </script>\n"
        "  </body>\n"
        "</html>\n"
    )


async def inject_form(
    page: Page,
    action_url: str,
    session_id: str,
    context_fields: Dict[str, Optional[str]],
    log: Optional[structlog.BoundLogger] = None,
) -> None:
    """Load the form as page content so its own submission drives navigation."""
    log = log or logger
    html = build_form_html(action_url, session_id, context_fields)
    log.info("Submitting 3DS form to bank", action_url=action_url, field_count=len(context_fields) + 1)
    try:
        await page.set_content(html, wait_until="commit")
    except PlaywrightError as e:
        # The form may navigate away before set_content settles
        log.debug("Content load interrupted by form navigation", error=str(e))
    log.info("Form submitted, waiting for bank page")
