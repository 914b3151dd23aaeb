"""Best-effort result notification to the workflow engine callback."""

from typing import Any, Dict, Optional

import httpx
import structlog

from .config import callback_url, get_settings
from .logging import get_logger
from .models import AutomationResult, CallbackTarget, utc_timestamp

logger = get_logger(__name__)

COMPLETION_SOURCE = "headless-worker-completion"


def build_callback_payload(session_id: str, run_key: str, result: AutomationResult) -> Dict[str, Any]:
    """Payload the workflow engine correlates with its run."""
    return {
        "runKey": run_key,
        "threeDSessionId": session_id,
        "success": result.success,
        "finalUrl": result.final_url,
        "error": result.error,
        "merchantFinalize": result.merchant_finalize,
        "finalizeMethod": result.finalize_method,
        "source": COMPLETION_SOURCE,
        "timestamp": utc_timestamp(),
    }


async def notify_callback(
    target: CallbackTarget,
    session_id: str,
    result: AutomationResult,
    log: Optional[structlog.BoundLogger] = None,
) -> bool:
    """
    POST the result to the caller's callback endpoint.

    Failures are logged and swallowed; the HTTP response to the original
    caller is the authoritative delivery path.

    Args:
        target: Callback base URL and run key
        session_id: 3DS session id of the run
        result: Final automation result
        log: Request-scoped logger

    Returns:
        True if the callback answered with a non-error status, False otherwise
    """
    log = log or logger
    if not target.enabled:
        log.debug("No callback configured, skipping notification")
        return False

    settings = get_settings()
    url = callback_url(target.base_url)
    payload = build_callback_payload(session_id, target.run_key, result)

    log.info("Notifying callback", url=url)
    try:
        async with httpx.AsyncClient(timeout=settings.callback_timeout) as client:
            response = await client.post(url, json=payload)
            response.raise_for_status()
        log.info("Callback notification sent", url=url, status=response.status_code)
        return True
    except Exception as e:
        log.error("Failed to notify callback", url=url, error=str(e))
        return False
