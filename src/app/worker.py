"""3DS simulation endpoint."""

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import JSONResponse

from agents.threeds_agent.agent import perform_automation
from ..core.callback import notify_callback
from ..core.config import get_settings
from ..core.errors import InvalidRequestError
from ..core.logging import get_logger, request_logger
from ..core.models import SimulateRequest

logger = get_logger(__name__)
router = APIRouter()


@router.post("/simulate-3d")
async def simulate_3d(request: Request, background_tasks: BackgroundTasks):
    """
    Run the 3DS challenge for one session and return the AutomationResult.

    Logical failures still answer 200 with success false. 400 is returned
    for a missing threeDSessionId or otp, before any browser work. 500 is
    reserved for failures outside the pipeline, such as a malformed body.
    """
    settings = get_settings()

    try:
        body = await request.json()
        payload = SimulateRequest.model_validate(body)
        automation_request = payload.to_automation_request(settings.automation_timeout_ms)
    except InvalidRequestError as e:
        logger.warning("Rejected 3D simulation request", error=str(e))
        return JSONResponse(status_code=400, content={"error": str(e)})
    except Exception as e:
        logger.error("Could not read 3D simulation request", error=str(e))
        return JSONResponse(status_code=500, content={"error": str(e)})

    log = request_logger(__name__, automation_request.session_id, automation_request.callback.run_key)
    log.info(
        "Received 3D simulation request",
        environment=automation_request.environment.value,
        has_challenge_selector=bool(automation_request.challenge_selector),
        has_submit_selector=bool(automation_request.submit_selector),
        has_success_pattern=bool(automation_request.success_pattern),
        callback_enabled=automation_request.callback.enabled,
    )

    result = await perform_automation(automation_request, settings=settings)

    # Best-effort; the response below is the authoritative result
    if automation_request.callback.enabled:
        background_tasks.add_task(
            notify_callback,
            automation_request.callback,
            automation_request.session_id,
            result,
            log,
        )

    return JSONResponse(status_code=200, content=result.to_response())
