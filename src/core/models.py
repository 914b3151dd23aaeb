"""Request, stage outcome and result models for the 3DS pipeline."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import Environment, parse_environment
from .errors import ErrorType, InvalidRequestError

# Card/context fields forwarded verbatim into the bank form
CONTEXT_FIELD_NAMES = (
    "cardnumber",
    "cardexpiredatemonth",
    "cardexpiredateyear",
    "cardCVV",
    "amount",
    "cardholdername",
    "pin",
    "userCode",
)

DEFAULT_REQUEST_TIMEOUT_MS = 20000


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class SimulateRequest(BaseModel):
    """Body of POST /simulate-3d."""

    model_config = ConfigDict(extra="ignore")

    threeDSessionId: Optional[str] = Field(default=None, description="3DS session id")
    otp: Optional[str] = Field(default=None, description="One-time code to submit")
    cardnumber: Optional[str] = None
    cardexpiredatemonth: Optional[str] = None
    cardexpiredateyear: Optional[str] = None
    cardCVV: Optional[str] = None
    amount: Optional[str] = None
    cardholdername: Optional[str] = None
    pin: Optional[str] = None
    userCode: Optional[str] = None
    challengeSelector: Optional[str] = Field(default=None, description="Operator OTP selector, tried first")
    submitSelector: Optional[str] = Field(default=None, description="Operator submit selector, tried first")
    successPattern: Optional[str] = Field(default=None, description="Selector whose presence means success")
    runKey: Optional[str] = Field(default=None, description="Workflow run key for the callback")
    n8nCallbackBase: Optional[str] = Field(default=None, description="Callback base URL")
    environment: Optional[str] = Field(default="stb", description="stb, prp or prod")

    @field_validator(
        "threeDSessionId", "otp", "cardnumber", "cardexpiredatemonth", "cardexpiredateyear",
        "cardCVV", "amount", "cardholdername", "pin", "userCode",
        mode="before",
    )
    @classmethod
    def coerce_scalar(cls, v):
        """Accept numbers for fields callers often send unquoted."""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    def to_automation_request(self, timeout_ms: int) -> "AutomationRequest":
        """Validate required fields and build the pipeline request."""
        if not self.threeDSessionId:
            raise InvalidRequestError("threeDSessionId is required")
        if not self.otp:
            raise InvalidRequestError("otp is required")

        return AutomationRequest(
            session_id=self.threeDSessionId,
            otp=self.otp,
            context_fields={name: getattr(self, name) for name in CONTEXT_FIELD_NAMES},
            challenge_selector=self.challengeSelector or None,
            submit_selector=self.submitSelector or None,
            success_pattern=self.successPattern or None,
            timeout_ms=timeout_ms,
            environment=parse_environment(self.environment),
            callback=CallbackTarget(base_url=self.n8nCallbackBase or None, run_key=self.runKey or None),
        )


@dataclass(frozen=True)
class CallbackTarget:
    """Where the result is POSTed once the run ends."""
    base_url: Optional[str] = None
    run_key: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return bool(self.base_url and self.run_key)


@dataclass(frozen=True)
class AutomationRequest:
    """One 3DS challenge run."""
    session_id: str
    otp: str
    context_fields: Dict[str, Optional[str]]
    challenge_selector: Optional[str] = None
    submit_selector: Optional[str] = None
    success_pattern: Optional[str] = None
    timeout_ms: int = DEFAULT_REQUEST_TIMEOUT_MS
    environment: Environment = Environment.STB
    callback: CallbackTarget = field(default_factory=CallbackTarget)

    def __post_init__(self):
        if not self.session_id:
            raise InvalidRequestError("threeDSessionId is required")
        if not self.otp:
            raise InvalidRequestError("otp is required")


@dataclass(frozen=True)
class NavigationOutcome:
    """Result of waiting for the bank challenge page."""
    reached_challenge_page: bool
    current_url: str
    attempts_used: int
    last_error: Optional[str] = None
    error_type: Optional[ErrorType] = None
    page_title: Optional[str] = None
    content_snapshot: Optional[str] = None


@dataclass(frozen=True)
class DiscoveredElements:
    """Selectors that matched a visible, interactable element."""
    otp_selector: Optional[str] = None
    submit_selector: Optional[str] = None


class ChallengeSignal(str, Enum):
    """Which heuristic decided the challenge outcome."""
    SUCCESS_PATTERN = "success-pattern"
    URL = "url"
    CONTENT = "content"
    BANK_URL = "bank-url"
    ERROR = "error"
    NONE = "none"


@dataclass(frozen=True)
class ChallengeResult:
    """ACS-side outcome after the OTP was submitted."""
    acs_success: bool
    final_url: str
    error_text: Optional[str] = None
    signal: ChallengeSignal = ChallengeSignal.NONE

    @property
    def needs_finalize(self) -> bool:
        """True when ACS passed but the merchant leg was not visibly reached."""
        return self.acs_success and self.signal in (ChallengeSignal.CONTENT, ChallengeSignal.BANK_URL)


class FinalizeMethod(str, Enum):
    """Finalize cascade step that produced the result."""
    AUTOMATIC = "automatic"
    FORCED_POST = "forced-post"
    FORCED_GET = "forced-get"
    FETCH_POST_RETRY = "fetch-post-retry"
    HTML_AUTO_SUBMIT = "html-auto-submit"
    MANUAL_FORM_SUBMIT = "manual-form-submit"
    MANUAL_CALLBACK = "manual-callback"
    NONE = "none"


@dataclass(frozen=True)
class FinalizeResult:
    """Outcome of handing the session back to the merchant."""
    success: bool
    merchant_finalize: bool
    final_url: str
    method: FinalizeMethod
    http_status: Optional[int] = None
    source: Optional[str] = None


class AutomationResult(BaseModel):
    """Final artifact returned to the caller and POSTed to the callback."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    success: bool
    final_url: Optional[str] = Field(default=None, alias="finalUrl")
    error: Optional[str] = None
    error_details: Optional[str] = Field(default=None, alias="errorDetails")
    error_type: Optional[str] = Field(default=None, alias="errorType")
    result_code: int = Field(alias="resultCode")
    timestamp: str = Field(default_factory=utc_timestamp)
    acs_success: Optional[bool] = Field(default=None, alias="acsSuccess")
    merchant_finalize: Optional[bool] = Field(default=None, alias="merchantFinalize")
    finalize_method: Optional[str] = Field(default=None, alias="finalizeMethod")
    http_status: Optional[int] = Field(default=None, alias="httpStatus")
    page_title: Optional[str] = Field(default=None, alias="pageTitle")
    final_content: Optional[str] = Field(default=None, alias="finalContent")

    def to_response(self) -> Dict[str, Any]:
        """camelCase JSON body, omitting fields that do not apply."""
        body = self.model_dump(by_alias=True, exclude_none=True)
        # Consumers check these keys explicitly even when null
        body.setdefault("finalUrl", self.final_url)
        body.setdefault("error", self.error)
        body.setdefault("errorDetails", self.error_details)
        return body
