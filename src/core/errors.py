"""Custom exceptions and error kinds for the 3DS worker."""

from enum import Enum


class ErrorType(str, Enum):
    """Failure kinds reported in AutomationResult.errorType."""
    NAVIGATION_FAILED = "NAVIGATION_FAILED"
    REDIRECT_ERROR = "3D_REDIRECT_ERROR"
    PAGE_EXTRACTION_ERROR = "PAGE_EXTRACTION_ERROR"
    OTP_INPUT_NOT_FOUND = "OTP_INPUT_NOT_FOUND"
    SUCCESS_NOT_CONFIRMED = "SUCCESS_NOT_CONFIRMED"
    CHALLENGE_ERROR = "CHALLENGE_ERROR"
    BROWSER_LAUNCH_FAILED = "BROWSER_LAUNCH_FAILED"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


class WorkerError(Exception):
    """Base exception for worker errors."""
    pass


class InvalidRequestError(WorkerError):
    """Automation request is missing a required field."""
    pass


class BrowserLaunchError(WorkerError):
    """Browser process could not be started."""
    pass


class ConfigurationError(WorkerError):
    """Configuration error."""
    pass
