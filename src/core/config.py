"""Configuration management using Pydantic Settings."""

from enum import Enum
from typing import Dict, Optional
from urllib.parse import quote

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


# Timeout constants (in milliseconds)
AUTOMATION_TIMEOUT_DEFAULT = 30000  # Decisive waits on the HTTP path
NAVIGATION_FIRST_TIMEOUT = 15000  # First wait for the bank page
NAVIGATION_RETRY_TIMEOUT = 25000  # Later waits for the bank page
SELECTOR_TIMEOUT_DEFAULT = 2000  # Per-candidate wait during element discovery

INITIATION_PATH = "/paymentmanagement/rest/threeDSecure"
RESULT_PATH = "/paymentmanagement/rest/threeDSecureResult"
RESULT_SESSION_PARAM = "xpaycellsid"
CALLBACK_PATH = "/webhook/payment-test/3d/callback"


class Environment(str, Enum):
    """Payment platform environment the bank form is posted to."""
    STB = "stb"
    PRP = "prp"
    PROD = "prod"


ENVIRONMENT_ALIASES = {
    "stb": Environment.STB,
    "stable": Environment.STB,
    "prp": Environment.PRP,
    "preprod": Environment.PRP,
    "prod": Environment.PROD,
    "production": Environment.PROD,
}


def parse_environment(value: Optional[str]) -> Environment:
    """Normalize an environment name, falling back to STB for unknown values."""
    if isinstance(value, Environment):
        return value
    if not value:
        return Environment.STB
    return ENVIRONMENT_ALIASES.get(str(value).strip().lower(), Environment.STB)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env.local",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Server
    host: str = Field(default="0.0.0.0", description="Listen address")
    port: int = Field(default=3002, description="Listen port")

    # Browser Configuration
    headless: bool = Field(default=True, description="Run browser in headless mode")
    browser_launch_timeout: int = Field(default=60000, description="Browser launch timeout in milliseconds")

    # Pipeline timeouts (milliseconds)
    automation_timeout_ms: int = Field(default=AUTOMATION_TIMEOUT_DEFAULT, description="Challenge/finalize wait on the HTTP path")
    navigation_first_timeout_ms: int = Field(default=NAVIGATION_FIRST_TIMEOUT, description="First navigation attempt timeout")
    navigation_retry_timeout_ms: int = Field(default=NAVIGATION_RETRY_TIMEOUT, description="Later navigation attempt timeout")
    navigation_max_attempts: int = Field(default=3, description="Maximum navigation attempts")
    selector_timeout_ms: int = Field(default=SELECTOR_TIMEOUT_DEFAULT, description="Per-selector discovery timeout")

    # Finalize / callback
    finalize_enabled: bool = Field(default=True, description="Run the merchant finalize cascade after ACS success")
    callback_timeout: float = Field(default=10.0, description="Callback notification timeout in seconds")

    # Bank hosts per environment
    bank_hosts: Dict[str, str] = Field(
        default={
            Environment.STB.value: "omccstb.turkcell.com.tr",
            Environment.PRP.value: "omccprp.turkcell.com.tr",
            Environment.PROD.value: "omcc.turkcell.com.tr",
        },
        description="3DS host per environment",
    )

    # Selector / keyword overrides
    heuristics_file: Optional[str] = Field(default=None, description="Optional YAML file overriding heuristics")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=True, description="Use JSON logging format")
    log_file: Optional[str] = Field(default="logs/worker.log", description="Log file path (empty to disable)")

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v):
        """Normalize log level."""
        if isinstance(v, str):
            return v.upper()
        return v

    def validate_bank_hosts(self):
        """Validate that every environment has a bank host."""
        missing = [env.value for env in Environment if not self.bank_hosts.get(env.value)]
        if missing:
            raise ConfigurationError(f"BANK_HOSTS is missing hosts for: {', '.join(missing)}")

    def bank_host(self, environment: Environment) -> str:
        """Return the 3DS host for an environment."""
        return self.bank_hosts[parse_environment(environment).value]

    def initiation_url(self, environment: Environment) -> str:
        """URL the injected form posts to."""
        return f"https://{self.bank_host(environment)}{INITIATION_PATH}"

    def result_url(self, environment: Environment, session_id: str) -> str:
        """Merchant 3DS result endpoint for a session."""
        return f"https://{self.bank_host(environment)}{RESULT_PATH}?{RESULT_SESSION_PARAM}={quote(session_id, safe='')}"


def callback_url(base_url: str) -> str:
    """Build the workflow engine callback URL without doubled slashes."""
    return f"{base_url.rstrip('/')}{CALLBACK_PATH}"


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
        _settings.validate_bank_hosts()
    return _settings


def reload_settings() -> Settings:
    """Reload settings (useful for testing)."""
    global _settings
    _settings = None
    return get_settings()
