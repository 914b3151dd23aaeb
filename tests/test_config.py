"""Tests for settings, environments and endpoint URLs."""

import pytest

from src.core.config import (
    Environment,
    Settings,
    callback_url,
    get_settings,
    parse_environment,
)
from src.core.errors import ConfigurationError


@pytest.mark.parametrize(
    "value,expected",
    [
        ("stb", Environment.STB),
        ("stable", Environment.STB),
        ("PRP", Environment.PRP),
        ("preprod", Environment.PRP),
        (" prod ", Environment.PROD),
        ("production", Environment.PROD),
        ("unknown", Environment.STB),
        (None, Environment.STB),
        ("", Environment.STB),
    ],
)
def test_parse_environment(value, expected):
    """Aliases map to environments; unknown values fall back to STB."""
    assert parse_environment(value) is expected


def test_default_port_and_timeouts():
    """Defaults match the worker's documented behavior."""
    settings = Settings(log_file="")

    assert settings.port == 3002
    assert settings.automation_timeout_ms == 30000
    assert settings.navigation_first_timeout_ms == 15000
    assert settings.navigation_retry_timeout_ms == 25000
    assert settings.navigation_max_attempts == 3
    assert settings.selector_timeout_ms == 2000
    assert settings.finalize_enabled is True


def test_port_from_environment(monkeypatch):
    """PORT selects the listen port."""
    monkeypatch.setenv("PORT", "4100")
    assert Settings(log_file="").port == 4100


def test_finalize_can_be_disabled(monkeypatch):
    """FINALIZE_ENABLED=false turns the finalize cascade off."""
    monkeypatch.setenv("FINALIZE_ENABLED", "false")
    assert Settings(log_file="").finalize_enabled is False


def test_log_level_is_normalized():
    assert Settings(log_file="", log_level="debug").log_level == "DEBUG"


@pytest.mark.parametrize(
    "environment,host",
    [
        (Environment.STB, "omccstb.turkcell.com.tr"),
        (Environment.PRP, "omccprp.turkcell.com.tr"),
        (Environment.PROD, "omcc.turkcell.com.tr"),
    ],
)
def test_initiation_url_per_environment(environment, host):
    """The injected form posts to the environment's 3DS host."""
    settings = Settings(log_file="")
    assert settings.initiation_url(environment) == f"https://{host}/paymentmanagement/rest/threeDSecure"


def test_result_url_carries_session_id():
    settings = Settings(log_file="")
    assert settings.result_url(Environment.PRP, "S1") == (
        "https://omccprp.turkcell.com.tr/paymentmanagement/rest/threeDSecureResult?xpaycellsid=S1"
    )


def test_result_url_quotes_session_id():
    settings = Settings(log_file="")
    assert settings.result_url(Environment.STB, "a b&c").endswith("?xpaycellsid=a%20b%26c")


@pytest.mark.parametrize("base", ["https://n8n.example.com", "https://n8n.example.com/"])
def test_callback_url_has_no_double_slash(base):
    """Trailing slashes on the callback base are dropped."""
    assert callback_url(base) == "https://n8n.example.com/webhook/payment-test/3d/callback"


def test_missing_bank_host_is_rejected():
    """Every environment needs a bank host."""
    settings = Settings(log_file="", bank_hosts={"stb": "omccstb.turkcell.com.tr"})

    with pytest.raises(ConfigurationError) as exc_info:
        settings.validate_bank_hosts()

    assert "prp" in str(exc_info.value)
    assert "prod" in str(exc_info.value)


def test_get_settings_is_cached():
    assert get_settings() is get_settings()
