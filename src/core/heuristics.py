"""Selector lists and keyword tables for ACS pages.

Bank markup is not standardized, so everything the worker looks for on a page
lives here as data. The defaults can be overridden via a YAML file named by
HEURISTICS_FILE without touching code.
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import List, Optional

import yaml

from .config import get_settings
from .logging import get_logger

logger = get_logger(__name__)


# BKM ACS markup first, then standard inputs, then name/id/placeholder/class
# patterns, then broad fallbacks.
DEFAULT_OTP_SELECTORS: List[str] = [
    "#passwordfield",
    "input[name='otpCode']",
    "input[3dsinput='password']",
    "input.f-input[type='text']",
    "input[type='password']",
    "input[type='text']",
    "input[name*='otp']",
    "input[name*='OTP']",
    "input[name*='kod']",
    "input[name*='code']",
    "input[name*='sms']",
    "input[name*='SMS']",
    "input[name*='challenge']",
    "input[name*='CHALLENGE']",
    "input[name*='verification']",
    "input[name*='dogrulama']",
    "input[id*='otp']",
    "input[id*='OTP']",
    "input[id*='kod']",
    "input[id*='code']",
    "input[id*='sms']",
    "input[id*='challenge']",
    "input[id*='verification']",
    "input[id*='password']",
    "input[placeholder*='kod']",
    "input[placeholder*='code']",
    "input[placeholder*='OTP']",
    "input[placeholder*='doğrulama']",
    "input[placeholder*='SMS']",
    "input[class*='otp']",
    "input[class*='sms']",
    "input[class*='challenge']",
    "input[class*='f-input']",
    "input:not([type='hidden']):not([type='submit']):not([type='button'])",
    "input[type='text']:first-of-type",
    "input[type='password']:first-of-type",
]

DEFAULT_SUBMIT_SELECTORS: List[str] = [
    "#submitbutton",
    "button[name='otpType'][value='confirm']",
    "button.btn-commit",
    "button.button.btn-1.btn-commit",
    "button[type='submit']",
    "input[type='submit']",
    "button:has-text('Onayla')",
    "button:has-text('Gönder')",
    "button:has-text('Devam')",
    "button:has-text('İleri')",
    "button:has-text('Tamamla')",
    "button:has-text('Doğrula')",
    "button:has-text('Submit')",
    "button:has-text('Continue')",
    "button:has-text('Verify')",
    "button:has-text('Confirm')",
    "button:has-text('Next')",
    "#submit",
    "#continue",
    "#verify",
    "#confirm",
    ".submit",
    ".continue",
    ".verify",
    ".confirm",
    ".btn-commit",
    "input[value*='Onayla']",
    "input[value*='Gönder']",
    "input[value*='Submit']",
    "input[value*='Continue']",
    "button:not([type='button']):not([type='reset'])",
    "button:first-of-type",
]

# Submit controls some banks reveal only after the OTP is typed
DEFAULT_LATE_VISIBLE_SUBMIT_SELECTORS: List[str] = ["#submitbutton"]

DEFAULT_ERROR_SELECTORS: List[str] = [
    ".error",
    ".hata",
    ".alert",
    ".warning",
    "[class*='error']",
    "[class*='hata']",
    "[id*='error']",
]

DEFAULT_CHALLENGE_URL_MARKERS: List[str] = ["bkm", "acs", "3dsecure"]

# Responses worth logging while the bank page loads
DEFAULT_BANK_RESPONSE_MARKERS: List[str] = ["threeDSecure", "acs", "bkm"]

DEFAULT_ERROR_TITLE_MARKERS: List[str] = ["Hata", "Error", "3D Yönlendirme Hatası"]

DEFAULT_MERCHANT_URL_PATTERNS: List[str] = [
    r"/paymentmanagement/rest/threeDSecureResult",
    r"/webhook/payment-test/3d/callback",
]

DEFAULT_MERCHANT_RESULT_MARKERS: List[str] = [
    r"finishBkm3dsProcess",
    r"finish3d",
    r"payment/result",
]

# Fragments of a response body that will submit itself once rendered
DEFAULT_AUTO_SUBMIT_MARKERS: List[str] = [
    "<form",
    "form.submit",
    "document.forms",
    "paymentmanagement",
    ".submit()",
    "window.location",
]

DEFAULT_URL_SUCCESS_KEYWORDS: List[str] = [
    "success",
    "complete",
    "basarili",
    "callback",
    "return",
    "finish",
    "finishBkm3dsProcess",
    "akbank.com",
]

DEFAULT_BANK_COMPLETION_URL_MARKERS: List[str] = [
    "akbank",
    "finishBkm",
    "3dsProcess",
    "emvtds",
    "bkmtest",
]

DEFAULT_CONTENT_SUCCESS_KEYWORDS: List[str] = [
    "başarılı",
    "success",
    "complete",
    "onaylandı",
    "tamamlandı",
    "approved",
]

DEFAULT_CONTENT_ERROR_KEYWORDS: List[str] = [
    "hata",
    "error",
    "başarısız",
    "failed",
    "geçersiz",
    "invalid",
    "reddedildi",
    "denied",
]


@dataclass
class KeywordTable:
    """Keywords the content classifier matches against URLs and page text."""
    url_success: List[str] = field(default_factory=lambda: list(DEFAULT_URL_SUCCESS_KEYWORDS))
    bank_completion_url: List[str] = field(default_factory=lambda: list(DEFAULT_BANK_COMPLETION_URL_MARKERS))
    content_success: List[str] = field(default_factory=lambda: list(DEFAULT_CONTENT_SUCCESS_KEYWORDS))
    content_error: List[str] = field(default_factory=lambda: list(DEFAULT_CONTENT_ERROR_KEYWORDS))


@dataclass
class Heuristics:
    """Ordered selector candidates and markers used across the pipeline."""
    otp_selectors: List[str] = field(default_factory=lambda: list(DEFAULT_OTP_SELECTORS))
    submit_selectors: List[str] = field(default_factory=lambda: list(DEFAULT_SUBMIT_SELECTORS))
    late_visible_submit_selectors: List[str] = field(default_factory=lambda: list(DEFAULT_LATE_VISIBLE_SUBMIT_SELECTORS))
    error_selectors: List[str] = field(default_factory=lambda: list(DEFAULT_ERROR_SELECTORS))
    challenge_url_markers: List[str] = field(default_factory=lambda: list(DEFAULT_CHALLENGE_URL_MARKERS))
    bank_response_markers: List[str] = field(default_factory=lambda: list(DEFAULT_BANK_RESPONSE_MARKERS))
    error_title_markers: List[str] = field(default_factory=lambda: list(DEFAULT_ERROR_TITLE_MARKERS))
    merchant_url_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_MERCHANT_URL_PATTERNS))
    merchant_result_markers: List[str] = field(default_factory=lambda: list(DEFAULT_MERCHANT_RESULT_MARKERS))
    auto_submit_markers: List[str] = field(default_factory=lambda: list(DEFAULT_AUTO_SUBMIT_MARKERS))
    keywords: KeywordTable = field(default_factory=KeywordTable)

    def otp_candidates(self, operator_selector: Optional[str] = None) -> List[str]:
        """OTP selectors with the operator's selector tried first."""
        return _with_override(operator_selector, self.otp_selectors)

    def submit_candidates(self, operator_selector: Optional[str] = None) -> List[str]:
        """Submit selectors with the operator's selector tried first."""
        return _with_override(operator_selector, self.submit_selectors)


def _with_override(operator_selector: Optional[str], defaults: List[str]) -> List[str]:
    candidates = [operator_selector] if operator_selector else []
    candidates.extend(s for s in defaults if s and s != operator_selector)
    return candidates


def _coerce_list(raw, default: List[str]) -> List[str]:
    if not isinstance(raw, (list, tuple)):
        return default
    items = [str(item).strip() for item in raw if item is not None and str(item).strip()]
    return items or default


def load_heuristics(path: Optional[str] = None) -> Heuristics:
    """Build heuristics from defaults plus optional YAML overrides."""
    heuristics = Heuristics()
    if not path:
        return heuristics

    file_path = Path(path)
    if not file_path.exists():
        logger.warning("Heuristics file not found, using defaults", path=str(file_path))
        return heuristics

    try:
        data = yaml.safe_load(file_path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Failed to parse heuristics file, using defaults", path=str(file_path), error=str(e))
        return heuristics

    if not isinstance(data, dict):
        logger.warning("Heuristics file must contain a mapping, using defaults", path=str(file_path))
        return heuristics

    for f in fields(Heuristics):
        if f.name == "keywords" or f.name not in data:
            continue
        setattr(heuristics, f.name, _coerce_list(data[f.name], getattr(heuristics, f.name)))

    keyword_data = data.get("keywords")
    if isinstance(keyword_data, dict):
        for f in fields(KeywordTable):
            if f.name in keyword_data:
                setattr(
                    heuristics.keywords,
                    f.name,
                    _coerce_list(keyword_data[f.name], getattr(heuristics.keywords, f.name)),
                )

    logger.info("Loaded heuristics overrides", path=str(file_path), keys=sorted(data.keys()))
    return heuristics


# Global heuristics instance
_heuristics: Optional[Heuristics] = None


def get_heuristics() -> Heuristics:
    """Get or load the process-wide heuristics."""
    global _heuristics
    if _heuristics is None:
        _heuristics = load_heuristics(get_settings().heuristics_file)
    return _heuristics


def reload_heuristics() -> Heuristics:
    """Reload heuristics (useful for testing)."""
    global _heuristics
    _heuristics = None
    return get_heuristics()
