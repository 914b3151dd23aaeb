"""Classify ACS outcome from URLs and page text using keyword tables."""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from ..core.heuristics import KeywordTable


class UrlSignal(str, Enum):
    """What a URL says about the challenge outcome."""
    SUCCESS = "success"
    BANK_COMPLETION = "bank-completion"
    NONE = "none"


@dataclass(frozen=True)
class ErrorIndicator:
    """Error evidence found on a page."""
    text: str
    source: str


def _first_match(haystack: str, needles: List[str]) -> Optional[str]:
    for needle in needles:
        if needle and needle.lower() in haystack:
            return needle
    return None


class ContentClassifier:
    """Keyword-based outcome classifier for URLs and page text (Turkish and English)."""

    def __init__(self, keywords: Optional[KeywordTable] = None):
        self.keywords = keywords or KeywordTable()

    def url_signal(self, url: str) -> UrlSignal:
        """Success keywords win over bank completion markers."""
        lowered = (url or "").lower()
        if _first_match(lowered, self.keywords.url_success):
            return UrlSignal.SUCCESS
        if _first_match(lowered, self.keywords.bank_completion_url):
            return UrlSignal.BANK_COMPLETION
        return UrlSignal.NONE

    def text_error(self, text: str) -> Optional[ErrorIndicator]:
        """Return the first error keyword found in page text."""
        keyword = _first_match((text or "").lower(), self.keywords.content_error)
        if keyword:
            return ErrorIndicator(text=f"Error keyword found: {keyword}", source="text content")
        return None

    def text_success(self, text: str) -> bool:
        return _first_match((text or "").lower(), self.keywords.content_success) is not None
