from __future__ import annotations

from .loader import Retailer, RetailerRules
from .normalization import clean_text, contains_phrase


def detect_retailer(text: str, rules: RetailerRules) -> Retailer | None:
    haystack = clean_text(text)
    if not haystack:
        return None
    for retailer in rules.retailers:
        for alias in retailer.aliases:
            if contains_phrase(haystack, alias):
                return retailer
    return None
