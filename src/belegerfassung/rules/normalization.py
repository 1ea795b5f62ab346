from __future__ import annotations

import re
import unicodedata


_NON_ALNUM = re.compile(r"[^0-9a-zA-Z]+")
_WS = re.compile(r"\s+")


def clean_text(value: str) -> str:
    value = value.casefold()
    value = unicodedata.normalize("NFKD", value)
    value = "".join(ch for ch in value if not unicodedata.combining(ch))
    value = _NON_ALNUM.sub(" ", value)
    value = _WS.sub(" ", value).strip()
    return value


def tokenize(clean_value: str) -> list[str]:
    if not clean_value:
        return []
    return [t for t in clean_value.split(" ") if t]


def contains_phrase(haystack_clean: str, phrase: str) -> bool:
    needle = clean_text(phrase)
    if not needle or not haystack_clean:
        return False
    return f" {needle} " in f" {haystack_clean} "
