from __future__ import annotations

import re

from ..rules.normalization import clean_text, tokenize


AMOUNT = r"(?<![\d.,])-?\d{1,6}(?:[.,]\d{3})*[.,]\d{2}(?!\d)"
CURRENCY = r"(?:€|EUR\b|EURO\b)"
QTY = r"\d+(?:[.,]\d+)?"

DATE_PATTERNS = (
    re.compile(r"(?<!\d)(\d{4}-\d{2}-\d{2})(?!\d)"),
    re.compile(r"(?<![\d.])(\d{2}\.\d{2}\.\d{4})(?!\d)"),
    re.compile(r"(?<![\d/])(\d{2}/\d{2}/\d{4})(?!\d)"),
    re.compile(r"(?<![\d.])(\d{2}\.\d{2}\.\d{2})(?![\d.])"),
)
TIME = re.compile(r"(?<![\d:])((?:[01]?\d|2[0-3]):[0-5]\d)(?::[0-5]\d)?(?![\d:])")

POSTAL_CITY = re.compile(r"(?:^|[\s,])(?:D-)?\d{5}\s+[A-Za-zÄÖÜäöüß][A-Za-zÄÖÜäöüß .\-]*$")
STREET = re.compile(
    r"^[A-Za-zÄÖÜäöüß][A-Za-zÄÖÜäöüß .\-]*(?:str\.|straße|strasse|weg|platz|allee|ring|damm|gasse|ufer)\s*\d+[a-z]?\b",
    re.IGNORECASE,
)
PHONE = re.compile(r"^\s*(?:tel(?:efon)?|phone|fon)\b\.?\s*[:.]?\s*([+\d][\d\s/\-()]{4,}\d)", re.IGNORECASE)

_TABLE_SEPARATOR = re.compile(r"^\|?\s*:?-{3,}:?\s*(?:\|\s*:?-{3,}:?\s*)*\|?$")
_HEADING = re.compile(r"^#{1,6}\s+")
_BULLET = re.compile(r"^(?:[*\-+•]\s+)+")
_EMPHASIS = re.compile(r"\*\*|__|`")
_SPACES = re.compile(r"\s+")
_LETTER = re.compile(r"[A-Za-zÄÖÜäöüß]")
_ALL_CAPS_HEADER = re.compile(r"^[A-ZÄÖÜ][A-ZÄÖÜß\s.&\-]*$")
_NUMERIC_ONLY = re.compile(r"^[\d\s.,:/\-€%*x]+$")

# Token-level vocabulary of lines that are receipt furniture, not products.
NOT_PRODUCT_WORDS = frozenset(
    {
        "summe", "sum", "total", "subtotal", "gesamt", "netto", "brutto", "betrag", "zahlen",
        "mwst", "ust", "vat", "tax", "steuer", "steuernummer", "steuernr",
        "bar", "cash", "card", "karte", "ec", "girocard", "visa", "mastercard", "maestro", "kreditkarte",
        "payment", "zahlung", "change", "ruckgeld", "wechselgeld", "gegeben",
        "datum", "date", "uhrzeit", "zeit", "time",
        "kasse", "kassierer", "cashier", "bediener", "register", "terminal", "bon", "beleg", "receipt",
        "tse", "signatur", "fiscal", "transaktion",
        "payback", "punkte", "points", "treue", "loyalty", "deutschlandcard",
        "danke", "vielen", "thank", "thanks", "einkauf",
        "tel", "telefon", "phone", "store", "address", "website", "www",
        "eur", "euro", "amount", "method", "eft", "credit", "debit", "posten",
    }
)
NOT_PRODUCT_PREFIXES = (
    "summe", "gesamt", "zwischensum", "mwst", "steuer", "kartenzahl", "signatur",
    "ruckgeld", "wechselgeld", "transaktion", "payback", "bonus",
)

HEADER_OR_TOTAL_WORDS = frozenset(
    {
        "total", "summe", "gesamt", "kasse", "kassierer", "bon", "receipt", "datum", "date",
        "payment", "steuer", "mwst", "zahlen", "ruckgeld", "gegeben", "netto",
    }
)


def strip_markup(line: str) -> str:
    value = line.strip()
    value = _HEADING.sub("", value)
    value = _BULLET.sub("", value)
    value = _EMPHASIS.sub("", value)
    value = value.replace("|", " ")
    return _SPACES.sub(" ", value).strip()


def is_table_separator(line: str) -> bool:
    return bool(_TABLE_SEPARATOR.match(line.strip()))


def table_cells(line: str) -> list[str]:
    value = line.strip()
    if value.startswith("|"):
        value = value[1:]
    if value.endswith("|"):
        value = value[:-1]
    return [cell.strip() for cell in value.split("|")]


def has_letters(value: str) -> bool:
    return bool(_LETTER.search(value))


def find_date(line: str) -> str | None:
    for pattern in DATE_PATTERNS:
        match = pattern.search(line)
        if match:
            return match.group(1)
    return None


def find_time(line: str) -> str | None:
    match = TIME.search(line)
    return match.group(1) if match else None


def contains_not_product_word(value: str) -> bool:
    for token in tokenize(clean_text(value)):
        if token in NOT_PRODUCT_WORDS:
            return True
        if token.startswith(NOT_PRODUCT_PREFIXES):
            return True
    return False


def is_header_or_total(value: str) -> bool:
    tokens = tokenize(clean_text(value))
    return any(t in HEADER_OR_TOTAL_WORDS or t.startswith(("summe", "gesamt", "zwischensum")) for t in tokens)


def is_likely_not_item(line: str) -> bool:
    value = line.strip()
    if not value or len(value) < 2:
        return True
    if _NUMERIC_ONLY.match(value):
        return True
    if _ALL_CAPS_HEADER.match(value) and not re.search(r"\d", value):
        return True
    if find_date(value) or TIME.search(value):
        return True
    if PHONE.match(value) or POSTAL_CITY.search(value) or STREET.match(value):
        return True
    return contains_not_product_word(value)


def is_valid_product_name(name: str) -> bool:
    name = name.strip(" .:-*")
    if len(name) < 2 or not has_letters(name):
        return False
    return not contains_not_product_word(name)
