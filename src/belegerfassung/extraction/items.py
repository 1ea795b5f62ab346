from __future__ import annotations

import re

from ..rules.merchants import detect_retailer
from .draft import ExtractionContext, ItemCandidate, Patch, ReceiptDraft
from .numbers import parse_price, parse_quantity
from .patterns import (
    AMOUNT,
    CURRENCY,
    PHONE,
    POSTAL_CITY,
    QTY,
    STREET,
    TIME,
    contains_not_product_word,
    find_date,
    is_header_or_total,
    is_likely_not_item,
    is_table_separator,
    is_valid_product_name,
    strip_markup,
)


_TAX_FLAG = r"(?:\s+[A-Z0-9]{1,2}\*?)?"

_UNIT_X_QTY_TOTAL = re.compile(
    rf"^(?P<name>.+?)\s+(?P<unit>{AMOUNT})\s*{CURRENCY}?\s*[x×*]\s*(?P<qty>{QTY})\s+(?P<total>{AMOUNT})\s*{CURRENCY}?{_TAX_FLAG}$",
    re.IGNORECASE,
)
_QTY_X_UNIT_TOTAL = re.compile(
    rf"^(?P<name>.+?)\s+(?P<qty>{QTY})\s*(?:stk\.?\s*)?[x×*]\s*{CURRENCY}?\s*(?P<unit>{AMOUNT})\s*{CURRENCY}?\s+(?P<total>{AMOUNT})\s*{CURRENCY}?{_TAX_FLAG}$",
    re.IGNORECASE,
)
_QTY_X_UNIT = re.compile(
    rf"^(?P<name>.+?)\s+(?P<qty>\d+)\s*(?:stk\.?\s*)?[x×]\s*{CURRENCY}?\s*(?P<unit>{AMOUNT})\s*{CURRENCY}?{_TAX_FLAG}$",
    re.IGNORECASE,
)
_PRICE_ONLY = re.compile(
    rf"^(?P<name>.+?)\s+{CURRENCY}?\s*(?P<total>{AMOUNT})\s*{CURRENCY}?{_TAX_FLAG}$",
    re.IGNORECASE,
)
ITEM_PATTERNS = (_UNIT_X_QTY_TOTAL, _QTY_X_UNIT_TOTAL, _QTY_X_UNIT, _PRICE_ONLY)

_NAME_CHARS = r"[A-Za-zÄÖÜäöüß][A-Za-zÄÖÜäöüß0-9&.,%/\- ]*?"
_LOOSE_QTY_PRICE = re.compile(rf"^(?P<name>{_NAME_CHARS})\s+(?P<qty>\d+)\s+(?P<total>\d+(?:[.,]\d+)?)$")
_LOOSE_PRICE = re.compile(rf"^(?P<name>{_NAME_CHARS})\s+(?P<total>\d+[.,]\d+|\d+)$")
_LOOSE_NAME = re.compile(r"^(?P<name>[A-Za-zÄÖÜäöüß][A-Za-zÄÖÜäöüß&.\- ]{2,})$")
LAST_RESORT_PATTERNS = (_LOOSE_QTY_PRICE, _LOOSE_PRICE, _LOOSE_NAME)

_NAME_TRIM = " .:;-*"


def match_item_line(line: str, index: int | None = None) -> ItemCandidate | None:
    value = strip_markup(line)
    for pattern in ITEM_PATTERNS:
        match = pattern.match(value)
        if not match:
            continue
        candidate = _candidate(match, value, index)
        if candidate is not None:
            return candidate
    return None


def item_lines(context: ExtractionContext, draft: ReceiptDraft) -> Patch:
    patch = Patch()
    if draft.items:
        return patch
    for index, line in enumerate(context.lines):
        if _is_furniture(line):
            continue
        candidate = match_item_line(line, index)
        if candidate is not None:
            patch.items.append(candidate)
    return patch


def last_resort_items(context: ExtractionContext, draft: ReceiptDraft) -> Patch:
    patch = Patch()
    if draft.items:
        return patch

    seen: set[str] = set()
    for index, line in enumerate(context.lines):
        value = strip_markup(line)
        if not value or _is_furniture(value, allow_caps=True) or contains_not_product_word(value):
            continue
        if detect_retailer(value, context.retailers) is not None:
            continue
        for pattern in LAST_RESORT_PATTERNS:
            match = pattern.match(value)
            if not match:
                continue
            candidate = _candidate(match, value, index)
            if candidate is None:
                break
            key = candidate.name.casefold()
            if key not in seen:
                seen.add(key)
                patch.items.append(candidate)
            break

    if patch.items:
        patch.note(f"items: {len(patch.items)} recovered by loose last-resort scan")
    return patch


def _candidate(match: re.Match, line: str, index: int | None) -> ItemCandidate | None:
    groups = match.groupdict()
    name = groups["name"].strip(_NAME_TRIM)
    if not is_valid_product_name(name):
        return None

    quantity = parse_quantity(groups.get("qty"))
    unit_price = parse_price(groups.get("unit"))
    total_price = parse_price(groups.get("total"))
    if groups.get("total") is not None and total_price is None:
        return None
    return ItemCandidate(
        name=name,
        quantity=quantity,
        unit_price=unit_price,
        total_price=total_price,
        line_text=line,
        line_index=index,
    )


def _is_furniture(line: str, *, allow_caps: bool = False) -> bool:
    value = strip_markup(line)
    if not value or is_table_separator(line):
        return True
    if is_header_or_total(value) or find_date(value) or TIME.search(value):
        return True
    if PHONE.match(value) or POSTAL_CITY.search(value) or STREET.match(value):
        return True
    if allow_caps:
        return False
    return is_likely_not_item(value) and not _has_amount(value)


def _has_amount(value: str) -> bool:
    return re.search(AMOUNT, value) is not None
