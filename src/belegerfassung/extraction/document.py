from __future__ import annotations

import re

from ..rules.merchants import detect_retailer
from .draft import ExtractionContext, Patch, ReceiptDraft
from .fields import detect_currency
from .numbers import parse_price
from .patterns import AMOUNT, CURRENCY, find_date, find_time, strip_markup


_LABELED_TOTAL = re.compile(
    rf"(?<![a-zäöü])(?:gesamtsumme|gesamtbetrag|summe|gesamt|total|zu\s+zahlen)\s*:?\s*(?:{CURRENCY})?\s*(?P<amount>{AMOUNT})",
    re.IGNORECASE,
)
_TRAILING_CURRENCY = re.compile(
    rf"(?:(?P<before>{AMOUNT})\s*{CURRENCY}|{CURRENCY}\s*(?P<after>{AMOUNT}))\s*$",
    re.IGNORECASE | re.MULTILINE,
)
_LABELED_DATE = re.compile(
    r"\b(?:datum|date|dat\.)\s*:?\s*(?P<date>\d{4}-\d{2}-\d{2}|\d{2}/\d{2}/\d{4}|\d{1,2}\.\s?\d{1,2}\.\s?\d{2,4})",
    re.IGNORECASE,
)
_SPACED_DATE = re.compile(r"(?<!\d)(?P<day>\d{2})\.\s+(?P<month>\d{2})\.\s+(?P<year>\d{4})(?!\d)")


def document_patterns(context: ExtractionContext, draft: ReceiptDraft) -> Patch:
    patch = Patch()
    text = "\n".join(strip_markup(line) for line in context.lines)

    if not draft.has("totals.total_amount"):
        _total(text, patch)
    if not draft.has("metadata.date"):
        _date(text, patch)
    if not draft.has("metadata.time"):
        patch.set("metadata.time", find_time(text))
    if not draft.has("store.name"):
        retailer = detect_retailer(text, context.retailers)
        if retailer is not None:
            patch.set("store.name", retailer.name)
            patch.set("store.chain", retailer.chain)
    return patch


def _total(text: str, patch: Patch) -> None:
    for match in _LABELED_TOTAL.finditer(text):
        amount = parse_price(match.group("amount"))
        if amount is not None and amount > 0:
            patch.set("totals.total_amount", amount)
            patch.set("totals.currency", detect_currency(match.group(0)))
            return

    amounts = []
    for match in _TRAILING_CURRENCY.finditer(text):
        amount = parse_price(match.group("before") or match.group("after"))
        if amount is not None and amount > 0:
            amounts.append(amount)
    if amounts:
        patch.set("totals.total_amount", amounts[-1])
        patch.set("totals.currency", "EUR")
        patch.note("totals.total_amount: inferred from the last currency amount")


def _date(text: str, patch: Patch) -> None:
    labeled = _LABELED_DATE.search(text)
    if labeled:
        patch.set("metadata.date", re.sub(r"\s+", "", labeled.group("date")))
        return
    plain = find_date(text)
    if plain:
        patch.set("metadata.date", plain)
        return
    spaced = _SPACED_DATE.search(text)
    if spaced:
        patch.set("metadata.date", f"{spaced.group('day')}.{spaced.group('month')}.{spaced.group('year')}")
