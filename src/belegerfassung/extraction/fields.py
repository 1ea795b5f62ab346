from __future__ import annotations

import re

from ..rules.merchants import detect_retailer
from .draft import ExtractionContext, Patch, ReceiptDraft
from .numbers import parse_price
from .patterns import AMOUNT, PHONE, POSTAL_CITY, STREET, find_date, find_time, strip_markup


_TOTAL = re.compile(
    rf"(?<![a-zäöü])(?:gesamtsumme|gesamtbetrag|endbetrag|summe|gesamt|total(?:\s+amount)?|zu\s+zahlen)\b[^\d\-]*?(?P<amount>{AMOUNT})",
    re.IGNORECASE,
)
_SUBTOTAL = re.compile(
    rf"\b(?:zwischensumme|subtotal|sub\s+total|netto(?:betrag|summe)?)\b[^\d\-]*?(?P<amount>{AMOUNT})",
    re.IGNORECASE,
)
_VAT = re.compile(r"\b(?:mwst|ust|vat|tax)\b|\bsteuer\b(?!\s*-?nr)", re.IGNORECASE)
_PERCENT = re.compile(r"(?P<rate>\d{1,2}(?:[.,]\d{1,2})?)\s*%")

_TAX_ID = re.compile(
    r"\b(?:steuer-?nr|st\.?-?nr|steuernummer)\.?\s*:?\s*(?P<id>\d+/\d+(?:/\d+)?)"
    r"|\b(?:ust-?id(?:-?nr)?|vat\s*id)\.?\s*:?\s*(?P<vat_id>[A-Z]{2}\s?\d{8,12})",
    re.IGNORECASE,
)
_ADDRESS_LABEL = re.compile(r"^(?:adresse|address|anschrift)\s*:\s*", re.IGNORECASE)
_RECEIPT_NUMBER = re.compile(r"\b(?:bon|beleg)(?:-?nr\.?|nummer)\s*:?\s*(?P<num>\d+)", re.IGNORECASE)

_CURRENCIES = (
    (re.compile(r"€|\beur\b|\beuro\b", re.IGNORECASE), "EUR"),
    (re.compile(r"\bchf\b", re.IGNORECASE), "CHF"),
    (re.compile(r"\$|\busd\b", re.IGNORECASE), "USD"),
    (re.compile(r"£|\bgbp\b", re.IGNORECASE), "GBP"),
)

_CARD_TYPES = (
    (re.compile(r"\bvisa\b", re.IGNORECASE), "VISA"),
    (re.compile(r"\bmaster\s?card\b", re.IGNORECASE), "Mastercard"),
    (re.compile(r"\bmaestro\b", re.IGNORECASE), "Maestro"),
    (re.compile(r"\bgirocard\b", re.IGNORECASE), "girocard"),
    (re.compile(r"\b(?:amex|american express)\b", re.IGNORECASE), "AMEX"),
    (re.compile(r"\bec\b|\bec-?karte\b|electronic cash", re.IGNORECASE), "EC"),
)
_PAYMENT_METHODS = (
    (re.compile(r"\bbar(?:zahlung|geld)?\b|\bcash\b", re.IGNORECASE), "cash"),
    (
        re.compile(
            r"kartenzahlung|kreditkarte|\bkarte\b|\bcard\b|\bgirocard\b|\bvisa\b|\bmaster\s?card\b|\bmaestro\b|\bec\b|\bec-?karte\b",
            re.IGNORECASE,
        ),
        "card",
    ),
    (re.compile(r"\bpaypal\b", re.IGNORECASE), "paypal"),
    (re.compile(r"\b(?:apple|google)\s*pay\b", re.IGNORECASE), "mobile"),
)
_GIVEN = re.compile(rf"\b(?:gegeben|bezahlt|paid)\b[^\d\-]*?(?P<amount>{AMOUNT})", re.IGNORECASE)
_CHANGE = re.compile(rf"\b(?:r(?:ü|ue)ckgeld|wechselgeld|change)\b[^\d\-]*?(?P<amount>{AMOUNT})", re.IGNORECASE)

_TIMESTAMP = r"\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}"
_START = re.compile(rf"\bstart\s*:?\s*(?P<ts>{_TIMESTAMP})", re.IGNORECASE)
_END = re.compile(rf"\bende?\s*:?\s*(?P<ts>{_TIMESTAMP})", re.IGNORECASE)
_REGISTER_SERIAL = re.compile(r"\bsn-kasse\s*:?\s*(?P<num>[A-Z0-9]+)", re.IGNORECASE)
_CASHIER = re.compile(r"\b(?:kasse|kassen-?nr\.?|bediener|kassierer(?:in)?)\s*:?\s*(?P<num>\d+)\b", re.IGNORECASE)
_TERMINAL = re.compile(r"\b(?:ta-?nr|ta-?nummer|terminal(?:-?id)?|tid)\.?\s*:?\s*(?P<num>\d+)", re.IGNORECASE)

_TSE_SERIAL = re.compile(r"\bsn-tse\s*:?\s*(?P<v>[a-f0-9]+)\b", re.IGNORECASE)
_SIGNATURE_COUNTER = re.compile(r"\bsignatur-?z(?:ä|ae|a)hler\s*:?\s*(?P<v>\d+)", re.IGNORECASE)
_SIGNATURE = re.compile(r"\bsignatur\b\s*:?\s*(?P<v>[A-Za-z0-9+/=]{8,})", re.IGNORECASE)
_TRANSACTION = re.compile(r"\btransaktion(?:s-?nr\.?|snummer)?\s*:?\s*(?P<v>\d+)", re.IGNORECASE)

_PAYBACK_POINTS = re.compile(r"(?P<pts>\d+)\s*payback[- ]?punkte", re.IGNORECASE)
_POINTS = re.compile(r"(?P<pts>\d+)\s*(?:punkte|points)\b", re.IGNORECASE)
_POINTS_BALANCE = re.compile(r"\b(?:punktestand|kontostand|points\s+balance)\s*:?\s*(?P<pts>\d+)", re.IGNORECASE)
_PROGRAMS = (
    (re.compile(r"\bpayback\b", re.IGNORECASE), "PAYBACK"),
    (re.compile(r"\bdeutschlandcard\b", re.IGNORECASE), "DeutschlandCard"),
)


def line_fields(context: ExtractionContext, draft: ReceiptDraft) -> Patch:
    patch = Patch()
    previous = ""
    for raw in context.lines:
        line = strip_markup(raw)
        if not line:
            continue
        _store_fields(line, previous, context, patch)
        fiscal_line = _cashier_and_fiscal_fields(line, patch)
        if not fiscal_line:
            patch.set("metadata.date", find_date(line))
            patch.set("metadata.time", find_time(line))
        _amount_fields(line, patch)
        _payment_fields(line, patch)
        _loyalty_fields(line, patch)
        previous = line
    return patch


def detect_currency(line: str) -> str | None:
    for pattern, code in _CURRENCIES:
        if pattern.search(line):
            return code
    return None


def _store_fields(line: str, previous: str, context: ExtractionContext, patch: Patch) -> None:
    if not patch.has("store.name"):
        retailer = detect_retailer(line, context.retailers)
        if retailer is not None:
            patch.set("store.name", retailer.name)
            patch.set("store.chain", retailer.chain)

    if POSTAL_CITY.search(line):
        line = _ADDRESS_LABEL.sub("", line)
        if previous and STREET.match(previous) and not STREET.match(line):
            patch.set("store.address", f"{previous}, {line}")
        else:
            patch.set("store.address", line)

    phone = PHONE.match(line)
    if phone:
        patch.set("store.phone", phone.group(1).strip())

    tax_id = _TAX_ID.search(line)
    if tax_id:
        patch.set("store.tax_id", tax_id.group("id") or tax_id.group("vat_id"))

    receipt_number = _RECEIPT_NUMBER.search(line)
    if receipt_number:
        patch.set("metadata.receipt_number", receipt_number.group("num"))


def _amount_fields(line: str, patch: Patch) -> None:
    if _TAX_ID.search(line):
        return

    subtotal = _SUBTOTAL.search(line)
    if subtotal:
        patch.set("totals.subtotal", parse_price(subtotal.group("amount")))
        return

    # "Summe inkl. MwSt 13,95" is a total line; "MwSt-Summe 1,92" is not.
    total = _TOTAL.search(line)
    vat = _VAT.search(line)
    if total and not (vat and vat.start() < total.start()):
        amount = parse_price(total.group("amount"))
        if amount is not None and amount > 0:
            patch.set("totals.total_amount", amount)
            patch.set("totals.currency", detect_currency(line))
        return

    if vat:
        rate = _PERCENT.search(line)
        if rate:
            patch.set("totals.vat_rate", parse_price(rate.group("rate")))
        without_rates = _PERCENT.sub(" ", line)
        amounts = [parse_price(a) for a in re.findall(AMOUNT, without_rates)]
        amounts = [a for a in amounts if a is not None and a > 0]
        if amounts:
            # VAT tables list net, tax and gross; the tax is the smallest.
            patch.set("totals.vat_amount", min(amounts))


def _payment_fields(line: str, patch: Patch) -> None:
    change = _CHANGE.search(line)
    if change:
        patch.set("payment.change", parse_price(change.group("amount")))
        return

    given = _GIVEN.search(line)
    if given:
        patch.set("payment.amount_paid", parse_price(given.group("amount")))

    for pattern, method in _PAYMENT_METHODS:
        if not pattern.search(line):
            continue
        patch.set("payment.method", method)
        for card_pattern, card_type in _CARD_TYPES:
            if card_pattern.search(line):
                patch.set("payment.card_type", card_type)
                break
        amounts = re.findall(AMOUNT, line)
        if amounts:
            patch.set("payment.amount_paid", parse_price(amounts[-1]))
        break


def _cashier_and_fiscal_fields(line: str, patch: Patch) -> bool:
    fiscal = False
    start = _START.search(line)
    if start:
        patch.set("cashier_info.start_time", start.group("ts"))
        fiscal = True
    end = _END.search(line)
    if end:
        patch.set("cashier_info.end_time", end.group("ts"))
        fiscal = True

    serial = _REGISTER_SERIAL.search(line)
    if serial:
        patch.set("cashier_info.cashier_number", serial.group("num"))
        fiscal = True
    else:
        cashier = _CASHIER.search(line)
        if cashier:
            patch.set("cashier_info.cashier_number", cashier.group("num"))
    terminal = _TERMINAL.search(line)
    if terminal:
        patch.set("cashier_info.terminal_number", terminal.group("num"))

    for pattern, path in (
        (_TSE_SERIAL, "fiscal_info.tse_serial"),
        (_SIGNATURE_COUNTER, "fiscal_info.signature_counter"),
        (_SIGNATURE, "fiscal_info.signature"),
        (_TRANSACTION, "fiscal_info.transaction_number"),
    ):
        match = pattern.search(line)
        if match:
            patch.set(path, match.group("v"))
            fiscal = True
    return fiscal


def _loyalty_fields(line: str, patch: Patch) -> None:
    for pattern, program in _PROGRAMS:
        if pattern.search(line):
            patch.set("loyalty.program", program)
            break

    payback = _PAYBACK_POINTS.search(line)
    if payback:
        patch.set("loyalty.program", "PAYBACK")
        patch.set("loyalty.points_earned", int(payback.group("pts")))
        return

    balance = _POINTS_BALANCE.search(line)
    if balance:
        patch.set("loyalty.points_balance", int(balance.group("pts")))
        return

    points = _POINTS.search(line)
    if points and patch.has("loyalty.program"):
        patch.set("loyalty.points_earned", int(points.group("pts")))
