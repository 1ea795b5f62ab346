from __future__ import annotations

import re


_CURRENCY = re.compile(r"(€|eur\b|euro\b|\$|chf\b|usd\b)", re.IGNORECASE)
_NUMBER = re.compile(r"^-?\d+(\.\d+)?$")
_THOUSANDS_DOTS = re.compile(r"^-?\d{1,3}(\.\d{3})+$")


def parse_price(value: object) -> float | None:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)

    raw = _CURRENCY.sub("", str(value))
    raw = re.sub(r"\s+", "", raw)
    if not raw:
        return None
    if raw.endswith("-") and raw.count("-") == 1:
        raw = f"-{raw[:-1]}"

    if "," in raw and "." in raw:
        decimal = "," if raw.rfind(",") > raw.rfind(".") else "."
        thousands = "." if decimal == "," else ","
        raw = raw.replace(thousands, "").replace(decimal, ".")
    elif "," in raw:
        if raw.count(",") > 1:
            return None
        raw = raw.replace(",", ".")
    elif raw.count(".") > 1:
        if not _THOUSANDS_DOTS.match(raw):
            return None
        raw = raw.replace(".", "")

    if not _NUMBER.match(raw):
        return None
    return float(raw)


def parse_quantity(value: object) -> float | None:
    quantity = parse_price(value)
    if quantity is None or quantity <= 0:
        return None
    return quantity


def round_money(value: float | None) -> float | None:
    if value is None:
        return None
    return round(value, 2)
