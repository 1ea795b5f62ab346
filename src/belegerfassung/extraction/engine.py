from __future__ import annotations

import hashlib
import logging
import re
from collections import defaultdict
from collections.abc import Callable

from ..models import (
    CashierInfo,
    FiscalInfo,
    LineItem,
    Loyalty,
    Payment,
    ReceiptMetadata,
    StoreInfo,
    StructuredReceipt,
    Totals,
)
from ..ocr.base import clamp_confidence
from ..rules.loader import RetailerRules
from ..rules.normalization import clean_text
from .document import document_patterns
from .draft import ExtractionContext, ItemCandidate, Patch, ReceiptDraft
from .fields import line_fields
from .items import item_lines, last_resort_items
from .numbers import round_money
from .structured import structured_block_items

logger = logging.getLogger(__name__)


Strategy = Callable[[ExtractionContext, ReceiptDraft], Patch]

STRATEGIES: tuple[Strategy, ...] = (
    structured_block_items,
    line_fields,
    item_lines,
    document_patterns,
    last_resort_items,
)

_SECTIONS = {
    "metadata": ReceiptMetadata,
    "store": StoreInfo,
    "totals": Totals,
    "payment": Payment,
    "cashier_info": CashierInfo,
    "fiscal_info": FiscalInfo,
    "loyalty": Loyalty,
}

_BRAND = re.compile(r"^([A-ZÄÖÜ][A-Za-zÄÖÜäöüß&'\-]+)\s+\S")
_CODE_CHARS = re.compile(r"[^A-Z0-9]")


def extract_receipt(
    raw_text: str,
    *,
    confidence: float = 0.0,
    retailers: RetailerRules | None = None,
) -> StructuredReceipt:
    confidence = clamp_confidence(confidence)
    if not raw_text or not raw_text.strip():
        return StructuredReceipt(confidence=confidence, raw_text=raw_text or "", errors=["no text extracted"])

    lines = tuple(line.strip() for line in raw_text.splitlines() if line.strip())
    context = ExtractionContext(text=raw_text, lines=lines, retailers=retailers or RetailerRules.load_default())

    draft = ReceiptDraft()
    for strategy in STRATEGIES:
        patch = strategy(context, draft)
        draft.apply(patch)
        logger.debug(
            "%s: %d fields, %d items, %d notes",
            strategy.__name__,
            len(patch.fields),
            len(patch.items),
            len(patch.errors),
        )

    return _finalize(draft, raw_text, confidence)


def _finalize(draft: ReceiptDraft, raw_text: str, confidence: float) -> StructuredReceipt:
    sections: dict[str, dict[str, object]] = defaultdict(dict)
    for path, value in draft.fields.items():
        section, _, name = path.partition(".")
        sections[section][name] = value

    store_name = draft.get("store.name")
    items = _line_items(draft.items, str(store_name or ""))

    errors = list(draft.errors)
    if not store_name:
        errors.append("store.name: no known retailer found")
    if not draft.has("metadata.date"):
        errors.append("metadata.date: not found")
    if not draft.has("totals.total_amount"):
        errors.append("totals.total_amount: not found")
    if not items:
        errors.append("items: no line items recognised")

    return StructuredReceipt(
        **{key: model(**sections.get(key, {})) for key, model in _SECTIONS.items()},
        items=items,
        confidence=confidence,
        raw_text=raw_text,
        errors=errors,
    )


def _line_items(candidates: list[ItemCandidate], store: str) -> list[LineItem]:
    items: list[LineItem] = []
    used_codes: set[str] = set()
    for position, candidate in enumerate(candidates):
        quantity = candidate.quantity if candidate.quantity is not None else 1.0
        unit_price = candidate.unit_price
        total_price = candidate.total_price
        if total_price is None and unit_price is not None:
            total_price = round_money(unit_price * quantity)
        if unit_price is None and total_price is not None and quantity:
            unit_price = round_money(total_price / quantity)

        index = candidate.line_index if candidate.line_index is not None else position
        items.append(
            LineItem(
                product_name=candidate.name,
                quantity=quantity,
                unit_price=unit_price,
                total_price=total_price,
                brand=extract_brand(candidate.name),
                item_code=_unique(item_code(store, index, candidate.name), used_codes),
                line_text=candidate.line_text,
            )
        )
    return items


def extract_brand(name: str) -> str | None:
    match = _BRAND.match(name.strip())
    if not match:
        return None
    brand = match.group(1)
    return brand if len(brand) >= 2 else None


def item_code(store: str, index: int, name: str) -> str:
    prefix = _CODE_CHARS.sub("", name.upper())[:8] or "ITEM"
    digest = hashlib.sha1(f"{clean_text(store)}|{index}|{clean_text(name)}".encode("utf-8")).hexdigest()
    return f"{prefix}-{digest[:6].upper()}"


def _unique(code: str, used: set[str]) -> str:
    candidate = code
    suffix = 2
    while candidate in used:
        candidate = f"{code}-{suffix}"
        suffix += 1
    used.add(candidate)
    return candidate
