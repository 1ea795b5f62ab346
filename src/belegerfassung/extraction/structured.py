from __future__ import annotations

import re

from .draft import ExtractionContext, ItemCandidate, Patch, ReceiptDraft
from .items import match_item_line
from .numbers import parse_price, parse_quantity
from .patterns import (
    AMOUNT,
    CURRENCY,
    QTY,
    has_letters,
    is_table_separator,
    is_valid_product_name,
    strip_markup,
    table_cells,
)


LOOKAHEAD = 6

ITEM_HEADINGS = frozenset(
    {
        "items",
        "items purchased",
        "purchased items",
        "purchase items",
        "products",
        "products purchased",
        "artikel",
        "produkte",
        "waren",
        "einkauf",
    }
)

_BOLD_ENTRY = re.compile(r"^(?:[*\-+•]\s+)?\*\*(?P<name>[^*]+?)\*\*\s*(?P<rest>.*)$")
_BOLD_CELL = re.compile(r"^\*\*(?P<name>[^*]+?)\*\*$")
_QTY_LABEL = re.compile(r"\b(?:quantity|qty|menge|anzahl)\s*:?\s*(?P<qty>\d+(?:[.,]\d+)?)", re.IGNORECASE)
_WEIGHT_LABEL = re.compile(r"\b(?:weight|gewicht)\s*:?\s*(?P<qty>\d+(?:[.,]\d+)?)\s*kg\b", re.IGNORECASE)
_UNIT_PRICE_LABEL = re.compile(
    rf"\b(?:unit\s+price|einzelpreis|st(?:ü|ue)ckpreis)\s*:?\s*{CURRENCY}?\s*(?P<price>{AMOUNT}|\d+)",
    re.IGNORECASE,
)
_PRICE_LABEL = re.compile(
    rf"\b(?:price|preis|betrag)\s*:?\s*{CURRENCY}?\s*(?P<price>{AMOUNT}|\d+)\s*(?P<currency>{CURRENCY})?\s*(?P<per_kg>/\s*kg)?",
    re.IGNORECASE,
)
_UNIT_X_QTY = re.compile(rf"^(?P<unit>{AMOUNT})\s*{CURRENCY}?\s*[x×*]\s*(?P<qty>{QTY})", re.IGNORECASE)
_CELL_AMOUNT = re.compile(rf"^{CURRENCY}?\s*(?P<amount>{AMOUNT})\s*{CURRENCY}?(?:\s+[A-Z0-9]{{1,2}})?$", re.IGNORECASE)
_COLUMNS = re.compile(r"\s{2,}")
_ALIGNED_END = re.compile(r"^(?:posten\s*:|summe\b|datum\s*:)", re.IGNORECASE)

_NAME_HEADERS = ("product", "item", "artikel", "bezeichnung", "name", "description", "produkt", "ware")
_QTY_HEADERS = ("quantity", "qty", "menge", "anzahl", "stk")
_UNIT_HEADERS = ("unit price", "einzelpreis", "stückpreis", "stueckpreis", "e-preis")
_TOTAL_HEADERS = ("total", "price", "preis", "betrag", "summe", "amount")


def structured_block_items(context: ExtractionContext, draft: ReceiptDraft) -> Patch:
    patch = Patch()
    lines = context.lines
    in_items_section = False
    aligned_table = False
    i = 0

    while i < len(lines):
        line = lines[i].strip()
        plain = strip_markup(line).rstrip(":").casefold()

        if not line:
            i += 1
            continue

        if line.startswith("|"):
            if i + 1 < len(lines) and is_table_separator(lines[i + 1]):
                i = _read_markdown_table(lines, i, patch)
                continue
            consumed = _read_bold_table_pair(lines, i, patch)
            i += consumed or 1
            continue

        if plain in ITEM_HEADINGS:
            in_items_section = True
            aligned_table = False
            i += 1
            continue
        if line.startswith("#"):
            in_items_section = False
            aligned_table = False
            i += 1
            continue

        if _is_aligned_header(line):
            aligned_table = True
            i += 1
            continue
        if aligned_table:
            if _ALIGNED_END.match(plain):
                aligned_table = False
            else:
                candidate = _aligned_row(line, i)
                if candidate is not None:
                    patch.items.append(candidate)
            i += 1
            continue

        bold = _BOLD_ENTRY.match(line)
        if bold and in_items_section:
            i = _read_bold_entry(lines, i, bold, patch)
            continue

        i += 1

    return patch


def _read_markdown_table(lines: tuple[str, ...], start: int, patch: Patch) -> int:
    header = [strip_markup(cell).casefold() for cell in table_cells(lines[start])]
    columns = _column_map(header)
    i = start + 2
    while i < len(lines) and lines[i].strip().startswith("|"):
        row = lines[i]
        if not is_table_separator(row):
            cells = [strip_markup(cell) for cell in table_cells(row)]
            candidate = _row_candidate(cells, columns, row.strip(), i)
            if candidate is not None:
                patch.items.append(candidate)
        i += 1
    return i


def _column_map(header: list[str]) -> dict[str, int]:
    columns: dict[str, int] = {}
    for idx, cell in enumerate(header):
        if "name" not in columns and any(h in cell for h in _NAME_HEADERS):
            columns["name"] = idx
        elif "qty" not in columns and any(h in cell for h in _QTY_HEADERS):
            columns["qty"] = idx
        elif "unit" not in columns and any(h in cell for h in _UNIT_HEADERS):
            columns["unit"] = idx
        elif "total" not in columns and any(h in cell for h in _TOTAL_HEADERS):
            columns["total"] = idx
    columns.setdefault("name", 0)
    if "total" not in columns and len(header) >= 2:
        columns["total"] = len(header) - 1
    if "qty" not in columns and len(header) >= 3 and 1 not in columns.values():
        columns["qty"] = 1
    return columns


def _row_candidate(cells: list[str], columns: dict[str, int], line: str, index: int) -> ItemCandidate | None:
    def cell(key: str) -> str | None:
        idx = columns.get(key)
        if idx is None or idx >= len(cells):
            return None
        return cells[idx] or None

    name = (cell("name") or "").strip()
    if not is_valid_product_name(name):
        return None
    quantity = parse_quantity(cell("qty"))
    unit_price = parse_price(cell("unit"))
    total_price = parse_price(cell("total"))
    if quantity is None and unit_price is None and total_price is None:
        return None
    return ItemCandidate(
        name=name,
        quantity=quantity,
        unit_price=unit_price,
        total_price=total_price,
        line_text=line,
        line_index=index,
    )


def _read_bold_table_pair(lines: tuple[str, ...], i: int, patch: Patch) -> int:
    """`| **Name** | **EUR** |` followed by `| 1,99 € x 2 | 3,98 |`."""
    cells = table_cells(lines[i])
    match = _BOLD_CELL.match(cells[0]) if cells else None
    if match is None or i + 1 >= len(lines) or not lines[i + 1].strip().startswith("|"):
        return 0
    name = match.group("name").strip()
    if not is_valid_product_name(name):
        return 0

    detail = [strip_markup(cell) for cell in table_cells(lines[i + 1])]
    if not detail or has_letters(detail[0].replace("EUR", "").replace("x", "")):
        return 0

    quantity = unit_price = total_price = None
    unit_x_qty = _UNIT_X_QTY.match(detail[0])
    if unit_x_qty:
        unit_price = parse_price(unit_x_qty.group("unit"))
        quantity = parse_quantity(unit_x_qty.group("qty"))
        amounts = [_CELL_AMOUNT.match(cell) for cell in detail[1:]]
        total_price = next((parse_price(m.group("amount")) for m in amounts if m), None)
    else:
        amount = _CELL_AMOUNT.match(detail[0])
        if amount is None:
            return 0
        total_price = parse_price(amount.group("amount"))

    patch.items.append(
        ItemCandidate(
            name=name,
            quantity=quantity,
            unit_price=unit_price,
            total_price=total_price,
            line_text=f"{lines[i].strip()} {lines[i + 1].strip()}",
            line_index=i,
        )
    )
    return 2


def _read_bold_entry(lines: tuple[str, ...], i: int, bold: re.Match, patch: Patch) -> int:
    name = bold.group("name").strip().rstrip(":")
    rest = bold.group("rest").strip()
    if not is_valid_product_name(name):
        return i + 1

    if rest:
        inline = match_item_line(f"{name} {rest}", i)
        if inline is not None:
            patch.items.append(inline)
            return i + 1

    quantity = unit_price = total_price = None
    end = i + 1
    for j in range(i + 1, min(len(lines), i + 1 + LOOKAHEAD)):
        follow = lines[j].strip()
        if _BOLD_ENTRY.match(follow) or follow.startswith(("#", "|")):
            break
        end = j + 1
        weight = _WEIGHT_LABEL.search(follow)
        if weight and quantity is None:
            quantity = parse_quantity(weight.group("qty"))
        qty = _QTY_LABEL.search(follow)
        if qty and quantity is None:
            quantity = parse_quantity(qty.group("qty"))
        unit = _UNIT_PRICE_LABEL.search(follow)
        if unit and unit_price is None:
            unit_price = parse_price(unit.group("price"))
            continue
        price = _PRICE_LABEL.search(follow)
        if price:
            value = parse_price(price.group("price"))
            if price.group("per_kg") or re.search(r"/\s*kg", follow, re.IGNORECASE):
                unit_price = unit_price if unit_price is not None else value
            elif total_price is None:
                total_price = value

    if quantity is None and unit_price is None and total_price is None:
        patch.note(f"items: no quantity or price found for '{name}'")
        return end

    patch.items.append(
        ItemCandidate(
            name=name,
            quantity=quantity,
            unit_price=unit_price,
            total_price=total_price,
            line_text=lines[i].strip(),
            line_index=i,
        )
    )
    return end


def _is_aligned_header(line: str) -> bool:
    if "|" in line:
        return False
    lowered = line.casefold()
    has_name = any(h in lowered for h in ("product", "artikel", "bezeichnung"))
    has_qty = any(h in lowered for h in ("quantity", "menge", "anzahl"))
    has_price = any(h in lowered for h in ("price", "preis", "betrag"))
    return has_name and has_qty and has_price


def _aligned_row(line: str, index: int) -> ItemCandidate | None:
    parts = [p.strip() for p in _COLUMNS.split(line.strip()) if p.strip()]
    if len(parts) < 3:
        return None
    return _row_candidate(parts, {"name": 0, "qty": 1, "total": len(parts) - 1}, line.strip(), index)
