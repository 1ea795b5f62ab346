from __future__ import annotations

from dataclasses import dataclass, field

from ..rules.loader import RetailerRules


FIELD_PATHS = frozenset(
    {
        "metadata.date",
        "metadata.time",
        "metadata.receipt_number",
        "store.name",
        "store.address",
        "store.phone",
        "store.tax_id",
        "store.chain",
        "totals.subtotal",
        "totals.vat_amount",
        "totals.vat_rate",
        "totals.total_amount",
        "totals.currency",
        "payment.method",
        "payment.amount_paid",
        "payment.change",
        "payment.card_type",
        "cashier_info.start_time",
        "cashier_info.end_time",
        "cashier_info.cashier_number",
        "cashier_info.terminal_number",
        "fiscal_info.tse_serial",
        "fiscal_info.signature_counter",
        "fiscal_info.signature",
        "fiscal_info.transaction_number",
        "loyalty.program",
        "loyalty.points_earned",
        "loyalty.points_balance",
    }
)


@dataclass(frozen=True, slots=True)
class ItemCandidate:
    name: str
    quantity: float | None = None
    unit_price: float | None = None
    total_price: float | None = None
    line_text: str | None = None
    line_index: int | None = None


@dataclass(frozen=True, slots=True)
class ExtractionContext:
    text: str
    lines: tuple[str, ...]
    retailers: RetailerRules


@dataclass(slots=True)
class Patch:
    fields: dict[str, object] = field(default_factory=dict)
    items: list[ItemCandidate] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def set(self, path: str, value: object) -> None:
        if path not in FIELD_PATHS:
            raise KeyError(path)
        if value is None or value == "":
            return
        self.fields.setdefault(path, value)

    def has(self, path: str) -> bool:
        return path in self.fields

    def note(self, message: str) -> None:
        if message not in self.errors:
            self.errors.append(message)


@dataclass(slots=True)
class ReceiptDraft:
    fields: dict[str, object] = field(default_factory=dict)
    items: list[ItemCandidate] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def has(self, path: str) -> bool:
        return path in self.fields

    def get(self, path: str) -> object:
        return self.fields.get(path)

    def apply(self, patch: Patch) -> None:
        for path, value in patch.fields.items():
            self.fields.setdefault(path, value)
        if patch.items and not self.items:
            self.items = list(patch.items)
        for message in patch.errors:
            if message not in self.errors:
                self.errors.append(message)
