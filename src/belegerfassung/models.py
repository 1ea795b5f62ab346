from __future__ import annotations

from pydantic import BaseModel, Field


class ReceiptMetadata(BaseModel):
    date: str | None = None
    time: str | None = None
    receipt_number: str | None = None


class StoreInfo(BaseModel):
    name: str | None = None
    address: str | None = None
    phone: str | None = None
    tax_id: str | None = None
    chain: str | None = None


class LineItem(BaseModel):
    product_name: str = Field(min_length=1)
    quantity: float = 1.0
    unit_price: float | None = None
    total_price: float | None = None
    brand: str | None = None
    item_code: str
    line_text: str | None = None
    matched: bool = False


class Totals(BaseModel):
    subtotal: float | None = None
    vat_amount: float | None = None
    vat_rate: float | None = None
    total_amount: float | None = None
    currency: str = "EUR"


class Payment(BaseModel):
    method: str | None = None
    amount_paid: float | None = None
    change: float | None = None
    card_type: str | None = None


class CashierInfo(BaseModel):
    start_time: str | None = None
    end_time: str | None = None
    cashier_number: str | None = None
    terminal_number: str | None = None


class FiscalInfo(BaseModel):
    tse_serial: str | None = None
    signature_counter: str | None = None
    signature: str | None = None
    transaction_number: str | None = None


class Loyalty(BaseModel):
    program: str | None = None
    points_earned: int | None = None
    points_balance: int | None = None


class StructuredReceipt(BaseModel):
    metadata: ReceiptMetadata = Field(default_factory=ReceiptMetadata)
    store: StoreInfo = Field(default_factory=StoreInfo)
    items: list[LineItem] = Field(default_factory=list)
    totals: Totals = Field(default_factory=Totals)
    payment: Payment = Field(default_factory=Payment)
    cashier_info: CashierInfo = Field(default_factory=CashierInfo)
    fiscal_info: FiscalInfo = Field(default_factory=FiscalInfo)
    loyalty: Loyalty = Field(default_factory=Loyalty)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    raw_text: str = ""
    errors: list[str] = Field(default_factory=list)


class BackendAttempt(BaseModel):
    backend: str
    stage: str
    status: str
    confidence: float | None = None
    error: str | None = None
    elapsed_ms: int = 0


class ProcessedReceipt(BaseModel):
    receipt: StructuredReceipt
    service_used: str
    fallback_used: bool
    record_id: str | None = None
    attempts: list[BackendAttempt] = Field(default_factory=list)
