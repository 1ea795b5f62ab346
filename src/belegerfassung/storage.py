from __future__ import annotations

import json
import logging
import uuid
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Protocol

from .models import StructuredReceipt

logger = logging.getLogger(__name__)


_DATE_FORMATS = ("%Y-%m-%d", "%d.%m.%Y", "%d/%m/%Y", "%d.%m.%y")


class ReceiptStore(Protocol):
    def store(self, receipt: StructuredReceipt, raw_text: str) -> str: ...


def slug(value: str) -> str:
    out = []
    for ch in value.casefold():
        if ch.isalnum():
            out.append(ch)
        else:
            out.append("_")
    slug_value = "".join(out)
    while "__" in slug_value:
        slug_value = slug_value.replace("__", "_")
    return slug_value.strip("_") or "unknown"


def receipt_day(receipt: StructuredReceipt) -> date | None:
    raw = receipt.metadata.date
    if not raw:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    return None


def write_json(path: Path, data: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


class JsonReceiptStore:
    def __init__(self, root: Path) -> None:
        self.root = root
        self.receipts_dir = root / "receipts"
        self.raw_text_dir = root / "raw" / "ocr_text"

    def store(self, receipt: StructuredReceipt, raw_text: str) -> str:
        record_id = str(uuid.uuid4())
        path = self.receipt_path(receipt, record_id)
        write_json(
            path,
            {
                "record_id": record_id,
                "stored_at": datetime.now(timezone.utc).isoformat(),
                "receipt": receipt.model_dump(mode="json"),
            },
        )
        self.raw_text_dir.mkdir(parents=True, exist_ok=True)
        (self.raw_text_dir / f"{record_id}.txt").write_text(raw_text, encoding="utf-8")
        logger.info("Stored receipt %s at %s", record_id, path)
        return record_id

    def receipt_path(self, receipt: StructuredReceipt, record_id: str) -> Path:
        day = receipt_day(receipt)
        folder = str(day.year) if day else "undated"
        date_prefix = day.isoformat() if day else "undated"
        store_name = receipt.store.name or "unknown"
        return self.receipts_dir / folder / f"{date_prefix}_{slug(store_name)}_{record_id}.json"

    def load(self, record_id: str) -> StructuredReceipt:
        matches = sorted(self.receipts_dir.glob(f"*/*_{record_id}.json"))
        if not matches:
            raise FileNotFoundError(f"No stored receipt with id {record_id} under {self.receipts_dir}")
        data = json.loads(matches[0].read_text(encoding="utf-8"))
        return StructuredReceipt.model_validate(data["receipt"])
