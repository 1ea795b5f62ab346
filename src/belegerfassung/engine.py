from __future__ import annotations

import logging

from .config import AppConfig
from .extraction.engine import extract_receipt
from .logging import configure_logging
from .models import ProcessedReceipt
from .ocr.base import ImageInput, RecognitionOptions
from .ocr.orchestrator import Orchestrator
from .ocr.registry import BackendRegistry
from .rules.loader import RetailerRules
from .storage import JsonReceiptStore, ReceiptStore

logger = logging.getLogger(__name__)


class ReceiptPipeline:
    def __init__(
        self,
        orchestrator: Orchestrator,
        store: ReceiptStore | None = None,
        *,
        retailers: RetailerRules | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        self.retailers = retailers or RetailerRules.load_default()

    @classmethod
    def from_config(cls, config: AppConfig, registry: BackendRegistry | None = None) -> "ReceiptPipeline":
        configure_logging(config.log_level)
        registry = registry or BackendRegistry()
        backends, failures = registry.create_many(
            config.backends,
            config=config.backend_options,
            credentials=config.credentials,
        )
        for failure in failures:
            logger.warning("Skipping OCR backend %s: %s", failure.backend, failure.error)
        logger.info("OCR backends available: %s", ", ".join(backends) or "none")
        return cls(Orchestrator(backends, config.policy), JsonReceiptStore(config.data_dir))

    def process_image(self, image: ImageInput, *, options: RecognitionOptions | None = None) -> ProcessedReceipt:
        outcome = self.orchestrator.run(image, options)
        receipt = extract_receipt(
            outcome.result.text,
            confidence=outcome.result.confidence,
            retailers=self.retailers,
        )
        record_id = self.store.store(receipt, outcome.result.text) if self.store is not None else None
        logger.info(
            "Processed receipt via %s (fallback=%s, items=%d, total=%s)",
            outcome.service_used,
            outcome.fallback_used,
            len(receipt.items),
            receipt.totals.total_amount,
        )
        return ProcessedReceipt(
            receipt=receipt,
            service_used=outcome.service_used,
            fallback_used=outcome.fallback_used,
            record_id=record_id,
            attempts=outcome.attempts,
        )

    def process_text(self, text: str, *, confidence: float = 1.0, source: str = "text") -> ProcessedReceipt:
        receipt = extract_receipt(text, confidence=confidence, retailers=self.retailers)
        record_id = self.store.store(receipt, text) if self.store is not None else None
        return ProcessedReceipt(receipt=receipt, service_used=source, fallback_used=False, record_id=record_id)
