from pathlib import Path

import pytest

from belegerfassung.config import AppConfig
from belegerfassung.engine import ReceiptPipeline
from belegerfassung.logging import configure_logging
from belegerfassung.models import StructuredReceipt
from belegerfassung.ocr.errors import AllBackendsFailed, BackendProcessingError
from belegerfassung.ocr.orchestrator import Orchestrator, OrchestratorPolicy
from belegerfassung.storage import JsonReceiptStore

from fakes import FakeBackend


EDEKA_TEXT = "\n".join(
    [
        "EDEKA",
        "Dörpfeldstr. 46",
        "G&G Gouda 1,99 € x 2 3,98 €",
        "SUMME EUR 3,98",
        "05.06.2025 08:49",
    ]
)


class RecordingStore:
    def __init__(self) -> None:
        self.calls: list[tuple[StructuredReceipt, str]] = []

    def store(self, receipt: StructuredReceipt, raw_text: str) -> str:
        self.calls.append((receipt, raw_text))
        return f"record-{len(self.calls)}"


def _orchestrator(*backends: FakeBackend, fallback: str | None = None) -> Orchestrator:
    policy = OrchestratorPolicy(primary=backends[0].name, fallback=fallback)
    return Orchestrator({b.name: b for b in backends}, policy)


def test_process_image_extracts_and_stores_once(tmp_path: Path) -> None:
    store = JsonReceiptStore(tmp_path)
    pipeline = ReceiptPipeline(_orchestrator(FakeBackend("tesseract", text=EDEKA_TEXT, confidence=0.9)), store)

    processed = pipeline.process_image(b"\xff\xd8\xff")

    assert processed.service_used == "tesseract"
    assert processed.fallback_used is False
    assert processed.receipt.store.name == "EDEKA"
    assert processed.receipt.confidence == pytest.approx(0.9)
    assert processed.attempts[0].status == "accepted"
    assert store.load(processed.record_id) == processed.receipt
    assert len(list((tmp_path / "receipts").rglob("*.json"))) == 1


def test_fallback_result_is_reported(tmp_path: Path) -> None:
    store = RecordingStore()
    primary = FakeBackend("google", error=BackendProcessingError("google", "quota"))
    fallback = FakeBackend("tesseract", text=EDEKA_TEXT, confidence=0.7)
    pipeline = ReceiptPipeline(_orchestrator(primary, fallback, fallback="tesseract"), store)

    processed = pipeline.process_image(b"\xff\xd8\xff")

    assert processed.service_used == "tesseract"
    assert processed.fallback_used is True
    assert processed.record_id == "record-1"
    assert store.calls[0][1] == EDEKA_TEXT


def test_nothing_is_stored_when_every_backend_fails() -> None:
    store = RecordingStore()
    backend = FakeBackend("google", error=BackendProcessingError("google", "down"))
    pipeline = ReceiptPipeline(_orchestrator(backend), store)

    with pytest.raises(AllBackendsFailed):
        pipeline.process_image(b"\xff\xd8\xff")

    assert store.calls == []


def test_process_text_without_store() -> None:
    pipeline = ReceiptPipeline(_orchestrator(FakeBackend("tesseract")))

    processed = pipeline.process_text(EDEKA_TEXT)

    assert processed.record_id is None
    assert processed.service_used == "text"
    assert processed.receipt.totals.total_amount == pytest.approx(3.98)


def test_from_config_skips_unavailable_backends(tmp_path: Path) -> None:
    config = AppConfig(
        policy=OrchestratorPolicy(primary="tesseract", fallback="ocrspace"),
        backends=("tesseract", "ocrspace"),
        data_dir=tmp_path,
        log_level="WARNING",
    )

    pipeline = ReceiptPipeline.from_config(config)

    assert list(pipeline.orchestrator.backends) == ["tesseract"]
    assert pipeline.orchestrator.policy.fallback == "ocrspace"
    assert isinstance(pipeline.store, JsonReceiptStore)
    assert pipeline.store.root == tmp_path


def test_configure_logging_is_idempotent() -> None:
    first = configure_logging("DEBUG")
    second = configure_logging("warning")

    assert first is second
    assert len(second.handlers) == 1
    assert second.level == 30
