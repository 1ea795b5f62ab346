import pytest

from belegerfassung.ocr.errors import (
    AllBackendsFailed,
    BackendProcessingError,
    BackendUnavailableError,
    ValidationError,
)
from belegerfassung.ocr.orchestrator import Orchestrator, OrchestratorPolicy

from fakes import FakeBackend


IMAGE = b"\xff\xd8\xff\xe0fake-jpeg"


def _statuses(outcome_or_error) -> list[str]:
    return [attempt.status for attempt in outcome_or_error.attempts]


def test_primary_above_threshold_skips_fallback() -> None:
    primary = FakeBackend("google", confidence=0.9)
    fallback = FakeBackend("tesseract")
    orchestrator = Orchestrator({"google": primary, "tesseract": fallback}, OrchestratorPolicy())

    outcome = orchestrator.run(IMAGE)

    assert outcome.service_used == "google"
    assert outcome.fallback_used is False
    assert fallback.calls == 0
    assert _statuses(outcome) == ["accepted"]


def test_fallback_used_when_primary_fails() -> None:
    primary = FakeBackend("google", error=BackendProcessingError("google", "quota exceeded"))
    fallback = FakeBackend("tesseract", confidence=0.7)
    orchestrator = Orchestrator({"google": primary, "tesseract": fallback}, OrchestratorPolicy())

    outcome = orchestrator.run(IMAGE)

    assert outcome.service_used == "tesseract"
    assert outcome.fallback_used is True
    assert _statuses(outcome) == ["failed", "accepted"]
    assert outcome.attempts[0].error == "quota exceeded"


def test_low_confidence_primary_then_accepted_fallback() -> None:
    orchestrator = Orchestrator(
        {"google": FakeBackend("google", confidence=0.3), "tesseract": FakeBackend("tesseract", confidence=0.8)},
        OrchestratorPolicy(),
    )

    outcome = orchestrator.run(IMAGE)

    assert outcome.service_used == "tesseract"
    assert outcome.fallback_used is True
    assert _statuses(outcome) == ["low_confidence", "accepted"]


def test_remaining_backends_tried_in_map_order() -> None:
    backends = {
        "google": FakeBackend("google", error=BackendUnavailableError("google", "no credentials")),
        "azure": FakeBackend("azure", error=RuntimeError("boom")),
        "tesseract": FakeBackend("tesseract", error=BackendProcessingError("tesseract", "crash")),
        "ocrspace": FakeBackend("ocrspace", confidence=0.6),
    }
    orchestrator = Orchestrator(backends, OrchestratorPolicy(primary="google", fallback="tesseract"))

    assert orchestrator.attempt_order() == [
        ("primary", "google"),
        ("fallback", "tesseract"),
        ("remaining", "azure"),
        ("remaining", "ocrspace"),
    ]
    outcome = orchestrator.run(IMAGE)

    assert outcome.service_used == "ocrspace"
    assert _statuses(outcome) == ["unavailable", "failed", "failed", "accepted"]
    assert outcome.attempts[2].error == "RuntimeError: boom"


def test_best_candidate_chosen_when_nobody_reaches_threshold() -> None:
    backends = {
        "google": FakeBackend("google", confidence=0.2),
        "tesseract": FakeBackend("tesseract", confidence=0.4),
        "ocrspace": FakeBackend("ocrspace", confidence=0.4),
    }
    orchestrator = Orchestrator(backends, OrchestratorPolicy(min_confidence=0.9))

    outcome = orchestrator.run(IMAGE)

    # Ties go to the earliest attempt.
    assert outcome.service_used == "tesseract"
    assert outcome.fallback_used is True
    assert outcome.result.confidence == pytest.approx(0.4)
    assert all(backend.calls == 1 for backend in backends.values())


def test_unknown_confidence_ranks_above_weak_reported_confidence() -> None:
    backends = {
        "azure": FakeBackend("azure", confidence=0.0, supports_confidence=False),
        "tesseract": FakeBackend("tesseract", confidence=0.3),
    }
    orchestrator = Orchestrator(backends, OrchestratorPolicy(primary="azure", fallback="tesseract"))

    outcome = orchestrator.run(IMAGE)

    assert outcome.service_used == "azure"
    assert outcome.fallback_used is True
    assert outcome.result.confidence == 0.0


def test_empty_text_without_confidence_is_not_treated_as_unknown() -> None:
    backends = {
        "azure": FakeBackend("azure", text="", confidence=0.0, supports_confidence=False),
        "tesseract": FakeBackend("tesseract", confidence=0.3),
    }
    orchestrator = Orchestrator(backends, OrchestratorPolicy(primary="azure", fallback="tesseract"))

    assert orchestrator.run(IMAGE).service_used == "tesseract"


def test_single_primary_below_threshold_is_not_a_fallback() -> None:
    orchestrator = Orchestrator(
        {"tesseract": FakeBackend("tesseract", confidence=0.1)},
        OrchestratorPolicy(primary="tesseract", fallback=None),
    )

    outcome = orchestrator.run(IMAGE)

    assert outcome.service_used == "tesseract"
    assert outcome.fallback_used is False


def test_fallback_equal_to_primary_is_tried_once() -> None:
    backend = FakeBackend("tesseract", confidence=0.1)
    orchestrator = Orchestrator({"tesseract": backend}, OrchestratorPolicy(primary="tesseract", fallback="tesseract"))

    orchestrator.run(IMAGE)

    assert backend.calls == 1


def test_missing_primary_is_recorded_as_unavailable() -> None:
    orchestrator = Orchestrator({"tesseract": FakeBackend("tesseract", confidence=0.8)}, OrchestratorPolicy())

    outcome = orchestrator.run(IMAGE)

    assert outcome.service_used == "tesseract"
    assert outcome.attempts[0].backend == "google"
    assert outcome.attempts[0].status == "unavailable"


def test_all_backends_failing_raises() -> None:
    backends = {
        "google": FakeBackend("google", error=ValidationError("google", "File is empty")),
        "tesseract": FakeBackend("tesseract", error=BackendProcessingError("tesseract", "crash")),
    }
    orchestrator = Orchestrator(backends, OrchestratorPolicy())

    with pytest.raises(AllBackendsFailed) as excinfo:
        orchestrator.run(IMAGE)

    assert _statuses(excinfo.value) == ["invalid", "failed"]
    assert "google (invalid)" in str(excinfo.value)


def test_slow_backend_times_out() -> None:
    slow = FakeBackend("google", delay_s=0.5)
    fallback = FakeBackend("tesseract", confidence=0.8)
    orchestrator = Orchestrator({"google": slow, "tesseract": fallback}, OrchestratorPolicy(timeout_ms=50))

    outcome = orchestrator.run(IMAGE)

    assert outcome.service_used == "tesseract"
    assert outcome.attempts[0].status == "timeout"
    assert outcome.attempts[0].elapsed_ms < 500


def test_zero_threshold_accepts_any_result() -> None:
    orchestrator = Orchestrator(
        {"google": FakeBackend("google", text="", confidence=0.0)},
        OrchestratorPolicy(fallback=None, min_confidence=0.0),
    )

    outcome = orchestrator.run(IMAGE)

    assert outcome.service_used == "google"
    assert outcome.fallback_used is False
    assert _statuses(outcome) == ["accepted"]


def test_policy_validation() -> None:
    with pytest.raises(ValueError):
        OrchestratorPolicy(timeout_ms=0)
    with pytest.raises(ValueError):
        OrchestratorPolicy(min_confidence=1.5)
    with pytest.raises(ValueError):
        OrchestratorPolicy(primary="")


def test_status_lists_configured_backends() -> None:
    orchestrator = Orchestrator({"tesseract": FakeBackend("tesseract")}, OrchestratorPolicy(primary="tesseract"))

    status = orchestrator.status()

    assert status["available_services"] == ["tesseract"]
    assert status["primary"] == "tesseract"
    assert status["services"]["tesseract"]["kind"] == "local"
