from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field

from ..models import BackendAttempt
from .base import ImageInput, OcrBackend, RecognitionOptions, RecognitionResult
from .errors import (
    AllBackendsFailed,
    BackendProcessingError,
    BackendTimeoutError,
    BackendUnavailableError,
    OcrError,
    ValidationError,
)

logger = logging.getLogger(__name__)


PRIMARY = "primary"
FALLBACK = "fallback"
REMAINING = "remaining"


@dataclass(frozen=True, slots=True)
class OrchestratorPolicy:
    primary: str = "google"
    fallback: str | None = "tesseract"
    timeout_ms: int = 30_000
    min_confidence: float = 0.5
    # Rank used in best-candidate selection for backends that cannot report confidence.
    unknown_confidence: float = 0.5

    def __post_init__(self) -> None:
        if not self.primary:
            raise ValueError("primary backend name must not be empty")
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {self.timeout_ms}")
        for label, value in (("min_confidence", self.min_confidence), ("unknown_confidence", self.unknown_confidence)):
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{label} must be within [0, 1], got {value}")

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0


@dataclass(frozen=True, slots=True)
class OrchestrationOutcome:
    result: RecognitionResult
    service_used: str
    fallback_used: bool
    attempts: list[BackendAttempt] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class _Candidate:
    backend: str
    stage: str
    result: RecognitionResult
    rank: float


class Orchestrator:
    def __init__(self, backends: Mapping[str, OcrBackend], policy: OrchestratorPolicy | None = None) -> None:
        self.backends: dict[str, OcrBackend] = dict(backends)
        self.policy = policy or OrchestratorPolicy()

    def attempt_order(self) -> list[tuple[str, str]]:
        order = [(PRIMARY, self.policy.primary)]
        fallback = self.policy.fallback
        if fallback and fallback != self.policy.primary:
            order.append((FALLBACK, fallback))
        tried = {name for _, name in order}
        order.extend((REMAINING, name) for name in self.backends if name not in tried)
        return order

    def run(self, image: ImageInput, options: RecognitionOptions | None = None) -> OrchestrationOutcome:
        attempts: list[BackendAttempt] = []
        candidates: list[_Candidate] = []

        for stage, name in self.attempt_order():
            started = time.monotonic()
            backend = self.backends.get(name)
            try:
                if backend is None:
                    raise BackendUnavailableError(name, f"OCR backend {name} is not configured")
                result = self._attempt(name, backend, image, options)
            except OcrError as exc:
                attempts.append(_failed_attempt(name, stage, exc, started))
                logger.warning("OCR %s backend %s failed: %s", stage, name, exc.message)
                continue

            accepted = result.confidence >= self.policy.min_confidence
            attempts.append(
                BackendAttempt(
                    backend=name,
                    stage=stage,
                    status="accepted" if accepted else "low_confidence",
                    confidence=result.confidence,
                    elapsed_ms=_elapsed_ms(started),
                )
            )
            if accepted:
                logger.info("OCR %s backend %s accepted (confidence %.2f)", stage, name, result.confidence)
                return OrchestrationOutcome(
                    result=result,
                    service_used=name,
                    fallback_used=stage != PRIMARY,
                    attempts=attempts,
                )
            logger.info(
                "OCR %s backend %s below threshold (%.2f < %.2f)",
                stage,
                name,
                result.confidence,
                self.policy.min_confidence,
            )
            candidates.append(_Candidate(backend=name, stage=stage, result=result, rank=self._rank(backend, result)))

        if not candidates:
            logger.error("All OCR backends failed after %d attempts", len(attempts))
            raise AllBackendsFailed(attempts)

        best = candidates[0]
        for candidate in candidates[1:]:
            if candidate.rank > best.rank:
                best = candidate
        only_primary = best.stage == PRIMARY and len(attempts) == 1
        logger.info("OCR best candidate %s (confidence %.2f) chosen from %d", best.backend, best.result.confidence, len(candidates))
        return OrchestrationOutcome(
            result=best.result,
            service_used=best.backend,
            fallback_used=not only_primary,
            attempts=attempts,
        )

    def status(self) -> dict:
        return {
            "available_services": list(self.backends),
            "primary": self.policy.primary,
            "fallback": self.policy.fallback,
            "timeout_ms": self.policy.timeout_ms,
            "min_confidence": self.policy.min_confidence,
            "services": {
                name: {
                    "display_name": backend.describe().display_name,
                    "kind": backend.describe().kind.value,
                    "supports_confidence": backend.describe().supports_confidence,
                }
                for name, backend in self.backends.items()
            },
        }

    def _attempt(
        self,
        name: str,
        backend: OcrBackend,
        image: ImageInput,
        options: RecognitionOptions | None,
    ) -> RecognitionResult:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"ocr-{name}")
        try:
            future = executor.submit(backend.process, image, options)
            try:
                return future.result(timeout=self.policy.timeout_s)
            except FutureTimeoutError as exc:
                # The worker keeps running; its late result is never read.
                future.cancel()
                raise BackendTimeoutError(name, self.policy.timeout_ms) from exc
            except OcrError:
                raise
            except Exception as exc:
                raise BackendProcessingError(name, f"{type(exc).__name__}: {exc}") from exc
        finally:
            executor.shutdown(wait=False)

    def _rank(self, backend: OcrBackend, result: RecognitionResult) -> float:
        if result.confidence == 0.0 and result.text.strip() and not backend.describe().supports_confidence:
            return self.policy.unknown_confidence
        return result.confidence


def _failed_attempt(name: str, stage: str, exc: OcrError, started: float) -> BackendAttempt:
    if isinstance(exc, BackendTimeoutError):
        status = "timeout"
    elif isinstance(exc, BackendUnavailableError):
        status = "unavailable"
    elif isinstance(exc, ValidationError):
        status = "invalid"
    else:
        status = "failed"
    return BackendAttempt(backend=name, stage=stage, status=status, error=exc.message, elapsed_ms=_elapsed_ms(started))


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
