from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..models import BackendAttempt


class OcrError(RuntimeError):
    def __init__(self, backend: str | None, message: str) -> None:
        super().__init__(message)
        self.backend = backend
        self.message = message


class ValidationError(OcrError):
    """The input image was rejected before any backend call."""


class BackendUnavailableError(OcrError):
    pass


class BackendTimeoutError(OcrError):
    def __init__(self, backend: str, timeout_ms: int) -> None:
        super().__init__(backend, f"{backend} did not answer within {timeout_ms} ms")
        self.timeout_ms = timeout_ms


class BackendProcessingError(OcrError):
    pass


class AllBackendsFailed(OcrError):
    def __init__(self, attempts: Sequence[BackendAttempt]) -> None:
        names = ", ".join(f"{a.backend} ({a.status})" for a in attempts) or "none configured"
        super().__init__(None, f"All OCR backends failed: {names}")
        self.attempts = list(attempts)
