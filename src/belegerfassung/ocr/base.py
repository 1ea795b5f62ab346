from __future__ import annotations

import math
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from .errors import ValidationError


ImageInput = str | Path | bytes

MIB = 1024 * 1024


class BackendKind(str, Enum):
    CLOUD = "cloud"
    LOCAL = "local"


class CredentialShape(str, Enum):
    NONE = "none"
    API_KEY = "api-key"
    KEY_AND_ENDPOINT = "key+endpoint"
    KEYFILE = "keyfile"


@dataclass(frozen=True, slots=True)
class RecognitionOptions:
    language: str | None = None
    engine: int | None = None
    detect_orientation: bool | None = None
    scale: bool | None = None

    def merged(self, other: RecognitionOptions | None) -> RecognitionOptions:
        if other is None:
            return self
        updates = {f.name: getattr(other, f.name) for f in fields(other) if getattr(other, f.name) is not None}
        return replace(self, **updates)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> RecognitionOptions:
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True, slots=True)
class BackendDescriptor:
    name: str
    display_name: str
    kind: BackendKind
    requires_credentials: bool
    credential_shape: CredentialShape
    supports_confidence: bool
    max_input_bytes: int
    supported_formats: frozenset[str]
    supported_languages: tuple[str, ...] = ()
    description: str = ""


@dataclass(frozen=True, slots=True)
class ValidationOutcome:
    valid: bool
    reason: str | None = None
    file_size: int | None = None
    file_format: str | None = None


@dataclass(frozen=True, slots=True)
class RecognitionMetadata:
    backend: str
    model: str | None = None
    source_name: str | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


@dataclass(frozen=True, slots=True)
class RecognitionResult:
    text: str
    confidence: float
    metadata: RecognitionMetadata
    raw_payload: object = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")

    @classmethod
    def empty(cls, metadata: RecognitionMetadata, raw_payload: object = None) -> RecognitionResult:
        return cls(text="", confidence=0.0, metadata=metadata, raw_payload=raw_payload)


@runtime_checkable
class OcrBackend(Protocol):
    name: str

    def initialize(self, credentials: Mapping[str, str] | None) -> bool: ...

    def validate(self, image: ImageInput) -> ValidationOutcome: ...

    def process(self, image: ImageInput, options: RecognitionOptions | None = None) -> RecognitionResult: ...

    def describe(self) -> BackendDescriptor: ...


_SIGNATURES: tuple[tuple[bytes, int, str], ...] = (
    (b"\xff\xd8\xff", 0, ".jpg"),
    (b"\x89PNG\r\n\x1a\n", 0, ".png"),
    (b"GIF87a", 0, ".gif"),
    (b"GIF89a", 0, ".gif"),
    (b"%PDF", 0, ".pdf"),
    (b"II*\x00", 0, ".tiff"),
    (b"MM\x00*", 0, ".tiff"),
    (b"WEBP", 8, ".webp"),
    (b"BM", 0, ".bmp"),
)


def sniff_format(data: bytes) -> str:
    for magic, offset, suffix in _SIGNATURES:
        if data[offset : offset + len(magic)] == magic:
            return suffix
    return ".bin"


def _normalize_suffix(suffix: str) -> str:
    suffix = suffix.lower()
    return {".jpeg": ".jpg", ".tif": ".tiff"}.get(suffix, suffix)


def _format_supported(file_format: str, supported: frozenset[str]) -> bool:
    return file_format in supported or _normalize_suffix(file_format) in {_normalize_suffix(s) for s in supported}


def validate_image(image: ImageInput, descriptor: BackendDescriptor) -> ValidationOutcome:
    supported = ", ".join(sorted(descriptor.supported_formats))

    if isinstance(image, (bytes, bytearray)):
        size = len(image)
        file_format = sniff_format(bytes(image))
    else:
        path = Path(image)
        if not path.exists():
            return ValidationOutcome(valid=False, reason=f"File not found: {path}")
        if not path.is_file():
            return ValidationOutcome(valid=False, reason=f"Not a regular file: {path}")
        try:
            size = path.stat().st_size
        except OSError as exc:
            return ValidationOutcome(valid=False, reason=f"File not readable: {exc}")
        file_format = path.suffix.lower() or ".bin"

    if size == 0:
        return ValidationOutcome(valid=False, reason="File is empty", file_size=0, file_format=file_format)
    if size > descriptor.max_input_bytes:
        return ValidationOutcome(
            valid=False,
            reason=f"File too large: {size} bytes (max: {descriptor.max_input_bytes} bytes)",
            file_size=size,
            file_format=file_format,
        )
    if not _format_supported(file_format, descriptor.supported_formats):
        return ValidationOutcome(
            valid=False,
            reason=f"Unsupported format: {file_format} (supported: {supported})",
            file_size=size,
            file_format=file_format,
        )
    return ValidationOutcome(valid=True, file_size=size, file_format=file_format)


def require_valid(backend: OcrBackend, image: ImageInput) -> ValidationOutcome:
    outcome = backend.validate(image)
    if not outcome.valid:
        raise ValidationError(backend.name, outcome.reason or "invalid image")
    return outcome


def read_image(image: ImageInput) -> tuple[bytes, str | None]:
    if isinstance(image, (bytes, bytearray)):
        return bytes(image), None
    path = Path(image)
    return path.read_bytes(), path.name


def clamp_confidence(value: float | None) -> float:
    if value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return min(1.0, max(0.0, number))


def mean_confidence(values: list[float], *, scale: float = 1.0) -> float:
    usable = [v / scale for v in values if v is not None and v >= 0]
    if not usable:
        return 0.0
    return clamp_confidence(sum(usable) / len(usable))
