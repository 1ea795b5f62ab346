from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, fields
from typing import Any

from . import azure_backend, google_backend, ocrspace_backend, paddleocr_backend, tesseract_backend
from .base import BackendDescriptor, CredentialShape, OcrBackend, RecognitionOptions
from .errors import BackendUnavailableError

logger = logging.getLogger(__name__)


BackendFactory = Callable[..., OcrBackend]


@dataclass(frozen=True, slots=True)
class RegistryEntry:
    factory: BackendFactory
    descriptor: BackendDescriptor
    default_options: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class BackendFailure:
    backend: str
    error: str


@dataclass(frozen=True, slots=True)
class CredentialsTemplate:
    shape: CredentialShape
    required: tuple[str, ...]
    optional: tuple[str, ...] = ()
    example: Mapping[str, str] = field(default_factory=dict)


DEFAULT_ENTRIES: dict[str, RegistryEntry] = {
    "google": RegistryEntry(
        factory=google_backend.GoogleVisionBackend,
        descriptor=google_backend.DESCRIPTOR,
        default_options={"language": "de"},
    ),
    "azure": RegistryEntry(
        factory=azure_backend.AzureVisionBackend,
        descriptor=azure_backend.DESCRIPTOR,
        default_options={"language": "de", "detect_orientation": True},
    ),
    "ocrspace": RegistryEntry(
        factory=ocrspace_backend.OcrSpaceBackend,
        descriptor=ocrspace_backend.DESCRIPTOR,
        default_options={"language": "ger", "engine": 2, "scale": True, "detect_orientation": True},
    ),
    "tesseract": RegistryEntry(
        factory=tesseract_backend.TesseractBackend,
        descriptor=tesseract_backend.DESCRIPTOR,
        default_options={"language": "deu+eng", "psm": 6, "oem": 3},
    ),
    "paddleocr": RegistryEntry(
        factory=paddleocr_backend.PaddleOcrBackend,
        descriptor=paddleocr_backend.DESCRIPTOR,
        default_options={"language": "german", "detect_orientation": True},
    ),
}

_TEMPLATES: dict[CredentialShape, CredentialsTemplate] = {
    CredentialShape.NONE: CredentialsTemplate(shape=CredentialShape.NONE, required=()),
    CredentialShape.API_KEY: CredentialsTemplate(
        shape=CredentialShape.API_KEY,
        required=("api_key",),
        example={"api_key": "your-api-key"},
    ),
    CredentialShape.KEY_AND_ENDPOINT: CredentialsTemplate(
        shape=CredentialShape.KEY_AND_ENDPOINT,
        required=("subscription_key", "endpoint"),
        example={"subscription_key": "your-subscription-key", "endpoint": "https://<resource>.cognitiveservices.azure.com"},
    ),
    CredentialShape.KEYFILE: CredentialsTemplate(
        shape=CredentialShape.KEYFILE,
        required=(),
        optional=("key_file", "project_id"),
        example={"key_file": "/path/to/service-account.json"},
    ),
}

_OPTION_FIELDS = frozenset(f.name for f in fields(RecognitionOptions))


class BackendRegistry:
    def __init__(self, entries: Mapping[str, RegistryEntry] | None = None) -> None:
        self._entries: dict[str, RegistryEntry] = dict(DEFAULT_ENTRIES if entries is None else entries)

    def list_available(self) -> list[BackendDescriptor]:
        return [entry.descriptor for entry in self._entries.values()]

    def describe(self, name: str) -> BackendDescriptor:
        return self._entry(name).descriptor

    def recommended_options(self, name: str) -> dict[str, Any]:
        return dict(self._entry(name).default_options)

    def credentials_template(self, name: str) -> CredentialsTemplate:
        return _TEMPLATES[self._entry(name).descriptor.credential_shape]

    def validate_credentials(self, name: str, credentials: Mapping[str, str] | None) -> tuple[bool, str | None]:
        descriptor = self._entry(name).descriptor
        template = _TEMPLATES[descriptor.credential_shape]
        creds = credentials or {}
        missing = [key for key in template.required if not str(creds.get(key) or "").strip()]
        if missing:
            return False, f"Missing credentials for {name}: {', '.join(missing)}"
        return True, None

    def create(
        self,
        name: str,
        config: Mapping[str, Any] | None = None,
        credentials: Mapping[str, str] | None = None,
    ) -> OcrBackend:
        entry = self._entry(name)
        descriptor = entry.descriptor

        if descriptor.requires_credentials and descriptor.credential_shape is not CredentialShape.KEYFILE:
            ok, message = self.validate_credentials(name, credentials)
            if not ok:
                raise BackendUnavailableError(name, message or f"Credentials required for {name}")

        merged = {**entry.default_options, **(config or {})}
        options = RecognitionOptions.from_mapping({k: v for k, v in merged.items() if k in _OPTION_FIELDS})
        settings = {k: v for k, v in merged.items() if k not in _OPTION_FIELDS}
        try:
            backend = entry.factory(options, **settings)
        except TypeError as exc:
            raise BackendUnavailableError(name, f"Invalid configuration for {name}: {exc}") from exc

        if not backend.initialize(credentials):
            raise BackendUnavailableError(name, f"Failed to initialize {descriptor.display_name}")
        logger.info("OCR backend %s ready (%s)", name, descriptor.kind.value)
        return backend

    def create_many(
        self,
        names: Iterable[str],
        config: Mapping[str, Mapping[str, Any]] | None = None,
        credentials: Mapping[str, Mapping[str, str]] | None = None,
    ) -> tuple[dict[str, OcrBackend], list[BackendFailure]]:
        backends: dict[str, OcrBackend] = {}
        failures: list[BackendFailure] = []
        for name in names:
            if name in backends:
                continue
            try:
                backends[name] = self.create(
                    name,
                    config=(config or {}).get(name),
                    credentials=(credentials or {}).get(name),
                )
            except BackendUnavailableError as exc:
                logger.warning("OCR backend %s unavailable: %s", name, exc.message)
                failures.append(BackendFailure(backend=name, error=exc.message))
        return backends, failures

    def _entry(self, name: str) -> RegistryEntry:
        try:
            return self._entries[name]
        except KeyError:
            available = ", ".join(self._entries) or "none"
            raise BackendUnavailableError(name, f"Unknown OCR backend: {name}. Available: {available}") from None
