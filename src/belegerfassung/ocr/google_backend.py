from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from pathlib import Path

from .base import (
    MIB,
    BackendDescriptor,
    BackendKind,
    CredentialShape,
    ImageInput,
    RecognitionMetadata,
    RecognitionOptions,
    RecognitionResult,
    ValidationOutcome,
    mean_confidence,
    read_image,
    require_valid,
    validate_image,
)
from .errors import BackendProcessingError, BackendUnavailableError

logger = logging.getLogger(__name__)


MODEL = "OCR API v1"

DESCRIPTOR = BackendDescriptor(
    name="google",
    display_name="Google Cloud Vision",
    kind=BackendKind.CLOUD,
    requires_credentials=True,
    credential_shape=CredentialShape.KEYFILE,
    supports_confidence=False,
    max_input_bytes=20 * MIB,
    supported_formats=frozenset({".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp", ".tiff", ".tif", ".ico"}),
    supported_languages=("de", "en", "fr", "es", "it", "nl", "pl", "tr"),
    description="Google Cloud Vision text detection",
)

ClientFactory = Callable[[str | None], object]


def _default_client_factory(key_file: str | None) -> object:
    try:
        from google.cloud import vision  # type: ignore
    except ImportError as exc:
        raise BackendUnavailableError(
            DESCRIPTOR.name, "google-cloud-vision is not installed. Install the `google` extra."
        ) from exc
    if key_file:
        return vision.ImageAnnotatorClient.from_service_account_file(key_file)
    return vision.ImageAnnotatorClient()


class GoogleVisionBackend:
    name = DESCRIPTOR.name

    def __init__(
        self,
        options: RecognitionOptions | None = None,
        *,
        timeout_s: float = 30.0,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.options = RecognitionOptions(language="de").merged(options)
        self.timeout_s = timeout_s
        self.client_factory = client_factory or _default_client_factory
        self._client: object | None = None

    def initialize(self, credentials: Mapping[str, str] | None) -> bool:
        key_file = (credentials or {}).get("key_file")
        if key_file and not Path(key_file).is_file():
            logger.info("Google key file %s not found, using ambient credentials", key_file)
            key_file = None
        try:
            self._client = self.client_factory(key_file)
        except Exception as exc:
            logger.warning("Google Vision client could not be created: %s", exc)
            return False
        return True

    def describe(self) -> BackendDescriptor:
        return DESCRIPTOR

    def validate(self, image: ImageInput) -> ValidationOutcome:
        return validate_image(image, DESCRIPTOR)

    def process(self, image: ImageInput, options: RecognitionOptions | None = None) -> RecognitionResult:
        require_valid(self, image)
        if self._client is None:
            raise BackendProcessingError(self.name, "Google Vision backend used before initialize()")
        opts = self.options.merged(options)

        try:
            data, source_name = read_image(image)
        except OSError as exc:
            raise BackendProcessingError(self.name, f"Could not read image: {exc}") from exc

        image_context = {"language_hints": [opts.language]} if opts.language else None
        try:
            response = self._client.text_detection(  # type: ignore[attr-defined]
                image={"content": data},
                image_context=image_context,
                timeout=self.timeout_s,
            )
        except Exception as exc:
            raise BackendProcessingError(self.name, f"Google Vision request failed: {exc}") from exc

        text, confidence = parse_response(response)
        metadata = RecognitionMetadata(backend=self.name, model=MODEL, source_name=source_name)
        if not text:
            return RecognitionResult.empty(metadata, raw_payload=response)
        return RecognitionResult(text=text, confidence=confidence, metadata=metadata, raw_payload=response)


def parse_response(response: object) -> tuple[str, float]:
    error = getattr(response, "error", None)
    message = getattr(error, "message", "") if error is not None else ""
    if message:
        raise BackendProcessingError(DESCRIPTOR.name, f"Google Vision API error: {message}")

    annotations = list(getattr(response, "text_annotations", None) or [])
    if not annotations:
        return "", 0.0
    text = str(getattr(annotations[0], "description", "") or "").strip()
    # The first annotation is the full text; per-word entries follow.
    scores = [float(getattr(a, "confidence", 0.0) or 0.0) for a in annotations[1:]]
    return text, mean_confidence(scores)
