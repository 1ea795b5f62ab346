from __future__ import annotations

from collections.abc import Mapping

from ..http_client import HttpRequestError, post_bytes
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


MODEL = "OCR API v3.2"
OCR_PATH = "/vision/v3.2/ocr"

DESCRIPTOR = BackendDescriptor(
    name="azure",
    display_name="Azure Computer Vision",
    kind=BackendKind.CLOUD,
    requires_credentials=True,
    credential_shape=CredentialShape.KEY_AND_ENDPOINT,
    supports_confidence=False,
    max_input_bytes=4 * MIB,
    supported_formats=frozenset({".jpg", ".jpeg", ".png", ".gif", ".bmp"}),
    supported_languages=("de", "en", "fr", "es", "it", "nl", "pt"),
    description="Azure Computer Vision printed-text OCR",
)


class AzureVisionBackend:
    name = DESCRIPTOR.name

    def __init__(self, options: RecognitionOptions | None = None, *, timeout_s: float = 30.0) -> None:
        self.options = RecognitionOptions(language="de", detect_orientation=True).merged(options)
        self.timeout_s = timeout_s
        self._key: str | None = None
        self._endpoint: str | None = None

    def initialize(self, credentials: Mapping[str, str] | None) -> bool:
        creds = credentials or {}
        key = creds.get("subscription_key")
        endpoint = creds.get("endpoint")
        if not isinstance(key, str) or not key.strip():
            return False
        if not isinstance(endpoint, str) or not endpoint.strip().startswith(("https://", "http://")):
            return False
        self._key = key.strip()
        self._endpoint = endpoint.strip().rstrip("/")
        return True

    def describe(self) -> BackendDescriptor:
        return DESCRIPTOR

    def validate(self, image: ImageInput) -> ValidationOutcome:
        return validate_image(image, DESCRIPTOR)

    def process(self, image: ImageInput, options: RecognitionOptions | None = None) -> RecognitionResult:
        require_valid(self, image)
        if self._key is None or self._endpoint is None:
            raise BackendProcessingError(self.name, "Azure backend used before initialize()")
        opts = self.options.merged(options)

        try:
            data, source_name = read_image(image)
        except OSError as exc:
            raise BackendProcessingError(self.name, f"Could not read image: {exc}") from exc

        params = {"detectOrientation": "true" if opts.detect_orientation else "false"}
        if opts.language:
            params["language"] = opts.language
        try:
            payload = post_bytes(
                f"{self._endpoint}{OCR_PATH}",
                data,
                headers={"Ocp-Apim-Subscription-Key": self._key},
                params=params,
                timeout_s=self.timeout_s,
            )
        except HttpRequestError as exc:
            if exc.credentials_rejected:
                raise BackendUnavailableError(self.name, f"Azure rejected the subscription key: {exc}") from exc
            raise BackendProcessingError(self.name, f"Azure OCR request failed: {exc}") from exc

        text, confidence = parse_response(payload)
        metadata = RecognitionMetadata(backend=self.name, model=MODEL, source_name=source_name)
        if not text:
            return RecognitionResult.empty(metadata, raw_payload=payload)
        return RecognitionResult(text=text, confidence=confidence, metadata=metadata, raw_payload=payload)


def parse_response(payload: Mapping) -> tuple[str, float]:
    if "error" in payload:
        error = payload.get("error") or {}
        raise BackendProcessingError(DESCRIPTOR.name, f"Azure OCR error: {error.get('message') or error}")

    lines: list[str] = []
    scores: list[float] = []
    for region in payload.get("regions") or []:
        for line in region.get("lines") or []:
            words = [str(w.get("text") or "") for w in line.get("words") or []]
            joined = " ".join(w for w in words if w)
            if joined:
                lines.append(joined)
            for word in line.get("words") or []:
                if "confidence" in word:
                    scores.append(float(word["confidence"]))

    return "\n".join(lines).strip(), mean_confidence(scores)
