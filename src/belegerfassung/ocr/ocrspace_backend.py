from __future__ import annotations

import base64
import logging
from collections.abc import Mapping

from ..http_client import HttpRequestError, post_form
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


API_URL = "https://api.ocr.space/parse/image"
ENGINES = {1: "OCR.space Engine 1", 2: "OCR.space Engine 2", 3: "OCR.space Engine 3"}
FREE_TIER_REQUESTS_PER_DAY = 500

_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".tiff": "image/tiff",
    ".tif": "image/tiff",
    ".pdf": "application/pdf",
}

DESCRIPTOR = BackendDescriptor(
    name="ocrspace",
    display_name="OCR.space",
    kind=BackendKind.CLOUD,
    requires_credentials=True,
    credential_shape=CredentialShape.API_KEY,
    supports_confidence=True,
    max_input_bytes=10 * MIB,
    supported_formats=frozenset(_MIME_TYPES),
    supported_languages=("eng", "ger", "fra", "spa", "ita", "por", "rus", "chi_sim", "chi_tra", "jpn", "kor"),
    description=f"Hosted OCR API, free tier limited to {FREE_TIER_REQUESTS_PER_DAY} requests per day",
)


class OcrSpaceBackend:
    name = DESCRIPTOR.name

    def __init__(self, options: RecognitionOptions | None = None, *, api_url: str = API_URL, timeout_s: float = 30.0) -> None:
        self.options = RecognitionOptions(language="ger", engine=2, scale=True, detect_orientation=True).merged(options)
        self.api_url = api_url
        self.timeout_s = timeout_s
        self._api_key: str | None = None

    def initialize(self, credentials: Mapping[str, str] | None) -> bool:
        api_key = (credentials or {}).get("api_key")
        if not isinstance(api_key, str) or not api_key.strip():
            return False
        self._api_key = api_key.strip()
        return True

    def describe(self) -> BackendDescriptor:
        return DESCRIPTOR

    def validate(self, image: ImageInput) -> ValidationOutcome:
        return validate_image(image, DESCRIPTOR)

    def process(self, image: ImageInput, options: RecognitionOptions | None = None) -> RecognitionResult:
        outcome = require_valid(self, image)
        if self._api_key is None:
            raise BackendProcessingError(self.name, "OCR.space backend used before initialize()")
        opts = self.options.merged(options)
        engine = opts.engine if opts.engine in ENGINES else 2

        try:
            data, source_name = read_image(image)
        except OSError as exc:
            raise BackendProcessingError(self.name, f"Could not read image: {exc}") from exc

        file_format = (outcome.file_format or ".jpg").lower()
        mime = _MIME_TYPES.get(file_format, "image/jpeg")
        fields = {
            "apikey": self._api_key,
            "language": opts.language or "ger",
            "filetype": file_format.lstrip(".").upper(),
            "base64Image": f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}",
            "OCREngine": str(engine),
            "isOverlayRequired": "true",
            "scale": _flag(opts.scale),
            "detectOrientation": _flag(opts.detect_orientation),
        }

        try:
            payload = post_form(self.api_url, fields, timeout_s=self.timeout_s)
        except HttpRequestError as exc:
            if exc.credentials_rejected:
                raise BackendUnavailableError(self.name, f"OCR.space rejected the API key: {exc}") from exc
            raise BackendProcessingError(self.name, f"OCR.space request failed: {exc}") from exc

        text, confidence = parse_response(payload)
        metadata = RecognitionMetadata(backend=self.name, model=ENGINES[engine], source_name=source_name)
        if not text:
            return RecognitionResult.empty(metadata, raw_payload=payload)
        return RecognitionResult(text=text, confidence=confidence, metadata=metadata, raw_payload=payload)


def parse_response(payload: Mapping) -> tuple[str, float]:
    if payload.get("IsErroredOnProcessing"):
        message = payload.get("ErrorMessage") or "unknown error"
        if isinstance(message, list):
            message = "; ".join(str(m) for m in message)
        raise BackendProcessingError(DESCRIPTOR.name, f"OCR.space API error: {message}")

    results = payload.get("ParsedResults") or []
    texts: list[str] = []
    scores: list[float] = []
    for result in results:
        parsed = str(result.get("ParsedText") or "").strip()
        if parsed:
            texts.append(parsed)
        overlay = result.get("TextOverlay") or {}
        for line in overlay.get("Lines") or []:
            for word in line.get("Words") or []:
                if "Confidence" in word:
                    try:
                        scores.append(float(word["Confidence"]))
                    except (TypeError, ValueError):
                        continue

    text = "\n".join(texts).replace("\r\n", "\n").strip()
    return text, mean_confidence(scores, scale=100.0)


def _flag(value: bool | None) -> str:
    return "true" if value else "false"
