from __future__ import annotations

import io
import logging
from collections.abc import Mapping

import pytesseract
from PIL import Image

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


DESCRIPTOR = BackendDescriptor(
    name="tesseract",
    display_name="Tesseract",
    kind=BackendKind.LOCAL,
    requires_credentials=False,
    credential_shape=CredentialShape.NONE,
    supports_confidence=True,
    max_input_bytes=50 * MIB,
    supported_formats=frozenset({".jpg", ".jpeg", ".png", ".gif", ".bmp", ".tiff", ".tif", ".webp"}),
    supported_languages=("deu", "eng", "deu+eng", "fra", "spa", "ita"),
    description="Local Tesseract engine via pytesseract, no network access needed",
)


class TesseractBackend:
    name = DESCRIPTOR.name

    def __init__(
        self,
        options: RecognitionOptions | None = None,
        *,
        tesseract_cmd: str | None = None,
        psm: int = 6,
        oem: int = 3,
        timeout_s: float = 30.0,
    ) -> None:
        self.options = RecognitionOptions(language="deu+eng").merged(options)
        self.tesseract_cmd = tesseract_cmd
        self.psm = psm
        self.oem = oem
        self.timeout_s = timeout_s

    def initialize(self, credentials: Mapping[str, str] | None = None) -> bool:
        # pytesseract keeps the binary path module-wide.
        if self.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd
        return True

    def describe(self) -> BackendDescriptor:
        return DESCRIPTOR

    def validate(self, image: ImageInput) -> ValidationOutcome:
        return validate_image(image, DESCRIPTOR)

    def process(self, image: ImageInput, options: RecognitionOptions | None = None) -> RecognitionResult:
        require_valid(self, image)
        opts = self.options.merged(options)

        try:
            data, source_name = read_image(image)
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                ocr_data = pytesseract.image_to_data(
                    img,
                    lang=opts.language or "deu+eng",
                    config=f"--oem {self.oem} --psm {self.psm}",
                    output_type=pytesseract.Output.DICT,
                    timeout=self.timeout_s,
                )
        except pytesseract.TesseractNotFoundError as exc:
            raise BackendUnavailableError(self.name, f"Tesseract binary not found: {exc}") from exc
        except (pytesseract.TesseractError, RuntimeError, OSError) as exc:
            raise BackendProcessingError(self.name, f"Tesseract failed: {exc}") from exc

        text, confidence = text_and_confidence(ocr_data)
        metadata = RecognitionMetadata(backend=self.name, model=f"tesseract ({opts.language})", source_name=source_name)
        if not text:
            return RecognitionResult.empty(metadata, raw_payload=ocr_data)
        logger.debug("tesseract read %d characters, confidence %.2f", len(text), confidence)
        return RecognitionResult(text=text, confidence=confidence, metadata=metadata, raw_payload=ocr_data)


def text_and_confidence(data: Mapping[str, list]) -> tuple[str, float]:
    words = data.get("text") or []
    confs = data.get("conf") or []
    blocks = data.get("block_num") or [0] * len(words)
    pars = data.get("par_num") or [0] * len(words)
    line_nums = data.get("line_num") or [0] * len(words)

    lines: dict[tuple[int, int, int], list[str]] = {}
    scores: list[float] = []
    for idx, word in enumerate(words):
        word = str(word).strip()
        if not word:
            continue
        key = (int(blocks[idx]), int(pars[idx]), int(line_nums[idx]))
        lines.setdefault(key, []).append(word)
        try:
            conf = float(confs[idx])
        except (IndexError, TypeError, ValueError):
            continue
        if conf >= 0:
            scores.append(conf)

    text = "\n".join(" ".join(parts) for _, parts in sorted(lines.items()))
    return text.strip(), mean_confidence(scores, scale=100.0)
