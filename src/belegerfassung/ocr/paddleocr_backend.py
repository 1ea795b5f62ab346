from __future__ import annotations

import logging
import sys
import tempfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from functools import lru_cache
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
    require_valid,
    validate_image,
)
from .errors import BackendProcessingError, BackendUnavailableError

logger = logging.getLogger(__name__)


DESCRIPTOR = BackendDescriptor(
    name="paddleocr",
    display_name="PaddleOCR",
    kind=BackendKind.LOCAL,
    requires_credentials=False,
    credential_shape=CredentialShape.NONE,
    supports_confidence=True,
    max_input_bytes=50 * MIB,
    supported_formats=frozenset({".jpg", ".jpeg", ".png", ".bmp", ".tiff", ".tif", ".webp"}),
    supported_languages=("german", "en", "latin", "french"),
    description="Local PaddleOCR pipeline, runs offline once the models are downloaded",
)


@dataclass(frozen=True, slots=True)
class OcrLine:
    x: float
    y: float
    text: str
    score: float | None = None


class PaddleOcrBackend:
    name = DESCRIPTOR.name

    def __init__(self, options: RecognitionOptions | None = None) -> None:
        self.options = RecognitionOptions(language="german", detect_orientation=True).merged(options)

    def initialize(self, credentials: Mapping[str, str] | None = None) -> bool:
        return True

    def describe(self) -> BackendDescriptor:
        return DESCRIPTOR

    def validate(self, image: ImageInput) -> ValidationOutcome:
        return validate_image(image, DESCRIPTOR)

    def process(self, image: ImageInput, options: RecognitionOptions | None = None) -> RecognitionResult:
        outcome = require_valid(self, image)
        opts = self.options.merged(options)
        lang = opts.language or "german"
        use_angle_cls = bool(opts.detect_orientation)

        ocr = _get_ocr(lang, use_angle_cls)
        try:
            if isinstance(image, (bytes, bytearray)):
                result = _predict_bytes(ocr, bytes(image), outcome.file_format or ".png", use_angle_cls=use_angle_cls)
                source_name = None
            else:
                result = _predict(ocr, str(image), use_angle_cls=use_angle_cls)
                source_name = Path(image).name
        except Exception as exc:
            raise BackendProcessingError(self.name, f"PaddleOCR failed: {exc}") from exc

        lines = flatten_and_sort(result)
        metadata = RecognitionMetadata(backend=self.name, model=f"PaddleOCR ({lang})", source_name=source_name)
        text = "\n".join(line.text for line in lines).strip()
        if not text:
            return RecognitionResult.empty(metadata)
        scores = [line.score for line in lines if line.score is not None]
        return RecognitionResult(text=text, confidence=mean_confidence(scores), metadata=metadata)


def flatten_and_sort(result: object) -> list[OcrLine]:
    # PaddleOCR returns either:
    # - list[list[[box, (text, score)], ...]] per image (2.x)
    # - list[dict] with rec_texts/rec_scores/rec_boxes (3.x pipeline results)
    if not isinstance(result, list):
        return []

    entries: list[OcrLine] = []

    if result and isinstance(result[0], Mapping) and "rec_texts" in result[0]:
        for page in result:
            if not isinstance(page, Mapping):
                continue
            texts = page.get("rec_texts")
            if not isinstance(texts, list):
                continue
            boxes = page.get("rec_boxes")
            if boxes is None:
                boxes = page.get("dt_polys")
            scores = page.get("rec_scores")

            for idx, text in enumerate(texts):
                s = str(text).strip()
                if not s:
                    continue
                x, y = _top_left_xy(_at(boxes, idx))
                entries.append(OcrLine(x=x, y=y, text=s, score=_score(_at(scores, idx))))
        return _sorted(entries)

    def ingest_item(item: object) -> None:
        if not (isinstance(item, list) and len(item) >= 2):
            return
        text_tuple = item[1]
        if not (isinstance(text_tuple, (list, tuple)) and len(text_tuple) >= 1):
            return
        text = str(text_tuple[0]).strip()
        if not text:
            return
        score = _score(text_tuple[1]) if len(text_tuple) >= 2 else None
        x, y = _top_left_xy(item[0])
        entries.append(OcrLine(x=x, y=y, text=text, score=score))

    if result and _looks_like_item(result[0]):
        for item in result:
            ingest_item(item)
    else:
        for maybe_image in result:
            if isinstance(maybe_image, list):
                for item in maybe_image:
                    ingest_item(item)

    return _sorted(entries)


def _sorted(entries: list[OcrLine]) -> list[OcrLine]:
    return sorted(entries, key=lambda e: (e.y, e.x))


def _at(values: object, idx: int) -> object:
    if (
        values is None
        or isinstance(values, (str, bytes))
        or not hasattr(values, "__len__")
        or not hasattr(values, "__getitem__")
    ):
        return None
    return values[idx] if idx < len(values) else None


def _score(value: object) -> float | None:
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def _looks_like_item(value: object) -> bool:
    # [box, (text, score)]; a page of items has a box-shaped list at index 1 instead.
    if not (isinstance(value, list) and len(value) >= 2 and isinstance(value[0], (list, tuple))):
        return False
    text_part = value[1]
    return isinstance(text_part, (list, tuple)) and len(text_part) >= 1 and isinstance(text_part[0], str)


def _top_left_xy(box: object) -> tuple[float, float]:
    # box is either [[x1,y1],[x2,y2],[x3,y3],[x4,y4]] or [x_min, y_min, x_max, y_max]
    try:
        if hasattr(box, "tolist"):
            box = box.tolist()  # type: ignore[union-attr]
        if isinstance(box, Sequence) and not isinstance(box, (str, bytes)) and len(box) == 4 and all(
            isinstance(v, (int, float)) for v in box
        ):
            return float(box[0]), float(box[1])
        if isinstance(box, Sequence) and not isinstance(box, (str, bytes)) and len(box) > 0:
            pt = box[0]
            if isinstance(pt, (list, tuple)) and len(pt) >= 2:
                return float(pt[0]), float(pt[1])
    except (TypeError, ValueError):
        pass
    return 0.0, 0.0


@lru_cache(maxsize=4)
def _get_ocr(lang: str, use_angle_cls: bool):
    try:
        from paddleocr import PaddleOCR  # type: ignore
    except ImportError as exc:
        raise BackendUnavailableError(
            DESCRIPTOR.name,
            "PaddleOCR is not installed. Install the `paddle` extra to enable this backend.",
        ) from exc

    try:
        import paddle  # type: ignore  # noqa: F401
    except ImportError as exc:
        raise BackendUnavailableError(
            DESCRIPTOR.name,
            "PaddleOCR requires PaddlePaddle (`paddle`). "
            f"Current Python is {sys.version.split()[0]}; install `paddlepaddle` for this interpreter.",
        ) from exc

    # Constructor arguments differ between PaddleOCR releases; newer ones reject unknown kwargs.
    try:
        return PaddleOCR(lang=lang, use_textline_orientation=use_angle_cls)
    except (TypeError, ValueError):
        logger.debug("PaddleOCR rejected use_textline_orientation, retrying with use_angle_cls")
    try:
        return PaddleOCR(lang=lang, use_angle_cls=use_angle_cls)
    except (TypeError, ValueError):
        logger.debug("PaddleOCR rejected use_angle_cls, using defaults")
    return PaddleOCR(lang=lang)


def _predict(ocr, image_path: str, *, use_angle_cls: bool) -> object:
    if hasattr(ocr, "predict"):
        return ocr.predict(image_path)
    if hasattr(ocr, "ocr"):
        try:
            return ocr.ocr(image_path, cls=use_angle_cls)
        except TypeError:
            return ocr.ocr(image_path)
    raise BackendProcessingError(DESCRIPTOR.name, "Unsupported PaddleOCR object: missing predict/ocr methods")


def _predict_bytes(ocr, data: bytes, suffix: str, *, use_angle_cls: bool) -> object:
    with tempfile.TemporaryDirectory(prefix="belegerfassung-") as tmp:
        path = Path(tmp) / f"upload{suffix}"
        path.write_bytes(data)
        return _predict(ocr, str(path), use_angle_cls=use_angle_cls)
