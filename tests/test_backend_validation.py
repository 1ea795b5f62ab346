from pathlib import Path

import pytest

from belegerfassung.ocr.base import sniff_format, validate_image
from belegerfassung.ocr.errors import ValidationError
from belegerfassung.ocr.registry import DEFAULT_ENTRIES


PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32

BACKEND_NAMES = list(DEFAULT_ENTRIES)


def _backend(name: str):
    return DEFAULT_ENTRIES[name].factory(None)


@pytest.mark.parametrize("name", BACKEND_NAMES)
def test_missing_file_is_rejected(name: str, tmp_path: Path) -> None:
    outcome = _backend(name).validate(tmp_path / "missing.png")

    assert not outcome.valid
    assert outcome.reason.startswith("File not found")


@pytest.mark.parametrize("name", BACKEND_NAMES)
def test_oversized_file_is_rejected(name: str, tmp_path: Path) -> None:
    backend = _backend(name)
    limit = backend.describe().max_input_bytes
    image = tmp_path / "huge.png"
    with image.open("wb") as fh:
        fh.truncate(limit + 1)

    outcome = backend.validate(image)

    assert not outcome.valid
    assert outcome.reason == f"File too large: {limit + 1} bytes (max: {limit} bytes)"


@pytest.mark.parametrize("name", BACKEND_NAMES)
def test_process_refuses_invalid_input(name: str, tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        _backend(name).process(tmp_path / "missing.png")


@pytest.mark.parametrize("name", BACKEND_NAMES)
def test_small_png_is_accepted(name: str, tmp_path: Path) -> None:
    image = tmp_path / "beleg.png"
    image.write_bytes(PNG)

    outcome = _backend(name).validate(image)

    assert outcome.valid
    assert outcome.file_size == len(PNG)
    assert outcome.file_format == ".png"


def test_empty_directory_and_unsupported_inputs(tmp_path: Path) -> None:
    descriptor = DEFAULT_ENTRIES["azure"].descriptor
    empty = tmp_path / "empty.jpg"
    empty.write_bytes(b"")
    scan = tmp_path / "scan.tiff"
    scan.write_bytes(b"II*\x00" + b"\x00" * 16)

    assert validate_image(empty, descriptor).reason == "File is empty"
    assert validate_image(tmp_path, descriptor).reason.startswith("Not a regular file")
    unsupported = validate_image(scan, descriptor)
    assert not unsupported.valid
    assert unsupported.reason.startswith("Unsupported format: .tiff")


def test_jpeg_and_tif_aliases_are_normalized(tmp_path: Path) -> None:
    photo = tmp_path / "photo.JPEG"
    photo.write_bytes(b"\xff\xd8\xff" + b"\x00" * 16)
    scan = tmp_path / "scan.tif"
    scan.write_bytes(b"II*\x00" + b"\x00" * 16)

    assert validate_image(photo, DEFAULT_ENTRIES["azure"].descriptor).valid
    assert validate_image(scan, DEFAULT_ENTRIES["tesseract"].descriptor).valid


def test_raw_bytes_are_sniffed() -> None:
    descriptor = DEFAULT_ENTRIES["tesseract"].descriptor

    assert validate_image(PNG, descriptor).file_format == ".png"
    assert not validate_image(b"plain text", descriptor).valid
    assert sniff_format(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == ".webp"
    assert sniff_format(b"%PDF-1.7") == ".pdf"
