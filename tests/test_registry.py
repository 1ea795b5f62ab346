import pytest

from belegerfassung.ocr.base import CredentialShape
from belegerfassung.ocr.errors import BackendUnavailableError
from belegerfassung.ocr.ocrspace_backend import OcrSpaceBackend
from belegerfassung.ocr.registry import BackendRegistry, RegistryEntry
from belegerfassung.ocr.tesseract_backend import TesseractBackend

from fakes import FakeBackend


def test_list_available_describes_all_builtin_backends() -> None:
    registry = BackendRegistry()

    assert [d.name for d in registry.list_available()] == ["google", "azure", "ocrspace", "tesseract", "paddleocr"]
    kinds = {d.name: d.kind.value for d in registry.list_available()}
    assert kinds["google"] == "cloud"
    assert kinds["tesseract"] == "local"
    assert registry.describe("azure").supports_confidence is False


def test_create_local_backend_merges_recommended_options() -> None:
    registry = BackendRegistry()

    backend = registry.create("tesseract", {"psm": 4, "language": "deu"})

    assert isinstance(backend, TesseractBackend)
    assert backend.psm == 4
    assert backend.oem == 3
    assert backend.options.language == "deu"


def test_create_rejects_unknown_settings() -> None:
    with pytest.raises(BackendUnavailableError, match="Invalid configuration"):
        BackendRegistry().create("tesseract", {"colour": "blue"})


def test_create_unknown_backend_lists_available_ones() -> None:
    with pytest.raises(BackendUnavailableError) as excinfo:
        BackendRegistry().create("abbyy")

    assert "Unknown OCR backend: abbyy" in excinfo.value.message
    assert "tesseract" in excinfo.value.message


def test_create_cloud_backend_requires_credentials() -> None:
    registry = BackendRegistry()

    with pytest.raises(BackendUnavailableError, match="api_key"):
        registry.create("ocrspace")

    backend = registry.create("ocrspace", credentials={"api_key": "secret"})
    assert isinstance(backend, OcrSpaceBackend)
    assert backend.options.engine == 2
    assert backend.options.language == "ger"


def test_create_fails_when_initialize_returns_false() -> None:
    registry = BackendRegistry()

    with pytest.raises(BackendUnavailableError, match="Failed to initialize"):
        registry.create("azure", credentials={"subscription_key": "key", "endpoint": "not-a-url"})


def test_custom_entries_and_initialize_failure() -> None:
    descriptor = FakeBackend("fake").describe()
    registry = BackendRegistry(
        {
            "fake": RegistryEntry(factory=lambda options: FakeBackend("fake"), descriptor=descriptor),
            "broken": RegistryEntry(factory=lambda options: FakeBackend("broken", init_ok=False), descriptor=descriptor),
        }
    )

    backends, failures = registry.create_many(["fake", "broken", "fake", "missing"])

    assert list(backends) == ["fake"]
    assert [f.backend for f in failures] == ["broken", "missing"]


def test_create_many_skips_unavailable_backends() -> None:
    registry = BackendRegistry()

    backends, failures = registry.create_many(
        ["tesseract", "azure", "ocrspace"],
        config={"tesseract": {"psm": 11}},
        credentials={"ocrspace": {"api_key": "secret"}},
    )

    assert list(backends) == ["tesseract", "ocrspace"]
    assert backends["tesseract"].psm == 11
    assert failures[0].backend == "azure"
    assert "subscription_key" in failures[0].error


def test_credentials_templates() -> None:
    registry = BackendRegistry()

    azure = registry.credentials_template("azure")
    assert azure.shape is CredentialShape.KEY_AND_ENDPOINT
    assert azure.required == ("subscription_key", "endpoint")
    google = registry.credentials_template("google")
    assert google.required == ()
    assert "key_file" in google.optional
    assert registry.credentials_template("tesseract").required == ()


def test_validate_credentials() -> None:
    registry = BackendRegistry()

    assert registry.validate_credentials("tesseract", None) == (True, None)
    assert registry.validate_credentials("ocrspace", {"api_key": "k"}) == (True, None)
    ok, message = registry.validate_credentials("ocrspace", {"api_key": "   "})
    assert not ok
    assert message == "Missing credentials for ocrspace: api_key"


def test_recommended_options_are_copies() -> None:
    registry = BackendRegistry()

    options = registry.recommended_options("tesseract")
    options["psm"] = 99

    assert registry.recommended_options("tesseract")["psm"] == 6
