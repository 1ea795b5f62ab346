from pathlib import Path

import pytest

from belegerfassung.config import AppConfig


def _write_config(path: Path) -> Path:
    path.write_text(
        "\n".join(
            [
                "orchestrator:",
                "  primary: ocrspace",
                "  fallback: tesseract",
                "  timeout_ms: 5000",
                "  min_confidence: 0",
                "backends: [ocrspace, tesseract, paddleocr]",
                "options:",
                "  tesseract:",
                "    psm: 4",
                "credentials:",
                "  ocrspace:",
                "    api_key: from-file",
                "data_dir: store",
                "log_level: DEBUG",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    return path


def test_defaults_without_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    config = AppConfig.load(env={})

    assert config.policy.primary == "google"
    assert config.policy.fallback == "tesseract"
    assert config.policy.timeout_ms == 30_000
    assert config.policy.min_confidence == 0.5
    assert config.backends == ("google", "tesseract", "azure", "ocrspace")
    assert config.data_dir == (tmp_path / "data").resolve()
    assert config.log_level == "INFO"


def test_yaml_file_with_environment_overrides(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "belegerfassung.yml")
    env = {
        "BELEG_OCR_TIMEOUT_MS": "1200",
        "AZURE_VISION_KEY": "azure-key",
        "AZURE_VISION_ENDPOINT": "https://beleg.cognitiveservices.azure.com",
        "TESSERACT_CMD": "/usr/bin/tesseract",
    }

    config = AppConfig.load(path, env=env)

    assert config.policy.primary == "ocrspace"
    assert config.policy.timeout_ms == 1200
    assert config.policy.min_confidence == 0.0
    assert config.backends == ("ocrspace", "tesseract", "paddleocr")
    assert config.backend_options["tesseract"] == {"psm": 4, "tesseract_cmd": "/usr/bin/tesseract"}
    assert config.credentials["ocrspace"] == {"api_key": "from-file"}
    assert config.credentials["azure"]["subscription_key"] == "azure-key"
    assert config.data_dir == (tmp_path / "store").resolve()
    assert config.log_level == "DEBUG"


def test_config_path_from_environment(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "custom.yml")

    config = AppConfig.load(env={"BELEG_CONFIG": str(path), "BELEG_OCR_PRIMARY": "tesseract"})

    assert config.policy.primary == "tesseract"
    assert config.backends[0] == "tesseract"


def test_empty_fallback_disables_it(tmp_path: Path) -> None:
    config = AppConfig.load(
        env={"BELEG_OCR_FALLBACK": "", "BELEG_OCR_BACKENDS": "tesseract", "BELEG_DATA_DIR": str(tmp_path)}
    )

    assert config.policy.fallback is None
    assert config.backends == ("google", "tesseract")
    assert config.data_dir == tmp_path


def test_invalid_numbers_are_rejected() -> None:
    with pytest.raises(ValueError, match="timeout_ms"):
        AppConfig.load(env={"BELEG_OCR_TIMEOUT_MS": "soon"})
    with pytest.raises(ValueError):
        AppConfig.load(env={"BELEG_OCR_MIN_CONFIDENCE": "1.5"})
