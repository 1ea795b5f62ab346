from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .ocr.orchestrator import OrchestratorPolicy
from .rules.loader import load_yaml


DEFAULT_BACKENDS = ("google", "azure", "ocrspace", "tesseract")

# Environment variable -> (backend, credential key)
CREDENTIAL_ENV = {
    "GOOGLE_APPLICATION_CREDENTIALS": ("google", "key_file"),
    "GOOGLE_CLOUD_PROJECT": ("google", "project_id"),
    "AZURE_VISION_KEY": ("azure", "subscription_key"),
    "AZURE_VISION_ENDPOINT": ("azure", "endpoint"),
    "OCRSPACE_API_KEY": ("ocrspace", "api_key"),
}


def _resolve_from_root(root: Path, value: str) -> Path:
    candidate = Path(value)
    if candidate.is_absolute():
        return candidate
    return (root / candidate).resolve()


def _number(raw: object, cast: type, label: str) -> Any:
    try:
        return cast(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid value for {label}: {raw!r}") from exc


def _pick(*values: object) -> object:
    for value in values:
        if value is not None and value != "":
            return value
    return None


def _names(raw: object) -> list[str]:
    if isinstance(raw, str):
        return [n.strip() for n in raw.split(",") if n.strip()]
    return [str(n).strip() for n in (raw or []) if str(n).strip()]


@dataclass(frozen=True, slots=True)
class AppConfig:
    policy: OrchestratorPolicy
    backends: tuple[str, ...]
    data_dir: Path
    backend_options: dict[str, dict[str, Any]] = field(default_factory=dict)
    credentials: dict[str, dict[str, str]] = field(default_factory=dict)
    log_level: str = "INFO"

    @classmethod
    def load(cls, path: Path | None = None, env: Mapping[str, str] | None = None) -> "AppConfig":
        env = os.environ if env is None else env
        if path is None and env.get("BELEG_CONFIG"):
            path = Path(env["BELEG_CONFIG"])
        data = (load_yaml(path) or {}) if path is not None else {}
        root = path.resolve().parent if path is not None else Path.cwd()

        orchestrator = data.get("orchestrator") or {}
        primary = env.get("BELEG_OCR_PRIMARY") or orchestrator.get("primary") or "google"
        fallback = env.get("BELEG_OCR_FALLBACK", orchestrator.get("fallback", "tesseract")) or None
        policy = OrchestratorPolicy(
            primary=str(primary),
            fallback=str(fallback) if fallback else None,
            timeout_ms=_number(
                _pick(env.get("BELEG_OCR_TIMEOUT_MS"), orchestrator.get("timeout_ms"), 30_000), int, "timeout_ms"
            ),
            min_confidence=_number(
                _pick(env.get("BELEG_OCR_MIN_CONFIDENCE"), orchestrator.get("min_confidence"), 0.5),
                float,
                "min_confidence",
            ),
            unknown_confidence=_number(orchestrator.get("unknown_confidence", 0.5), float, "unknown_confidence"),
        )

        names = _names(env.get("BELEG_OCR_BACKENDS") or data.get("backends")) or list(DEFAULT_BACKENDS)
        ordered: list[str] = []
        for name in [policy.primary, policy.fallback, *names]:
            if name and name not in ordered:
                ordered.append(name)

        options = {str(k): dict(v or {}) for k, v in (data.get("options") or {}).items()}
        if env.get("TESSERACT_CMD"):
            options.setdefault("tesseract", {})["tesseract_cmd"] = env["TESSERACT_CMD"]

        credentials = {str(k): {ck: str(cv) for ck, cv in (v or {}).items()} for k, v in (data.get("credentials") or {}).items()}
        for var, (backend, key) in CREDENTIAL_ENV.items():
            if env.get(var):
                credentials.setdefault(backend, {})[key] = env[var]

        data_dir = _resolve_from_root(root, env.get("BELEG_DATA_DIR") or str(data.get("data_dir") or "data"))

        return cls(
            policy=policy,
            backends=tuple(ordered),
            data_dir=data_dir,
            backend_options=options,
            credentials=credentials,
            log_level=str(env.get("LOG_LEVEL") or data.get("log_level") or "INFO"),
        )
