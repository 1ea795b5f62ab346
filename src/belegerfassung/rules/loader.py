from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

import yaml


DEFAULT_RETAILERS_FILE = Path(__file__).with_name("retailers.yml")


@dataclass(frozen=True, slots=True)
class Retailer:
    id: str
    name: str
    chain: str | None
    aliases: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class RetailerRules:
    retailers: tuple[Retailer, ...]

    @classmethod
    def load_from_file(cls, path: Path) -> "RetailerRules":
        data = load_yaml(path) or {}
        retailers = []
        for entry in data.get("retailers") or []:
            if not isinstance(entry, dict) or "id" not in entry or "name" not in entry:
                raise ValueError(f"Retailer entries in {path} need at least 'id' and 'name'.")
            name = str(entry["name"])
            aliases = [str(a) for a in (entry.get("aliases") or [])] or [name]
            retailers.append(
                Retailer(
                    id=str(entry["id"]),
                    name=name,
                    chain=str(entry["chain"]) if entry.get("chain") else None,
                    aliases=tuple(aliases),
                )
            )
        return cls(retailers=tuple(retailers))

    @classmethod
    def load_default(cls) -> "RetailerRules":
        return _default_rules()


@lru_cache(maxsize=1)
def _default_rules() -> RetailerRules:
    return RetailerRules.load_from_file(DEFAULT_RETAILERS_FILE)


def load_yaml(path: Path) -> dict | None:
    if not path.exists():
        raise FileNotFoundError(str(path))
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping at {path}, got {type(data).__name__}.")
    return data
