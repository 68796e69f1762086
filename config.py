"""Simple JSON-based config store for the terminal client."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

DEFAULTS: dict[str, Any] = {
    "server_url": "http://localhost:3000",
    "hands_off": False,
    "sample_rate": 48000,
    "language": "pt-BR",
    "provider": "azure",
    "learner_id": "L001",
    "hotkey": "Key.alt_l",
    "mode": "streaming",
}

MODES = ("streaming", "batch")


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "lingua_tutor" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> Any:
        return self._read_all().get(key, DEFAULTS.get(key))

    def set(self, key: str, value: Any) -> None:
        if key not in DEFAULTS:
            raise KeyError(f"unknown config key: {key}")
        if key == "mode" and value not in MODES:
            raise ValueError(f"mode must be one of {', '.join(MODES)}")
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def get_server_url(self) -> str:
        return str(self.get("server_url")).rstrip("/")

    def get_hands_off(self) -> bool:
        return bool(self.get("hands_off"))

    def set_hands_off(self, enabled: bool) -> None:
        self.set("hands_off", bool(enabled))

    def get_sample_rate(self) -> int:
        try:
            return int(self.get("sample_rate"))
        except (TypeError, ValueError):
            return int(DEFAULTS["sample_rate"])

    def get_mode(self) -> str:
        mode = str(self.get("mode"))
        return mode if mode in MODES else str(DEFAULTS["mode"])

    def get_hotkey(self) -> str:
        return str(self.get("hotkey"))

    def as_dict(self) -> dict[str, Any]:
        return {**DEFAULTS, **self._read_all()}

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
