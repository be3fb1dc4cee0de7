"""Simple JSON-based config store."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "qwen-audio-turbo-latest"


@dataclass
class MonitorSettings:
    window_ms: int = 4000
    request_timeout_s: float = 10.0
    retry_backoff_s: float = 1.0
    debounce_count: int = 2
    min_confidence: float = 0.3
    suppression_window_s: float = 60.0
    max_consecutive_failures: int = 3
    emergency_number: str = "911"
    crisis_text_number: str = "741741"

    @classmethod
    def from_dict(cls, data: dict) -> "MonitorSettings":
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            if key not in known:
                logger.warning("ignoring unknown monitor setting %r", key)
                continue
            default = getattr(cls, key)
            try:
                kwargs[key] = type(default)(value)
            except (TypeError, ValueError):
                logger.warning("invalid value for %s: %r", key, value)
        return cls(**kwargs)


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "voice_stress" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_api_key(self) -> str:
        data = self._read_all()
        return str(data.get("api_key", "")) or os.getenv("DASHSCOPE_API_KEY", "")

    def set_api_key(self, key: str) -> None:
        data = self._read_all()
        data["api_key"] = key
        self._write_all(data)

    def get_backend(self) -> str:
        data = self._read_all()
        return str(data.get("backend", "dashscope"))

    def get_endpoint_url(self) -> str:
        data = self._read_all()
        return str(data.get("endpoint_url", ""))

    def get_model(self) -> str:
        data = self._read_all()
        return str(data.get("model", DEFAULT_MODEL))

    def get_settings(self) -> MonitorSettings:
        data = self._read_all()
        monitor = data.get("monitor", {})
        if not isinstance(monitor, dict):
            return MonitorSettings()
        return MonitorSettings.from_dict(monitor)

    def set_settings(self, settings: MonitorSettings) -> None:
        data = self._read_all()
        data["monitor"] = asdict(settings)
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            logger.warning("config file %s is unreadable, using defaults", self._path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
