from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

LOGGER = logging.getLogger(__name__)


def _harness_home() -> Path:
    # Keep consistent with other tool state (logs, default workdir)
    return Path.home() / ".onnx_qdq_harness"


def default_settings() -> Dict[str, Any]:
    return {
        "schema_version": 1,
        "last_saved_at": None,
        # Accelerator backend library (None -> platform default)
        "backend_path": None,
        # Root for context caches and reports
        "artifacts_dir": None,
        # "provider_options" (qnn_context_cache_*) or "session_config" (ep.context_*)
        "cache_mode": "provider_options",
        "seed": 0,
    }


@dataclass
class SettingsStore:
    """Load/save persistent settings.

    The store intentionally keeps settings as a plain dict to remain forward
    compatible with new keys across tool versions.
    """

    filename: str = "settings.json"
    home: Path = field(default_factory=lambda: _harness_home())

    def path(self) -> Path:
        return self.home / self.filename

    def load(self) -> Dict[str, Any]:
        path = self.path()
        base = default_settings()

        if not path.exists():
            return base

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("settings.json root is not an object")
        except (OSError, ValueError) as e:
            LOGGER.warning("Unreadable settings file %s (%s); using defaults", path, e)
            self._backup(path)
            return base

        # merge defaults (do not delete unknown keys)
        merged = dict(base)
        merged.update(data)
        return merged

    def _backup(self, path: Path) -> None:
        ts = time.strftime("%Y%m%d_%H%M%S")
        bak = path.with_name(f"{path.name}.bak.{ts}")
        try:
            bak.write_bytes(path.read_bytes())
        except OSError as e:
            LOGGER.warning("Could not back up %s: %s", path, e)

    def save(self, data: Dict[str, Any]) -> None:
        self.home.mkdir(parents=True, exist_ok=True)
        path = self.path()
        tmp = path.with_suffix(path.suffix + ".tmp")

        # Shallow copy so we can stamp timestamp without mutating caller
        payload = dict(data or {})
        payload.setdefault("schema_version", 1)
        payload["last_saved_at"] = time.strftime("%Y-%m-%dT%H:%M:%S")

        # Atomic write
        txt = json.dumps(payload, indent=2, sort_keys=True)
        tmp.write_text(txt, encoding="utf-8")
        os.replace(tmp, path)

    # Convenience helpers -------------------------------------------------
    def get(self, key: str, default: Any = None) -> Any:
        value = self.load().get(key)
        return default if value is None else value

    def update(self, patch: Dict[str, Any]) -> None:
        data = self.load()
        data.update(patch)
        self.save(data)
