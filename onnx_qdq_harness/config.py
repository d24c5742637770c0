"""Resolution of machine-local configuration.

Search order for every value:
  1) explicit argument (CLI flag, test parameter)
  2) environment variable
  3) ~/.onnx_qdq_harness/settings.json
  4) built-in default
"""

from __future__ import annotations

import logging
import os
import platform
from pathlib import Path
from typing import Optional

from .settings import SettingsStore

LOGGER = logging.getLogger(__name__)

# Example:
#   export QDQ_HARNESS_BACKEND_PATH=/opt/qairt/lib/aarch64-oe-linux-gcc11.2/libQnnHtp.so
ENV_BACKEND_PATH = "QDQ_HARNESS_BACKEND_PATH"
ENV_WORKDIR = "QDQ_HARNESS_WORKDIR"

_QNN_BACKEND_LIBS = {"htp": "QnnHtp", "cpu": "QnnCpu", "gpu": "QnnGpu", "saver": "QnnSaver"}


def default_backend_library(backend: str = "htp", system: Optional[str] = None) -> str:
    """Platform-specific file name of a QNN backend library."""
    key = backend.strip().lower()
    if key not in _QNN_BACKEND_LIBS:
        raise ValueError(f"Unknown QNN backend '{backend}'; expected one of {sorted(_QNN_BACKEND_LIBS)}")
    stem = _QNN_BACKEND_LIBS[key]
    system = system or platform.system()
    if system == "Windows":
        return f"{stem}.dll"
    return f"lib{stem}.so"


def resolve_backend_path(explicit: Optional[str] = None, store: Optional[SettingsStore] = None) -> str:
    if explicit:
        return str(explicit)

    env = (os.environ.get(ENV_BACKEND_PATH) or "").strip()
    if env:
        LOGGER.debug("backend_path from $%s: %s", ENV_BACKEND_PATH, env)
        return env

    stored = (store or SettingsStore()).get("backend_path")
    if stored:
        LOGGER.debug("backend_path from settings: %s", stored)
        return str(stored)

    return default_backend_library("htp")


def resolve_workdir(explicit: Optional[Path] = None, store: Optional[SettingsStore] = None) -> Path:
    if explicit is not None:
        return Path(explicit).expanduser()

    env = (os.environ.get(ENV_WORKDIR) or "").strip()
    if env:
        return Path(env).expanduser()

    st = store or SettingsStore()
    stored = st.get("artifacts_dir")
    if stored:
        return Path(stored).expanduser()

    return st.home / "work"
