from __future__ import annotations

from pathlib import Path

import pytest

from onnx_qdq_harness.workdir import WorkDirLayout, ensure_workdir


@pytest.fixture
def workdir(tmp_path: Path) -> WorkDirLayout:
    return ensure_workdir(tmp_path / "work")


@pytest.fixture
def isolated_settings(tmp_path: Path, monkeypatch):
    """Point settings lookups at an empty home and clear env overrides."""
    from onnx_qdq_harness import config
    from onnx_qdq_harness.settings import store

    home = tmp_path / "home"
    monkeypatch.setattr(store, "_harness_home", lambda: home)
    monkeypatch.delenv(config.ENV_BACKEND_PATH, raising=False)
    monkeypatch.delenv(config.ENV_WORKDIR, raising=False)
    return home
