from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class WorkDirLayout:
    root: Path
    context_cache: Path
    reports: Path


def ensure_workdir(root: Path) -> WorkDirLayout:
    """Ensure the working directory structure exists.

    Layout (under root):
      ContextCache/   context binaries, one unique file per cached run
      Reports/        <label>/model.onnx, profiler traces, comparison.json
    """
    root = Path(root).expanduser().resolve()
    context_cache = root / "ContextCache"
    reports = root / "Reports"
    for p in (context_cache, reports):
        p.mkdir(parents=True, exist_ok=True)
    return WorkDirLayout(root=root, context_cache=context_cache, reports=reports)


_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_.-]+")


def safe_label(label: str) -> str:
    return _UNSAFE_RE.sub("_", str(label)).strip("_") or "case"


def unique_cache_path(layout: WorkDirLayout, label: str, suffix: str = ".bin") -> Path:
    """A context-cache file path no other invocation will use.

    The file itself is not created; the execution provider writes it.
    """
    return layout.context_cache / f"{safe_label(label)}_{uuid.uuid4().hex[:12]}{suffix}"
