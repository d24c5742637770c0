from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import numpy as np


Status = Literal["ok", "failed"]


@dataclass(frozen=True)
class BackendCaps:
    """Capability flags for a backend.

    Keep this minimal and additive only.
    """

    supports_context_cache: bool = False
    reports_node_assignment: bool = True
    needs_compiler: bool = False


@dataclass
class RunCfg:
    """Backend-specific configuration.

    This is intentionally generic. Backends may interpret `options`.
    """

    model_path: Path
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NodeAssignment:
    """One executed kernel and the execution provider that ran it."""

    node_name: str
    op_type: str
    provider: str

    def to_dict(self) -> Dict[str, str]:
        return {"node_name": self.node_name, "op_type": self.op_type, "provider": self.provider}


@dataclass
class BackendRunOut:
    """Output of a single backend inference call."""

    outputs: dict[str, np.ndarray]
    metrics: dict[str, Any] = field(default_factory=dict)


@dataclass
class ExecutionReport:
    """What one backend did with one graph: outputs plus node placement."""

    backend_name: str
    provider: str
    outputs: dict[str, np.ndarray]
    assignments: list[NodeAssignment] = field(default_factory=list)
    metrics: dict[str, Any] = field(default_factory=dict)


@dataclass
class BackendConfig:
    """Alternate backend selection for one dual run.

    `provider_options` is the opaque string map handed to the execution
    provider; `session_config` entries go to SessionOptions.add_session_config_entry.
    """

    provider: str
    provider_options: dict[str, str] = field(default_factory=dict)
    session_config: dict[str, str] = field(default_factory=dict)
    sess_options: dict[str, Any] = field(default_factory=dict)
    context_cache_path: Optional[Path] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ComparisonResult:
    """Structured output of one dual run."""

    schema_version: int = 1
    status: Status = "failed"
    label: str = "qdq_case"

    plan: dict[str, Any] = field(default_factory=dict)
    assignment: dict[str, Any] = field(default_factory=dict)
    accuracy: dict[str, Any] = field(default_factory=dict)
    metrics: dict[str, Any] = field(default_factory=dict)

    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    def to_json(self) -> str:
        return json.dumps(asdict(self), indent=2, sort_keys=False, default=_json_default)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, np.generic):
        return obj.item()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
