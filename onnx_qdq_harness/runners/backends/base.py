from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from ..._types import BackendCaps, BackendRunOut, NodeAssignment, RunCfg


@dataclass
class PreparedHandle:
    """Opaque prepared handle returned by Backend.prepare().

    Backends may subclass/extend.
    """

    # Minimal common fields for DualRunner convenience.
    input_names: list[str]
    output_names: list[str]
    handle: Any


class Backend(Protocol):
    """Backend contract.

    Backends encapsulate execution-provider-specific work:
    - preparing a runnable handle (session)
    - executing single inference
    - reporting which provider ran each node
    - cleaning up resources
    """

    name: str
    provider: str
    capabilities: BackendCaps

    def prepare(self, run_cfg: RunCfg, artifacts_dir: Path) -> PreparedHandle: ...

    def run(self, prepared: PreparedHandle, inputs: dict) -> BackendRunOut: ...

    def node_assignment(self, prepared: PreparedHandle) -> list[NodeAssignment]: ...

    def cleanup(self, prepared: PreparedHandle) -> None: ...
