from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from .base import PreparedHandle
from ..._types import BackendCaps, BackendRunOut, NodeAssignment, RunCfg
from ...errors import BackendUnavailableError
from ...log_utils import sanitize_log

LOGGER = logging.getLogger(__name__)

# Provider option / session config keys that name a context-cache file.
CONTEXT_CACHE_PATH_KEYS = ("qnn_context_cache_path", "ep.context_file_path")

_KERNEL_SUFFIX = "_kernel_time"


@dataclass
class _OrtPrepared:
    session: Any
    input_names: list[str]
    output_names: list[str]
    profile_path: Optional[Path] = None


def parse_profile_assignments(events: Iterable[Mapping[str, Any]]) -> list[NodeAssignment]:
    """Extract node -> provider placement from an ORT profiler trace.

    Every executed kernel produces a ``"<node>_kernel_time"`` event in the
    ``Node`` category whose args carry ``op_name`` and ``provider``. Nodes an
    EP compiled into a fused kernel show up once, under the fused name.
    """
    seen: dict[str, NodeAssignment] = {}
    for ev in events:
        if ev.get("cat") != "Node":
            continue
        name = str(ev.get("name", ""))
        if not name.endswith(_KERNEL_SUFFIX):
            continue
        node_name = name[: -len(_KERNEL_SUFFIX)]
        if node_name in seen:
            continue
        args = ev.get("args") or {}
        seen[node_name] = NodeAssignment(
            node_name=node_name,
            op_type=str(args.get("op_name", "")),
            provider=str(args.get("provider", "")),
        )
    return list(seen.values())


def _graph_optimization_level(ort: Any, value: Any) -> Any:
    if isinstance(value, str):
        key = value.strip().upper()
        if not key.startswith("ORT_"):
            key = "ORT_" + key
        return getattr(ort.GraphOptimizationLevel, key)
    return value


class OrtBackend:
    """ONNXRuntime backend.

    This backend is configured by provider list + optional provider options.
    The first provider is the one node assignment is checked against.

    Notes:
    - We import onnxruntime lazily so the module can be imported even in
      environments without ORT (tests may skip).
    - Profiling is always on: the profiler trace is how we learn which
      provider ran each node.
    """

    def __init__(
        self,
        name: str,
        providers: list[str],
        provider_options: Optional[list[dict[str, str]]] = None,
        sess_options: Optional[dict[str, Any]] = None,
        session_config: Optional[dict[str, str]] = None,
    ) -> None:
        if not providers:
            raise ValueError("OrtBackend needs at least one execution provider")
        self.name = name
        self.providers = list(providers)
        self.provider = self.providers[0]
        self.provider_options = provider_options
        self.sess_options = sess_options or {}
        self.session_config = session_config or {}

        self.capabilities = BackendCaps(
            supports_context_cache=("QNNExecutionProvider" in self.providers),
            reports_node_assignment=True,
            needs_compiler=(self.provider != "CPUExecutionProvider"),
        )

    def context_cache_path(self) -> Optional[Path]:
        """Return the configured context-cache file, if caching is enabled."""
        for opts in self.provider_options or []:
            if str(opts.get("qnn_context_cache_enable", "0")) == "1" and opts.get("qnn_context_cache_path"):
                return Path(opts["qnn_context_cache_path"])
        if str(self.session_config.get("ep.context_enable", "0")) == "1":
            p = self.session_config.get("ep.context_file_path")
            if p:
                return Path(p)
        return None

    def prepare(self, run_cfg: RunCfg, artifacts_dir: Path) -> PreparedHandle:
        import onnxruntime as ort  # type: ignore

        artifacts_dir.mkdir(parents=True, exist_ok=True)

        # Ensure the context cache directory exists if configured via options.
        option_maps: list[Mapping[str, Any]] = list(self.provider_options or []) + [self.session_config]
        for opts in option_maps:
            for key in CONTEXT_CACHE_PATH_KEYS:
                cache_path = opts.get(key)
                if cache_path:
                    Path(cache_path).parent.mkdir(parents=True, exist_ok=True)

        so = ort.SessionOptions()

        # Apply a small subset of options via attrs if present.
        for k, v in self.sess_options.items():
            if k == "graph_optimization_level":
                v = _graph_optimization_level(ort, v)
            if hasattr(so, k):
                setattr(so, k, v)
            else:
                LOGGER.warning("Ignoring unknown SessionOptions attribute '%s'", k)

        for k, v in self.session_config.items():
            so.add_session_config_entry(str(k), str(v))

        so.enable_profiling = True
        so.profile_file_prefix = str(artifacts_dir / f"ort_profile_{self.name}")

        model_path = str(run_cfg.model_path)

        try:
            if self.provider_options is None:
                sess = ort.InferenceSession(model_path, sess_options=so, providers=self.providers)
            else:
                sess = ort.InferenceSession(
                    model_path,
                    sess_options=so,
                    providers=self.providers,
                    provider_options=self.provider_options,
                )
        except Exception as e:
            if self.provider not in ort.get_available_providers():
                raise BackendUnavailableError(
                    f"{self.provider} is not available in this onnxruntime build: {sanitize_log(str(e))}"
                ) from e
            raise

        # ORT silently falls back to CPU when a provider fails to register.
        if self.provider not in sess.get_providers():
            raise BackendUnavailableError(
                f"{self.provider} was requested but the session only registered {sess.get_providers()}"
            )

        input_names = [i.name for i in sess.get_inputs()]
        output_names = [o.name for o in sess.get_outputs()]

        LOGGER.debug("[%s] session ready on %s (model=%s)", self.name, sess.get_providers(), model_path)

        return PreparedHandle(
            input_names=input_names,
            output_names=output_names,
            handle=_OrtPrepared(session=sess, input_names=input_names, output_names=output_names),
        )

    def run(self, prepared: PreparedHandle, inputs: dict) -> BackendRunOut:
        prep: _OrtPrepared = prepared.handle

        # ORT accepts numpy arrays in dict.
        outs_list = prep.session.run(None, {k: inputs[k] for k in prep.input_names})

        # Convert to stable dict mapping output_name -> ndarray
        outs = {name: arr for name, arr in zip(prep.output_names, outs_list)}
        return BackendRunOut(outputs=outs, metrics={})

    def node_assignment(self, prepared: PreparedHandle) -> list[NodeAssignment]:
        prep: _OrtPrepared = prepared.handle
        if prep.profile_path is None:
            prep.profile_path = Path(prep.session.end_profiling())
        events = json.loads(prep.profile_path.read_text(encoding="utf-8"))
        return parse_profile_assignments(events)

    def cleanup(self, prepared: PreparedHandle) -> None:
        # ORT sessions are freed by GC; we still drop references to encourage
        # release (and to unlock a context cache file on Windows).
        prep: _OrtPrepared = prepared.handle
        if prep.session is not None and prep.profile_path is None:
            prep.profile_path = Path(prep.session.end_profiling())
        prep.session = None
