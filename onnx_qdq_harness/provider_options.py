"""One place to build alternate-backend configurations.

Every scenario that targets the QNN execution provider goes through
`make_qnn_backend_config`, so the backend library, cache toggle and cache path
are explicit parameters instead of ad hoc option maps.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Optional

from ._types import BackendConfig
from .config import resolve_backend_path

QNN_PROVIDER = "QNNExecutionProvider"
CPU_PROVIDER = "CPUExecutionProvider"

CacheMode = Literal["provider_options", "session_config"]


def make_qnn_backend_config(
    backend_path: Optional[str] = None,
    *,
    context_cache_enable: bool = False,
    context_cache_path: Optional[Path] = None,
    cache_mode: CacheMode = "provider_options",
    sess_options: Optional[dict[str, Any]] = None,
) -> BackendConfig:
    """Build the configuration for a QNN run.

    `cache_mode="provider_options"` uses the ``qnn_context_cache_enable`` /
    ``qnn_context_cache_path`` provider options; ``"session_config"`` uses the
    ``ep.context_enable`` / ``ep.context_file_path`` session entries newer
    onnxruntime releases read instead.
    """
    provider_options: dict[str, str] = {"backend_path": resolve_backend_path(backend_path)}
    session_config: dict[str, str] = {}
    cache_path: Optional[Path] = None

    if context_cache_enable:
        if context_cache_path is None:
            raise ValueError("context caching needs an explicit context_cache_path")
        cache_path = Path(context_cache_path)
        if cache_mode == "provider_options":
            provider_options["qnn_context_cache_enable"] = "1"
            provider_options["qnn_context_cache_path"] = str(cache_path)
        elif cache_mode == "session_config":
            session_config["ep.context_enable"] = "1"
            session_config["ep.context_file_path"] = str(cache_path)
        else:
            raise ValueError(f"Unknown cache_mode {cache_mode!r}")

    return BackendConfig(
        provider=QNN_PROVIDER,
        provider_options=provider_options,
        session_config=session_config,
        sess_options=dict(sess_options or {}),
        context_cache_path=cache_path,
    )


def make_cpu_backend_config(sess_options: Optional[dict[str, Any]] = None) -> BackendConfig:
    """CPU provider as the 'alternate' backend (hosts without an accelerator)."""
    return BackendConfig(provider=CPU_PROVIDER, sess_options=dict(sess_options or {}))
