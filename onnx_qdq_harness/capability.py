"""Runtime probe: can this host run a given execution provider?

Scenarios that need an accelerator call `require_backend` first and are skipped
(not failed) when it raises `BackendUnavailableError`.
"""

from __future__ import annotations

import logging
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .errors import BackendUnavailableError

LOGGER = logging.getLogger(__name__)

_ARM64_MACHINES = {"aarch64", "arm64", "armv8", "armv8l"}


@dataclass(frozen=True)
class BackendProbe:
    provider: str
    available: bool
    reason: str = ""
    system: str = ""
    machine: str = ""
    ort_version: Optional[str] = None
    available_providers: tuple[str, ...] = field(default_factory=tuple)


def host_supported(system: Optional[str] = None, machine: Optional[str] = None) -> bool:
    """Hosts the accelerator suite targets: ARM64 machines and Linux."""
    system = system if system is not None else platform.system()
    machine = (machine if machine is not None else platform.machine()).lower()
    return machine in _ARM64_MACHINES or system == "Linux"


def probe_backend(provider: str, backend_path: Optional[str] = None) -> BackendProbe:
    system = platform.system()
    machine = platform.machine()

    def _no(reason: str, **kw) -> BackendProbe:
        LOGGER.info("%s unavailable: %s", provider, reason)
        return BackendProbe(provider, False, reason, system, machine, **kw)

    if not host_supported(system, machine):
        return _no(f"host {system}/{machine} is not an accelerator target")

    try:
        import onnxruntime as ort  # type: ignore
    except ImportError as e:
        return _no(f"onnxruntime is not installed ({e})")

    version = getattr(ort, "__version__", None)
    providers = tuple(ort.get_available_providers())
    if provider not in providers:
        return _no(
            f"{provider} not in available providers {list(providers)}",
            ort_version=version,
            available_providers=providers,
        )

    # Bare library names are resolved by the loader; only check explicit paths.
    if backend_path and Path(backend_path).is_absolute() and not Path(backend_path).exists():
        return _no(
            f"backend library not found: {backend_path}",
            ort_version=version,
            available_providers=providers,
        )

    return BackendProbe(provider, True, "", system, machine, version, providers)


def require_backend(provider: str, backend_path: Optional[str] = None) -> BackendProbe:
    probe = probe_backend(provider, backend_path)
    if not probe.available:
        raise BackendUnavailableError(probe.reason)
    return probe
