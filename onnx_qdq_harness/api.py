"""Public API surface.

This module re-exports the most commonly used functions/classes so test suites
and external scripts can simply import a single module.
"""

from __future__ import annotations

from . import __version__

# Errors
from .errors import (
    AccuracyMismatchError,
    AssignmentMismatchError,
    BackendUnavailableError,
    CacheFileError,
    GraphConstructionError,
    HarnessError,
)

# Graph construction
from .builder import MS_DOMAIN, InputDef, QdqGraphBuilder, TensorRef
from .qdq_cases import build_qdq_binary_op_case, build_qdq_single_input_op_case, materialize

# Configuration
from .capability import BackendProbe, probe_backend, require_backend
from .config import default_backend_library, resolve_backend_path, resolve_workdir
from .provider_options import CPU_PROVIDER, QNN_PROVIDER, make_cpu_backend_config, make_qnn_backend_config
from .workdir import WorkDirLayout, ensure_workdir, unique_cache_path

# Execution + verification
from ._types import BackendConfig, ComparisonResult, ExecutionReport, NodeAssignment
from .runners import DualRunner, OrtBackend, run_qdq_model_test
from .verify import ExpectedEPNodeAssignment, Tolerance, Verdict, verify, verify_accuracy, verify_assignment

# Scenario catalogue
from .scenarios import SCENARIOS, Scenario, get_scenario, run_scenario, select_scenarios

__all__ = [
    "__version__",
    # errors
    "HarnessError",
    "GraphConstructionError",
    "BackendUnavailableError",
    "AssignmentMismatchError",
    "AccuracyMismatchError",
    "CacheFileError",
    # graph construction
    "MS_DOMAIN",
    "InputDef",
    "QdqGraphBuilder",
    "TensorRef",
    "build_qdq_single_input_op_case",
    "build_qdq_binary_op_case",
    "materialize",
    # configuration
    "BackendProbe",
    "probe_backend",
    "require_backend",
    "default_backend_library",
    "resolve_backend_path",
    "resolve_workdir",
    "QNN_PROVIDER",
    "CPU_PROVIDER",
    "make_qnn_backend_config",
    "make_cpu_backend_config",
    "WorkDirLayout",
    "ensure_workdir",
    "unique_cache_path",
    # execution + verification
    "BackendConfig",
    "ComparisonResult",
    "ExecutionReport",
    "NodeAssignment",
    "DualRunner",
    "OrtBackend",
    "run_qdq_model_test",
    "ExpectedEPNodeAssignment",
    "Tolerance",
    "Verdict",
    "verify",
    "verify_accuracy",
    "verify_assignment",
    # scenarios
    "SCENARIOS",
    "Scenario",
    "get_scenario",
    "run_scenario",
    "select_scenarios",
]
