"""Dual execution runner architecture.

This package defines:
- Backend interface (prepare/run/node_assignment/cleanup)
- OrtBackend, the onnxruntime implementation for any execution provider
- DualRunner orchestrator (reference run -> alternate run -> verification)

Provider-specific logic stays inside backends; graph construction lives in
the builder; verification lives in `onnx_qdq_harness.verify`.
"""

from .._types import BackendCaps, BackendRunOut, ComparisonResult, ExecutionReport, RunCfg
from .backends import Backend, OrtBackend, PreparedHandle, parse_profile_assignments
from .dual_runner import DualRunner, ort_backend_for, output_digests, run_qdq_model_test

__all__ = [
    "BackendCaps",
    "BackendRunOut",
    "ComparisonResult",
    "ExecutionReport",
    "RunCfg",
    "Backend",
    "OrtBackend",
    "PreparedHandle",
    "parse_profile_assignments",
    "DualRunner",
    "ort_backend_for",
    "output_digests",
    "run_qdq_model_test",
]
