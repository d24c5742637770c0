from __future__ import annotations

import math

import numpy as np
import pytest

from onnx_qdq_harness._types import ExecutionReport, NodeAssignment
from onnx_qdq_harness.errors import AccuracyMismatchError, AssignmentMismatchError
from onnx_qdq_harness.verify import (
    ExpectedEPNodeAssignment,
    Tolerance,
    verify,
    verify_accuracy,
    verify_assignment,
)

EP = "QNNExecutionProvider"
CPU = "CPUExecutionProvider"


def _report(*providers: str) -> ExecutionReport:
    return ExecutionReport(
        backend_name="alternate",
        provider=EP,
        outputs={},
        assignments=[NodeAssignment(f"n{i}", "Op", p) for i, p in enumerate(providers)],
    )


def test_all_requires_every_node_on_the_provider() -> None:
    summary = verify_assignment(_report(EP), ExpectedEPNodeAssignment.ALL, 1)
    assert (summary.assigned, summary.total) == (1, 1)

    with pytest.raises(AssignmentMismatchError) as ei:
        verify_assignment(_report(EP, CPU), ExpectedEPNodeAssignment.ALL)
    assert ei.value.actual == 1 and ei.value.total == 2
    assert "All" in str(ei.value)


def test_none_requires_zero_nodes_on_the_provider() -> None:
    verify_assignment(_report(CPU, CPU), ExpectedEPNodeAssignment.NONE, 2)
    with pytest.raises(AssignmentMismatchError):
        verify_assignment(_report(EP, CPU), ExpectedEPNodeAssignment.NONE)


def test_some_requires_a_strict_subset() -> None:
    verify_assignment(_report(EP, CPU, CPU), ExpectedEPNodeAssignment.SOME, 3)
    with pytest.raises(AssignmentMismatchError):
        verify_assignment(_report(EP, EP), ExpectedEPNodeAssignment.SOME)
    with pytest.raises(AssignmentMismatchError):
        verify_assignment(_report(CPU), ExpectedEPNodeAssignment.SOME)


def test_node_count_must_match_when_given() -> None:
    with pytest.raises(AssignmentMismatchError) as ei:
        verify_assignment(_report(EP, EP, EP), ExpectedEPNodeAssignment.ALL, 1)
    assert ei.value.expected_node_count == 1
    assert "1 node(s) in graph" in str(ei.value)


def test_all_with_no_nodes_is_a_mismatch() -> None:
    with pytest.raises(AssignmentMismatchError):
        verify_assignment(_report(), ExpectedEPNodeAssignment.ALL)


def test_assignment_parse_is_closed() -> None:
    assert ExpectedEPNodeAssignment.parse("all") is ExpectedEPNodeAssignment.ALL
    assert ExpectedEPNodeAssignment.parse(" None ") is ExpectedEPNodeAssignment.NONE
    with pytest.raises(ValueError):
        ExpectedEPNodeAssignment.parse("Al")


def test_accuracy_within_tolerance_returns_stats() -> None:
    ref = {"y": np.array([[0.0, 1.0], [2.0, 3.0]], dtype=np.float32)}
    alt = {"y": np.array([[0.0, 1.0], [2.0, 3.5]], dtype=np.float32)}

    stats = verify_accuracy(ref, alt, Tolerance(atol=0.5))
    assert math.isclose(stats["y"]["max_abs"], 0.5)
    assert stats["y"]["argmax"] == [1, 1]
    assert math.isclose(stats["y"]["mean_abs"], 0.125)


def test_accuracy_mismatch_reports_worst_coordinates() -> None:
    ref = {"y": np.zeros((1, 3, 4), dtype=np.float32)}
    b = np.zeros((1, 3, 4), dtype=np.float32)
    b[0, 2, 1] = 0.3
    b[0, 0, 0] = 0.1

    with pytest.raises(AccuracyMismatchError) as ei:
        verify_accuracy(ref, {"y": b}, Tolerance(atol=0.05))
    err = ei.value
    assert err.output_name == "y"
    assert err.coords == (0, 2, 1)
    assert math.isclose(err.max_abs, 0.3, rel_tol=1e-6)
    assert "[0, 2, 1]" in str(err)


def test_accuracy_relative_tolerance() -> None:
    ref = {"y": np.array([100.0, 1.0])}
    alt = {"y": np.array([100.5, 1.0])}
    verify_accuracy(ref, alt, Tolerance(atol=0.0, rtol=0.01))
    with pytest.raises(AccuracyMismatchError):
        verify_accuracy(ref, alt, Tolerance(atol=0.0, rtol=0.001))


def test_accuracy_nan_is_never_within_tolerance() -> None:
    ref = {"y": np.array([1.0, np.nan])}
    alt = {"y": np.array([1.0, 2.0])}
    with pytest.raises(AccuracyMismatchError) as ei:
        verify_accuracy(ref, alt, Tolerance(atol=10.0))
    assert ei.value.coords == (1,)


def test_accuracy_equal_infinities_match() -> None:
    ref = {"y": np.array([1.0, np.inf, -np.inf], dtype=np.float32)}
    alt = {"y": np.array([1.0, np.inf, -np.inf], dtype=np.float32)}
    stats = verify_accuracy(ref, alt, Tolerance.float32())
    assert stats["y"]["max_abs"] == 0.0

    with pytest.raises(AccuracyMismatchError) as ei:
        verify_accuracy(ref, {"y": np.array([1.0, -np.inf, -np.inf], dtype=np.float32)}, Tolerance(atol=10.0))
    assert ei.value.coords == (1,)


def test_accuracy_shape_and_missing_outputs() -> None:
    ref = {"y": np.zeros((2, 2))}
    with pytest.raises(AccuracyMismatchError, match="shape mismatch"):
        verify_accuracy(ref, {"y": np.zeros((4,))}, Tolerance.float32())
    with pytest.raises(AccuracyMismatchError, match="missing"):
        verify_accuracy(ref, {"z": np.zeros((2, 2))}, Tolerance.float32())


def test_quantized_tolerance_allows_one_step() -> None:
    scale = 0.0004
    ref = {"y": (np.arange(-5, 5, dtype=np.float32) * np.float32(scale))}
    alt = {"y": ((np.arange(-5, 5, dtype=np.float32) + 1) * np.float32(scale))}
    verify_accuracy(ref, alt, Tolerance.quantized(scale))

    alt2 = {"y": ((np.arange(-5, 5, dtype=np.float32) + 2) * np.float32(scale))}
    with pytest.raises(AccuracyMismatchError):
        verify_accuracy(ref, alt2, Tolerance.quantized(scale))


def test_verify_folds_errors_into_verdict() -> None:
    ref = {"y": np.zeros(3)}
    ok = verify(_report(EP), "All", 1, ref, {"y": np.zeros(3)}, Tolerance.float32())
    assert ok.passed and ok.reason == ""

    bad = verify(_report(CPU), "All", 1, ref, {"y": np.zeros(3)}, Tolerance.float32())
    assert not bad.passed
    assert isinstance(bad.error, AssignmentMismatchError)

    bad_acc = verify(_report(EP), "All", 1, ref, {"y": np.ones(3)}, Tolerance.float32())
    assert not bad_acc.passed
    assert isinstance(bad_acc.error, AccuracyMismatchError)
