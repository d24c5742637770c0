"""Node-assignment and accuracy checks.

`verify_assignment` and `verify_accuracy` raise on mismatch; `verify` runs both
and folds the outcome into a `Verdict` for callers that want a value.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence

import numpy as np

from ._types import ExecutionReport, NodeAssignment
from .errors import AccuracyMismatchError, AssignmentMismatchError, HarnessError


class ExpectedEPNodeAssignment(enum.Enum):
    """How many graph nodes the alternate backend is expected to claim."""

    NONE = "None"
    SOME = "Some"
    ALL = "All"

    @classmethod
    def parse(cls, value: "ExpectedEPNodeAssignment | str") -> "ExpectedEPNodeAssignment":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        for member in cls:
            if member.value.lower() == key:
                return member
        raise ValueError(f"Unknown node assignment {value!r}; expected one of All, Some, None")


@dataclass(frozen=True)
class Tolerance:
    """Element-wise tolerance: |ref - alt| <= atol + rtol * |ref|."""

    atol: float
    rtol: float = 0.0

    @classmethod
    def float32(cls) -> "Tolerance":
        return cls(atol=1e-5, rtol=0.0)

    @classmethod
    def quantized(cls, scale: float, steps: int = 1) -> "Tolerance":
        """Allow `steps` quantization steps of difference on dequantized outputs."""
        # Slack for float32 rounding of the dequantized value itself.
        return cls(atol=float(scale) * int(steps) * (1.0 + 1e-3), rtol=0.0)

    def to_dict(self) -> Dict[str, float]:
        return {"atol": float(self.atol), "rtol": float(self.rtol)}


@dataclass
class AssignmentSummary:
    provider: str
    assigned: int
    total: int
    expected: str
    expected_node_count: Optional[int] = None
    nodes: list[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "assigned": self.assigned,
            "total": self.total,
            "expected": self.expected,
            "expected_node_count": self.expected_node_count,
            "nodes": list(self.nodes),
        }


@dataclass(frozen=True)
class Verdict:
    passed: bool
    reason: str = ""
    error: Optional[HarnessError] = None


def summarize_assignment(assignments: Sequence[NodeAssignment], provider: str) -> tuple[int, int]:
    """Return (nodes on `provider`, total nodes) for one execution."""
    total = len(assignments)
    assigned = sum(1 for a in assignments if a.provider == provider)
    return assigned, total


def verify_assignment(
    report: ExecutionReport,
    expected: ExpectedEPNodeAssignment | str,
    expected_node_count: Optional[int] = None,
) -> AssignmentSummary:
    expected = ExpectedEPNodeAssignment.parse(expected)
    assigned, total = summarize_assignment(report.assignments, report.provider)

    if expected is ExpectedEPNodeAssignment.ALL:
        ok = total > 0 and assigned == total
    elif expected is ExpectedEPNodeAssignment.NONE:
        ok = assigned == 0
    else:
        ok = 0 < assigned < total

    if ok and expected_node_count is not None:
        ok = total == int(expected_node_count)

    if not ok:
        raise AssignmentMismatchError(
            expected.value,
            assigned,
            total,
            provider=report.provider,
            expected_node_count=expected_node_count,
        )

    return AssignmentSummary(
        provider=report.provider,
        assigned=assigned,
        total=total,
        expected=expected.value,
        expected_node_count=expected_node_count,
        nodes=[a.to_dict() for a in report.assignments],
    )


def verify_accuracy(
    reference: Mapping[str, np.ndarray],
    alternate: Mapping[str, np.ndarray],
    tolerance: Tolerance,
) -> Dict[str, Dict[str, Any]]:
    """Compare every reference output against the alternate backend's.

    Returns per-output stats. Raises `AccuracyMismatchError` on the first
    output that is missing, has a different shape, or exceeds `tolerance`.
    """
    stats: Dict[str, Dict[str, Any]] = {}

    for name, ref in reference.items():
        if name not in alternate:
            raise AccuracyMismatchError(name, math.inf, detail="missing from alternate backend outputs")

        a = np.asarray(ref)
        b = np.asarray(alternate[name])
        if tuple(a.shape) != tuple(b.shape):
            raise AccuracyMismatchError(
                name, math.inf, detail=f"shape mismatch: reference={list(a.shape)} alternate={list(b.shape)}"
            )

        # Compute diffs in float64 for stability
        a64 = a.astype(np.float64)
        b64 = b.astype(np.float64)
        with np.errstate(invalid="ignore"):
            diff = np.abs(a64 - b64)
        # Equal infinities match; NaN in either output counts as an infinite deviation
        diff = np.where(a64 == b64, 0.0, diff)
        diff = np.where(np.isnan(diff), np.inf, diff)

        if diff.size:
            flat = int(np.argmax(diff))
            coords = tuple(int(c) for c in np.unravel_index(flat, diff.shape))
            max_abs = float(diff.reshape(-1)[flat])
            mean_abs = float(diff.mean())
        else:
            coords, max_abs, mean_abs = (), 0.0, 0.0

        allowed = tolerance.atol + tolerance.rtol * np.where(np.isfinite(a64), np.abs(a64), 0.0)
        bad = ~(diff <= allowed)
        if np.any(bad):
            # Report the worst offender, which may differ from the global argmax when rtol > 0.
            excess = np.where(bad, diff - allowed, -np.inf)
            worst = np.unravel_index(int(np.argmax(excess)), diff.shape)
            raise AccuracyMismatchError(
                name,
                float(diff[worst]),
                tuple(int(c) for c in worst),
                atol=tolerance.atol,
                rtol=tolerance.rtol,
            )

        stats[name] = {
            "max_abs": max_abs,
            "mean_abs": mean_abs,
            "argmax": list(coords),
            "shape": list(a.shape),
            "dtype": str(a.dtype),
        }

    return stats


def verify(
    report: ExecutionReport,
    expected: ExpectedEPNodeAssignment | str,
    expected_node_count: Optional[int],
    reference_outputs: Mapping[str, np.ndarray],
    alternate_outputs: Mapping[str, np.ndarray],
    tolerance: Tolerance,
) -> Verdict:
    try:
        verify_assignment(report, expected, expected_node_count)
        verify_accuracy(reference_outputs, alternate_outputs, tolerance)
    except (AssignmentMismatchError, AccuracyMismatchError) as e:
        return Verdict(passed=False, reason=str(e), error=e)
    return Verdict(passed=True)
