"""Error taxonomy.

Every failure a test case can hit is one of these. None of them is retried;
the runner records the message in the comparison report and re-raises.
"""

from __future__ import annotations

from typing import Optional, Sequence


class HarnessError(RuntimeError):
    """Base class for all harness errors."""


class GraphConstructionError(HarnessError):
    """The test graph is malformed (unknown tensor, forward reference, bad quant params)."""


class BackendUnavailableError(HarnessError):
    """The requested execution provider or its hardware is not present.

    Test suites translate this into a skip, not a failure.
    """


class AssignmentMismatchError(HarnessError):
    """The alternate backend claimed a different share of nodes than expected."""

    def __init__(
        self,
        expected: str,
        actual: int,
        total: int,
        *,
        provider: str = "",
        expected_node_count: Optional[int] = None,
    ) -> None:
        self.expected = expected
        self.actual = int(actual)
        self.total = int(total)
        self.provider = provider
        self.expected_node_count = expected_node_count

        msg = f"expected assignment={expected}"
        if expected_node_count is not None:
            msg += f" with {expected_node_count} node(s) in graph"
        msg += f", got {self.actual}/{self.total} node(s) on {provider or 'alternate backend'}"
        super().__init__(msg)


class AccuracyMismatchError(HarnessError):
    """Reference and alternate outputs differ by more than the declared tolerance."""

    def __init__(
        self,
        output_name: str,
        max_abs: float,
        coords: Sequence[int] = (),
        *,
        atol: Optional[float] = None,
        rtol: Optional[float] = None,
        detail: str = "",
    ) -> None:
        self.output_name = output_name
        self.max_abs = float(max_abs)
        self.coords = tuple(int(c) for c in coords)
        self.atol = atol
        self.rtol = rtol
        self.detail = detail

        if detail:
            msg = f"output '{output_name}': {detail}"
        else:
            msg = f"output '{output_name}': max abs deviation {self.max_abs:.6g} at {list(self.coords)}"
            if atol is not None:
                msg += f" exceeds tolerance (atol={atol:.6g}, rtol={rtol or 0.0:.6g})"
        super().__init__(msg)


class CacheFileError(HarnessError):
    """A run with context caching enabled did not leave the cache artifact behind."""

    def __init__(self, path: str, when: str = "after run") -> None:
        self.path = str(path)
        self.when = when
        super().__init__(f"context cache file missing {when}: {self.path}")
