from __future__ import annotations

import hashlib
import logging
import time
from pathlib import Path
from typing import Callable, Mapping, Optional

import numpy as np

from ..onnx_utils import describe_io
from .._types import BackendConfig, ComparisonResult, ExecutionReport, RunCfg
from ..errors import AccuracyMismatchError, CacheFileError
from ..qdq_cases import BuildCaseFn, materialize
from ..verify import ExpectedEPNodeAssignment, Tolerance, verify_accuracy, verify_assignment
from ..workdir import safe_label
from .artifacts import save_model, write_json
from .backends.base import Backend, PreparedHandle
from .backends.ort_backend import OrtBackend

LOGGER = logging.getLogger(__name__)

BackendFactory = Callable[[BackendConfig], Backend]


def ort_backend_for(config: BackendConfig) -> Backend:
    """Default factory: an OrtBackend for the configured alternate provider."""
    return OrtBackend(
        name="alternate",
        providers=[config.provider],
        provider_options=[dict(config.provider_options)],
        sess_options=dict(config.sess_options),
        session_config=dict(config.session_config),
    )


def output_digests(outputs: Mapping[str, np.ndarray]) -> dict[str, str]:
    return {
        name: hashlib.sha256(np.ascontiguousarray(arr).tobytes()).hexdigest()
        for name, arr in sorted(outputs.items())
    }


class DualRunner:
    """Runs one QDQ case on a reference backend and an alternate backend.

    DualRunner is responsible for:
    - building the model and its feeds once
    - calling Backend.prepare/run/node_assignment/cleanup for both backends
    - checking node assignment, then accuracy, then the context cache file
    - writing a stable result JSON (<artifacts>/<label>/comparison.json)

    Every failure is recorded in the result JSON and then re-raised unchanged.
    """

    def __init__(
        self,
        artifacts_dir: Path,
        reference: Optional[Backend] = None,
        backend_factory: BackendFactory = ort_backend_for,
        seed: int = 0,
    ) -> None:
        self.artifacts_dir = Path(artifacts_dir)
        self.reference: Backend = reference or OrtBackend("reference", ["CPUExecutionProvider"])
        self.backend_factory = backend_factory
        self.seed = int(seed)

    def run(
        self,
        case_fn: BuildCaseFn,
        backend_config: BackendConfig,
        opset_version: int,
        expected_assignment: ExpectedEPNodeAssignment | str,
        expected_node_count: Optional[int],
        tolerance: Tolerance,
        label: str = "qdq_case",
    ) -> ComparisonResult:
        expected = ExpectedEPNodeAssignment.parse(expected_assignment)
        case_dir = self.artifacts_dir / safe_label(label)
        case_dir.mkdir(parents=True, exist_ok=True)

        result = ComparisonResult(
            schema_version=1,
            status="failed",
            label=label,
            plan={
                "opset_version": int(opset_version),
                "expected_assignment": expected.value,
                "expected_node_count": expected_node_count,
                "tolerance": tolerance.to_dict(),
                "seed": self.seed,
                "reference": {"name": self.reference.name, "provider": self.reference.provider},
                "alternate": backend_config.to_dict(),
            },
        )

        prepared: list[tuple[Backend, PreparedHandle]] = []

        try:
            builder = materialize(case_fn, name=safe_label(label), seed=self.seed)
            model = builder.build(opset_version)
            model_path = save_model(model, case_dir / "model.onnx")
            result.plan["model_path"] = str(model_path)
            result.plan["graph_nodes"] = len(model.graph.node)
            result.plan.update(describe_io(model))

            # Inputs are generated once and fed to both backends.
            feeds = builder.make_feeds()

            ref_report = self._execute(self.reference, model_path, feeds, case_dir / "reference", prepared)
            alternate = self.backend_factory(backend_config)
            alt_report = self._execute(alternate, model_path, feeds, case_dir / "alternate", prepared)

            result.metrics = {
                "reference": dict(ref_report.metrics, nodes=len(ref_report.assignments)),
                "alternate": dict(alt_report.metrics, nodes=len(alt_report.assignments)),
                "output_digests": output_digests(alt_report.outputs),
            }

            summary = verify_assignment(alt_report, expected, expected_node_count)
            result.assignment = summary.to_dict()

            result.accuracy = verify_accuracy(ref_report.outputs, alt_report.outputs, tolerance)

            cache_path = backend_config.context_cache_path
            if cache_path is not None:
                if not Path(cache_path).is_file():
                    raise CacheFileError(str(cache_path))
                result.metrics["context_cache"] = {
                    "path": str(cache_path),
                    "bytes": Path(cache_path).stat().st_size,
                }

            result.status = "ok"
            LOGGER.info(
                "[%s] ok: %d/%d node(s) on %s, max_abs=%s",
                label,
                summary.assigned,
                summary.total,
                summary.provider,
                max((s["max_abs"] for s in result.accuracy.values()), default=0.0),
            )
            return result

        except Exception as e:
            result.status = "failed"
            result.errors.append(f"{type(e).__name__}: {e}")
            LOGGER.error("[%s] failed: %s: %s", label, type(e).__name__, e)
            raise

        finally:
            # Always cleanup
            for backend, handle in reversed(prepared):
                try:
                    backend.cleanup(handle)
                except Exception as e:
                    result.warnings.append(f"Backend.cleanup failed ({backend.name}): {type(e).__name__}: {e}")

            # Always write artifact
            try:
                write_json(case_dir / "comparison.json", result.to_dict())
            except (OSError, TypeError) as e:
                LOGGER.warning("Could not write comparison.json for %s: %s", label, e)

    def run_with_context_cache(
        self,
        case_fn: BuildCaseFn,
        backend_config: BackendConfig,
        opset_version: int,
        expected_assignment: ExpectedEPNodeAssignment | str,
        expected_node_count: Optional[int],
        tolerance: Tolerance,
        label: str = "qdq_context_cache",
    ) -> tuple[ComparisonResult, ComparisonResult]:
        """Run twice: the first run writes the context cache, the second loads it."""
        cache_path = backend_config.context_cache_path
        if cache_path is None:
            raise ValueError("run_with_context_cache needs a backend config with context caching enabled")
        cache_path = Path(cache_path)

        first = self.run(
            case_fn,
            backend_config,
            opset_version,
            expected_assignment,
            expected_node_count,
            tolerance,
            label=f"{label}_run1",
        )
        if not cache_path.is_file():
            raise CacheFileError(str(cache_path), "after first run")
        stamp = cache_path.stat().st_mtime_ns

        second = self.run(
            case_fn,
            backend_config,
            opset_version,
            expected_assignment,
            expected_node_count,
            tolerance,
            label=f"{label}_run2",
        )
        if not cache_path.is_file():
            raise CacheFileError(str(cache_path), "after second run")
        if cache_path.stat().st_mtime_ns != stamp:
            LOGGER.warning("[%s] context cache was rewritten by the second run: %s", label, cache_path)

        d1 = first.metrics.get("output_digests", {})
        d2 = second.metrics.get("output_digests", {})
        if d1 != d2 or first.accuracy != second.accuracy:
            changed = sorted(n for n in set(d1) | set(d2) if d1.get(n) != d2.get(n)) or sorted(first.accuracy)
            name = changed[0] if changed else "<all>"
            dev1 = first.accuracy.get(name, {}).get("max_abs", float("nan"))
            dev2 = second.accuracy.get(name, {}).get("max_abs", float("nan"))
            raise AccuracyMismatchError(
                name,
                abs(dev2 - dev1),
                detail=f"cached run diverged from first run (max_abs {dev1:.6g} -> {dev2:.6g})",
            )

        return first, second

    def _execute(
        self,
        backend: Backend,
        model_path: Path,
        feeds: dict[str, np.ndarray],
        artifacts_dir: Path,
        prepared: list[tuple[Backend, PreparedHandle]],
    ) -> ExecutionReport:
        t0 = time.perf_counter()
        handle = backend.prepare(RunCfg(model_path=model_path), artifacts_dir)
        init_ms = (time.perf_counter() - t0) * 1000.0
        prepared.append((backend, handle))

        t1 = time.perf_counter()
        out = backend.run(handle, feeds)
        run_ms = (time.perf_counter() - t1) * 1000.0

        assignments = backend.node_assignment(handle)
        LOGGER.debug(
            "[%s] %s ran %d node(s): %s",
            backend.name,
            backend.provider,
            len(assignments),
            ", ".join(f"{a.node_name}@{a.provider}" for a in assignments),
        )

        return ExecutionReport(
            backend_name=backend.name,
            provider=backend.provider,
            outputs=dict(out.outputs),
            assignments=assignments,
            metrics=dict(out.metrics, init_ms=init_ms, run_ms=run_ms),
        )


def run_qdq_model_test(
    case_fn: BuildCaseFn,
    backend_config: BackendConfig,
    opset_version: int,
    expected_assignment: ExpectedEPNodeAssignment | str,
    expected_node_count: Optional[int],
    tolerance: Tolerance,
    label: str,
    artifacts_dir: Path,
    *,
    seed: int = 0,
    backend_factory: BackendFactory = ort_backend_for,
) -> ComparisonResult:
    """Build, run on both backends, verify; raises on the first failure."""
    runner = DualRunner(artifacts_dir, backend_factory=backend_factory, seed=seed)
    return runner.run(
        case_fn,
        backend_config,
        opset_version,
        expected_assignment,
        expected_node_count,
        tolerance,
        label=label,
    )
