from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest

pytest.importorskip("onnxruntime")

from onnx import TensorProto

from onnx_qdq_harness._types import BackendCaps, BackendConfig, BackendRunOut, NodeAssignment, RunCfg
from onnx_qdq_harness.builder import MS_DOMAIN, InputDef
from onnx_qdq_harness.errors import AccuracyMismatchError, AssignmentMismatchError, CacheFileError
from onnx_qdq_harness.provider_options import CPU_PROVIDER, make_cpu_backend_config
from onnx_qdq_harness.qdq_cases import (
    BINARY_QDQ_SCALE,
    build_qdq_binary_op_case,
    build_qdq_single_input_op_case,
)
from onnx_qdq_harness.runners import DualRunner, OrtBackend, PreparedHandle, run_qdq_model_test
from onnx_qdq_harness.verify import ExpectedEPNodeAssignment, Tolerance

NO_OPT = {"graph_optimization_level": "disable_all"}

# DQ, op, Q, DQ
SINGLE_NODES = 4
# (Q, DQ) x 2, op, Q, DQ
BINARY_NODES = 7


def _cpu_runner(tmp_path: Path, **kw) -> DualRunner:
    return DualRunner(tmp_path, reference=OrtBackend("reference", [CPU_PROVIDER], sess_options=dict(NO_OPT)), **kw)


def _rand(shape) -> InputDef:
    return InputDef(tuple(shape), False, (-1.0, 1.0), None, TensorProto.FLOAT)


def test_binary_sub_runs_fully_on_cpu(tmp_path: Path) -> None:
    runner = _cpu_runner(tmp_path)
    result = runner.run(
        build_qdq_binary_op_case("Sub", _rand((1, 3, 8, 8)), _rand((1, 3, 8, 8))),
        make_cpu_backend_config(NO_OPT),
        17,
        ExpectedEPNodeAssignment.ALL,
        BINARY_NODES,
        Tolerance.quantized(BINARY_QDQ_SCALE),
        label="sub_small",
    )

    assert result.ok
    assert result.assignment["assigned"] == BINARY_NODES
    assert result.assignment["provider"] == CPU_PROVIDER
    assert result.accuracy["output_0"]["shape"] == [1, 3, 8, 8]
    assert result.accuracy["output_0"]["max_abs"] == 0.0

    case_dir = tmp_path / "sub_small"
    assert (case_dir / "model.onnx").is_file()
    saved = json.loads((case_dir / "comparison.json").read_text(encoding="utf-8"))
    assert saved["status"] == "ok"
    assert saved["plan"]["graph_nodes"] == BINARY_NODES
    assert saved["plan"]["expected_assignment"] == "All"
    assert "output_0" in saved["metrics"]["output_digests"]


def test_single_input_contrib_gelu(tmp_path: Path) -> None:
    result = run_qdq_model_test(
        build_qdq_single_input_op_case((1, 2, 3), "Gelu", MS_DOMAIN),
        make_cpu_backend_config(NO_OPT),
        11,
        "All",
        SINGLE_NODES,
        Tolerance.quantized(1.0),
        "gelu",
        tmp_path,
    )
    assert result.ok
    assert result.accuracy["output_0"]["dtype"] == "float32"


def test_broadcast_constant_operand(tmp_path: Path) -> None:
    const = InputDef((3, 1, 1), True, None, (1.0, 0.5, -0.3), TensorProto.FLOAT)
    result = _cpu_runner(tmp_path).run(
        build_qdq_binary_op_case("Div", _rand((1, 3, 4, 4)), const),
        make_cpu_backend_config(NO_OPT),
        17,
        ExpectedEPNodeAssignment.ALL,
        BINARY_NODES,
        Tolerance.quantized(BINARY_QDQ_SCALE),
        label="div_broadcast",
    )
    assert result.ok
    # Only the non-constant operand is a graph input.
    assert [i["name"] for i in result.plan["inputs"]] == ["input_0"]
    assert result.accuracy["output_0"]["shape"] == [1, 3, 4, 4]


def test_operand_order_does_not_change_assignment(tmp_path: Path) -> None:
    a, b = _rand((1, 3, 8, 8)), _rand((1, 3, 8, 8))
    runner = _cpu_runner(tmp_path)
    args = (make_cpu_backend_config(NO_OPT), 17, "All", BINARY_NODES, Tolerance.quantized(BINARY_QDQ_SCALE))

    forward = runner.run(build_qdq_binary_op_case("Sub", a, b), *args, label="ab")
    swapped = runner.run(build_qdq_binary_op_case("Sub", b, a), *args, label="ba")

    assert forward.assignment["assigned"] == swapped.assignment["assigned"]
    assert forward.assignment["total"] == swapped.assignment["total"]


def test_assignment_mismatch_is_recorded_and_raised(tmp_path: Path) -> None:
    runner = _cpu_runner(tmp_path)
    with pytest.raises(AssignmentMismatchError) as exc:
        runner.run(
            build_qdq_single_input_op_case((1, 2, 3), "Atan"),
            make_cpu_backend_config(NO_OPT),
            11,
            ExpectedEPNodeAssignment.NONE,
            None,
            Tolerance.quantized(1.0),
            label="atan_expect_none",
        )
    assert exc.value.actual == SINGLE_NODES

    saved = json.loads((tmp_path / "atan_expect_none" / "comparison.json").read_text(encoding="utf-8"))
    assert saved["status"] == "failed"
    assert saved["errors"] and saved["errors"][0].startswith("AssignmentMismatchError")


def test_node_count_mismatch_fails(tmp_path: Path) -> None:
    with pytest.raises(AssignmentMismatchError):
        _cpu_runner(tmp_path).run(
            build_qdq_single_input_op_case((1, 2, 3), "Atan"),
            make_cpu_backend_config(NO_OPT),
            11,
            "All",
            1,
            Tolerance.quantized(1.0),
            label="atan_fused_count",
        )


class _FakeCachingBackend:
    """CPU execution that pretends to be an accelerator compiling one fused node.

    The first prepare writes the context cache file; later prepares load it.
    """

    provider = "FakeExecutionProvider"
    capabilities = BackendCaps(supports_context_cache=True, reports_node_assignment=True, needs_compiler=True)

    def __init__(self, config: BackendConfig, write_cache: bool = True, perturb: float = 0.0) -> None:
        self.name = "fake"
        self.config = config
        self.write_cache = write_cache
        self.perturb = perturb
        self.loaded_from_cache = False
        self._inner = OrtBackend("fake_inner", [CPU_PROVIDER], sess_options=dict(NO_OPT))

    def prepare(self, run_cfg: RunCfg, artifacts_dir: Path) -> PreparedHandle:
        cache = self.config.context_cache_path
        if cache is not None:
            if cache.is_file():
                self.loaded_from_cache = True
            elif self.write_cache:
                cache.parent.mkdir(parents=True, exist_ok=True)
                cache.write_bytes(b"QNNCTX")
        return self._inner.prepare(run_cfg, artifacts_dir)

    def run(self, prepared: PreparedHandle, inputs: dict) -> BackendRunOut:
        out = self._inner.run(prepared, inputs)
        if self.loaded_from_cache and self.perturb:
            out.outputs = {k: v + np.float32(self.perturb) for k, v in out.outputs.items()}
        return out

    def node_assignment(self, prepared: PreparedHandle) -> list[NodeAssignment]:
        self._inner.node_assignment(prepared)
        return [NodeAssignment("QNN_fused_0", "Atan", self.provider)]

    def cleanup(self, prepared: PreparedHandle) -> None:
        self._inner.cleanup(prepared)


def _cache_config(path: Path) -> BackendConfig:
    return BackendConfig(provider=_FakeCachingBackend.provider, context_cache_path=path)


def test_context_cache_round_trip(tmp_path: Path) -> None:
    cache = tmp_path / "ctx" / "atan.bin"
    backends: list[_FakeCachingBackend] = []

    def factory(config: BackendConfig) -> _FakeCachingBackend:
        backends.append(_FakeCachingBackend(config))
        return backends[-1]

    runner = _cpu_runner(tmp_path / "artifacts", backend_factory=factory)
    first, second = runner.run_with_context_cache(
        build_qdq_single_input_op_case((1, 2, 3), "Atan"),
        _cache_config(cache),
        11,
        "All",
        1,
        Tolerance.quantized(1.0),
        label="ContextBinaryCacheTest",
    )

    assert cache.is_file()
    assert [b.loaded_from_cache for b in backends] == [False, True]
    assert first.ok and second.ok
    assert first.metrics["output_digests"] == second.metrics["output_digests"]
    assert second.metrics["context_cache"]["bytes"] == len(b"QNNCTX")
    assert (tmp_path / "artifacts" / "ContextBinaryCacheTest_run2" / "comparison.json").is_file()


def test_cached_run_must_reproduce_first_run(tmp_path: Path) -> None:
    runner = _cpu_runner(
        tmp_path / "artifacts",
        backend_factory=lambda cfg: _FakeCachingBackend(cfg, perturb=0.25),
    )
    with pytest.raises(AccuracyMismatchError, match="cached run diverged"):
        runner.run_with_context_cache(
            build_qdq_single_input_op_case((1, 2, 3), "Atan"),
            _cache_config(tmp_path / "ctx.bin"),
            11,
            "All",
            1,
            Tolerance.quantized(1.0),
        )


def test_missing_cache_file_fails(tmp_path: Path) -> None:
    runner = _cpu_runner(
        tmp_path / "artifacts",
        backend_factory=lambda cfg: _FakeCachingBackend(cfg, write_cache=False),
    )
    with pytest.raises(CacheFileError):
        runner.run_with_context_cache(
            build_qdq_single_input_op_case((1, 2, 3), "Atan"),
            _cache_config(tmp_path / "never_written.bin"),
            11,
            "All",
            1,
            Tolerance.quantized(1.0),
        )


def test_cache_run_needs_cache_path(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        _cpu_runner(tmp_path).run_with_context_cache(
            build_qdq_single_input_op_case((1, 2, 3), "Atan"),
            make_cpu_backend_config(NO_OPT),
            11,
            "All",
            SINGLE_NODES,
            Tolerance.quantized(1.0),
        )
