"""Standard QDQ graph patterns.

Each factory returns a callable that populates a fresh `QdqGraphBuilder`, so a
case can be materialised again for every run (reference, alternate, cached).
"""

from __future__ import annotations

from typing import Callable, Sequence

from onnx import TensorProto

from .builder import InputDef, QdqGraphBuilder
from .onnx_utils import quant_range

BuildCaseFn = Callable[[QdqGraphBuilder], None]

BINARY_QDQ_SCALE = 0.0004


def build_qdq_single_input_op_case(
    input_shape: Sequence[int],
    op_type: str,
    domain: str = "",
    quant_type: int = TensorProto.UINT8,
) -> BuildCaseFn:
    """input_q -> DQ -> op -> Q -> DQ -> output

    The trailing DQ keeps the graph output in float while the op itself sits
    between a DQ/Q pair, which is the unit an accelerator fuses.
    """
    shape = tuple(int(d) for d in input_shape)

    def _build(builder: QdqGraphBuilder) -> None:
        scale = 1.0
        zero_point = 0
        lo, hi = quant_range(quant_type)

        input_q = builder.make_input(shape, quant_type, (lo, hi))
        dq_input = builder.add_dequantize(input_q, scale, zero_point, elem_type=quant_type)

        op_output = builder.make_intermediate(TensorProto.FLOAT)
        builder.add_node(op_type, [dq_input], [op_output], domain=domain)

        q_output = builder.add_quantize(op_output, scale, zero_point, elem_type=quant_type)
        final_output = builder.make_output(TensorProto.FLOAT)
        builder.add_dequantize(q_output, scale, zero_point, output=final_output, elem_type=quant_type)

    return _build


def build_qdq_binary_op_case(
    op_type: str,
    input0_def: InputDef,
    input1_def: InputDef,
    quant_type: int = TensorProto.UINT8,
    scale: float = BINARY_QDQ_SCALE,
) -> BuildCaseFn:
    """(in0 -> Q -> DQ, in1 -> Q -> DQ) -> op -> Q -> DQ -> output"""

    def _build(builder: QdqGraphBuilder) -> None:
        zero_point = quant_range(quant_type)[1] // 2

        input0 = builder.make_input_from_def(input0_def)
        input1 = builder.make_input_from_def(input1_def)
        output = builder.make_output(TensorProto.FLOAT)

        qdq0_output = builder.add_qdq_pair(input0, scale, zero_point, elem_type=quant_type)
        qdq1_output = builder.add_qdq_pair(input1, scale, zero_point, elem_type=quant_type)

        op_output = builder.make_intermediate(TensorProto.FLOAT)
        builder.add_node(op_type, [qdq0_output, qdq1_output], [op_output])

        op_q_output = builder.add_quantize(op_output, scale, zero_point, elem_type=quant_type)
        builder.add_dequantize(op_q_output, scale, zero_point, output=output, elem_type=quant_type)

    return _build


def materialize(case_fn: BuildCaseFn, name: str = "qdq_test_graph", seed: int = 0) -> QdqGraphBuilder:
    """Run a case factory against a new builder and return it."""
    builder = QdqGraphBuilder(name=name, seed=seed)
    case_fn(builder)
    return builder
