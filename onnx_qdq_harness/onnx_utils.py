"""ONNX dtype/shape helpers.

Includes:
- TensorProto elem_type <-> numpy dtype mapping
- quantized value ranges
- ValueInfo shape/dtype extraction
- minimal IR version selection for generated models
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import onnx
from onnx import TensorProto, helper


_NP_DTYPES = {
    TensorProto.FLOAT: np.float32,
    TensorProto.FLOAT16: np.float16,
    TensorProto.DOUBLE: np.float64,
    TensorProto.UINT8: np.uint8,
    TensorProto.INT8: np.int8,
    TensorProto.UINT16: np.uint16,
    TensorProto.INT16: np.int16,
    TensorProto.UINT32: np.uint32,
    TensorProto.INT32: np.int32,
    TensorProto.UINT64: np.uint64,
    TensorProto.INT64: np.int64,
    TensorProto.BOOL: np.bool_,
}

# Element types QuantizeLinear/DequantizeLinear accept as the quantized side.
QUANT_TYPES = (TensorProto.UINT8, TensorProto.INT8, TensorProto.UINT16, TensorProto.INT16)


def np_dtype_from_onnx(elem_type: int) -> np.dtype:
    """Map ONNX TensorProto elem_type -> numpy dtype."""
    if int(elem_type) not in _NP_DTYPES:
        raise ValueError(f"Unsupported / unknown ONNX elem_type={elem_type}")
    return np.dtype(_NP_DTYPES[int(elem_type)])


def elem_type_name(elem_type: int) -> str:
    try:
        return TensorProto.DataType.Name(int(elem_type))
    except ValueError:
        return f"elem_type({elem_type})"


def quant_range(elem_type: int) -> Tuple[int, int]:
    """Return the (min, max) representable integer range of a quantized type."""
    if int(elem_type) not in QUANT_TYPES:
        raise ValueError(f"{elem_type_name(elem_type)} is not a quantized type")
    info = np.iinfo(np_dtype_from_onnx(elem_type))
    return int(info.min), int(info.max)


def is_float_type(elem_type: int) -> bool:
    return int(elem_type) in (TensorProto.FLOAT, TensorProto.FLOAT16, TensorProto.DOUBLE)


# ---------------------------- ValueInfo helpers ----------------------------

def shape_from_vi(vi) -> Optional[List[Optional[int]]]:
    if vi is None or not vi.type.HasField("tensor_type"):
        return None
    if not vi.type.tensor_type.HasField("shape"):
        return None
    shp: List[Optional[int]] = []
    for d in vi.type.tensor_type.shape.dim:
        shp.append(int(d.dim_value) if d.HasField("dim_value") else None)
    return shp


def elemtype_from_vi(vi) -> Optional[int]:
    if vi is None or not vi.type.HasField("tensor_type"):
        return None
    return int(vi.type.tensor_type.elem_type)


def describe_io(model: onnx.ModelProto) -> Dict[str, List[Dict[str, object]]]:
    """Summarise graph inputs/outputs as plain dicts (for reports)."""

    def _one(vi) -> Dict[str, object]:
        et = elemtype_from_vi(vi)
        return {
            "name": vi.name,
            "dtype": elem_type_name(et) if et is not None else None,
            "shape": shape_from_vi(vi),
        }

    return {
        "inputs": [_one(vi) for vi in model.graph.input],
        "outputs": [_one(vi) for vi in model.graph.output],
    }


def min_ir_version(opset_imports: Sequence[onnx.OperatorSetIdProto]) -> int:
    """Smallest IR version able to carry the given opsets.

    `helper.make_model` stamps the IR version of the installed onnx package,
    which may be newer than what the installed onnxruntime accepts.
    """
    try:
        return int(helper.find_min_ir_version_for(list(opset_imports), ignore_unknown=True))
    except (AttributeError, TypeError, ValueError):
        return int(onnx.IR_VERSION)
