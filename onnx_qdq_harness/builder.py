"""Append-only builder for small QDQ test graphs.

The builder hands out `TensorRef`s for every tensor it declares and refuses
(immediately, with `GraphConstructionError`) any node that references a tensor
it does not know or one that has not been produced yet. `build()` freezes the
result into an `onnx.ModelProto`; the builder also owns the input definitions
so it can generate matching feeds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Literal, Optional, Sequence, Tuple, Union

import numpy as np
import onnx
from onnx import TensorProto, helper, numpy_helper

from .errors import GraphConstructionError
from .onnx_utils import QUANT_TYPES, elem_type_name, is_float_type, min_ir_version, np_dtype_from_onnx, quant_range

LOGGER = logging.getLogger(__name__)

Role = Literal["input", "initializer", "intermediate", "output"]

MS_DOMAIN = "com.microsoft"


@dataclass(frozen=True)
class TensorRef:
    """Handle to a tensor declared by the builder."""

    name: str
    elem_type: Optional[int]
    shape: Optional[Tuple[int, ...]]
    role: Role


@dataclass(frozen=True)
class InputDef:
    """Definition of one operand of a test graph.

    Either a free variable drawn uniformly from `value_range`, or a constant
    given by `values`. With `is_initializer=True` the tensor is baked into the
    model instead of being fed at run time.
    """

    shape: Tuple[int, ...]
    is_initializer: bool = False
    value_range: Optional[Tuple[float, float]] = None
    values: Optional[Tuple[float, ...]] = None
    elem_type: int = TensorProto.FLOAT

    def __post_init__(self) -> None:
        object.__setattr__(self, "shape", tuple(int(d) for d in self.shape))
        if any(d < 0 for d in self.shape):
            raise GraphConstructionError(f"negative dimension in shape {list(self.shape)}")
        if self.values is not None:
            object.__setattr__(self, "values", tuple(float(v) for v in self.values))
            if self.value_range is not None:
                raise GraphConstructionError("InputDef takes either value_range or values, not both")
            if len(self.values) != int(np.prod(self.shape, dtype=np.int64)):
                raise GraphConstructionError(
                    f"{len(self.values)} value(s) do not fill shape {list(self.shape)}"
                )
        elif self.value_range is not None:
            lo, hi = self.value_range
            if float(lo) > float(hi):
                raise GraphConstructionError(f"empty value range [{lo}, {hi}]")

    @property
    def is_random(self) -> bool:
        return self.values is None


TensorLike = Union[TensorRef, str]


class QdqGraphBuilder:
    def __init__(self, name: str = "qdq_test_graph", seed: int = 0) -> None:
        self.name = name
        self.seed = int(seed)
        self._rng = np.random.default_rng(self.seed)

        self._tensors: Dict[str, TensorRef] = {}
        self._produced: set[str] = set()
        self._input_defs: Dict[str, InputDef] = {}
        self._inputs: List[TensorRef] = []
        self._outputs: List[TensorRef] = []
        self._initializers: List[TensorProto] = []
        self._nodes: List[onnx.NodeProto] = []
        self._domains: set[str] = set()
        self._counters: Dict[str, int] = {}

    # ------------------------------------------------------------------ naming
    def _next_name(self, prefix: str) -> str:
        n = self._counters.get(prefix, 0)
        self._counters[prefix] = n + 1
        return f"{prefix}_{n}"

    def _declare(self, ref: TensorRef, produced: bool) -> TensorRef:
        if ref.name in self._tensors:
            raise GraphConstructionError(f"tensor '{ref.name}' is already declared")
        self._tensors[ref.name] = ref
        if produced:
            self._produced.add(ref.name)
        return ref

    # ----------------------------------------------------------- declarations
    def make_input(
        self,
        shape: Sequence[int],
        elem_type: int = TensorProto.FLOAT,
        value_range: Optional[Tuple[float, float]] = None,
        name: Optional[str] = None,
    ) -> TensorRef:
        """Declare a graph input fed with random values from `value_range`.

        Integer inputs default to the full range of their type, floats to [-1, 1].
        Without `name` the input is called `input_<n>`.
        """
        if value_range is None:
            if is_float_type(elem_type):
                value_range = (-1.0, 1.0)
            else:
                info = np.iinfo(np_dtype_from_onnx(elem_type))
                value_range = (int(info.min), int(info.max))
        return self.make_input_from_def(InputDef(tuple(shape), False, value_range, None, elem_type), name=name)

    def make_input_from_def(self, input_def: InputDef, name: Optional[str] = None) -> TensorRef:
        if input_def.is_initializer:
            if input_def.values is not None:
                return self.make_initializer(input_def.values, input_def.elem_type, input_def.shape, name=name)
            return self.make_initializer(
                self._random_array(input_def, self._rng), input_def.elem_type, input_def.shape, name=name
            )

        ref = self._declare(
            TensorRef(name or self._next_name("input"), int(input_def.elem_type), input_def.shape, "input"),
            produced=True,
        )
        self._inputs.append(ref)
        self._input_defs[ref.name] = input_def
        return ref

    def make_initializer(
        self,
        values,
        elem_type: int = TensorProto.FLOAT,
        shape: Optional[Sequence[int]] = None,
        name: Optional[str] = None,
    ) -> TensorRef:
        arr = np.asarray(values, dtype=np_dtype_from_onnx(elem_type))
        if shape is not None:
            try:
                arr = arr.reshape(tuple(int(d) for d in shape))
            except ValueError as e:
                raise GraphConstructionError(f"cannot shape constant as {list(shape)}: {e}") from e
        ref = self._declare(
            TensorRef(name or self._next_name("const"), int(elem_type), tuple(arr.shape), "initializer"),
            produced=True,
        )
        self._initializers.append(numpy_helper.from_array(arr, ref.name))
        return ref

    def make_intermediate(self, elem_type: Optional[int] = None) -> TensorRef:
        return self._declare(
            TensorRef(self._next_name("intermediate"), elem_type, None, "intermediate"), produced=False
        )

    def make_output(
        self, elem_type: int = TensorProto.FLOAT, shape: Optional[Sequence[int]] = None
    ) -> TensorRef:
        ref = self._declare(
            TensorRef(
                self._next_name("output"),
                int(elem_type),
                tuple(int(d) for d in shape) if shape is not None else None,
                "output",
            ),
            produced=False,
        )
        self._outputs.append(ref)
        return ref

    # ------------------------------------------------------------------ nodes
    def _resolve(self, t: TensorLike) -> TensorRef:
        name = t.name if isinstance(t, TensorRef) else str(t)
        ref = self._tensors.get(name)
        if ref is None:
            raise GraphConstructionError(f"tensor '{name}' is not declared in graph '{self.name}'")
        return ref

    def add_node(
        self,
        op_type: str,
        inputs: Sequence[TensorLike],
        outputs: Sequence[TensorLike],
        domain: str = "",
        name: Optional[str] = None,
        **attrs,
    ) -> onnx.NodeProto:
        in_refs = [self._resolve(t) for t in inputs]
        for ref in in_refs:
            if ref.name not in self._produced:
                raise GraphConstructionError(
                    f"{op_type}: input '{ref.name}' is referenced before any node produces it"
                )

        out_refs = [self._resolve(t) for t in outputs]
        if not out_refs:
            raise GraphConstructionError(f"{op_type}: a node needs at least one output")
        for ref in out_refs:
            if ref.role in ("input", "initializer"):
                raise GraphConstructionError(f"{op_type}: cannot write to {ref.role} '{ref.name}'")
            if ref.name in self._produced:
                raise GraphConstructionError(f"{op_type}: tensor '{ref.name}' already has a producer")

        node = helper.make_node(
            op_type,
            [r.name for r in in_refs],
            [r.name for r in out_refs],
            name=name or self._next_name(op_type),
            domain=domain or None,
            **attrs,
        )
        self._nodes.append(node)
        self._produced.update(r.name for r in out_refs)
        if domain:
            self._domains.add(domain)
        return node

    def _quant_consts(self, scale: float, zero_point: int, elem_type: int) -> Tuple[TensorRef, TensorRef]:
        if int(elem_type) not in QUANT_TYPES:
            raise GraphConstructionError(f"{elem_type_name(elem_type)} cannot carry quantized values")
        scale = float(scale)
        if not np.isfinite(scale) or scale <= 0.0:
            raise GraphConstructionError(f"quantization scale must be > 0, got {scale}")
        lo, hi = quant_range(elem_type)
        if not (lo <= int(zero_point) <= hi):
            raise GraphConstructionError(
                f"zero point {zero_point} outside [{lo}, {hi}] for {elem_type_name(elem_type)}"
            )
        scale_ref = self.make_initializer(scale, TensorProto.FLOAT, (), name=self._next_name("scale"))
        zp_ref = self.make_initializer(int(zero_point), elem_type, (), name=self._next_name("zero_point"))
        return scale_ref, zp_ref

    def add_quantize(
        self,
        input: TensorLike,
        scale: float,
        zero_point: int,
        output: Optional[TensorLike] = None,
        elem_type: int = TensorProto.UINT8,
    ) -> TensorRef:
        """Append QuantizeLinear(input) and return its output tensor."""
        src = self._resolve(input)
        out = self._resolve(output) if output is not None else None
        scale_ref, zp_ref = self._quant_consts(scale, zero_point, elem_type)
        if out is None:
            out = self.make_intermediate(int(elem_type))
        self.add_node("QuantizeLinear", [src, scale_ref, zp_ref], [out])
        return out

    def add_dequantize(
        self,
        input: TensorLike,
        scale: float,
        zero_point: int,
        output: Optional[TensorLike] = None,
        elem_type: int = TensorProto.UINT8,
    ) -> TensorRef:
        """Append DequantizeLinear(input) and return its output tensor."""
        src = self._resolve(input)
        out = self._resolve(output) if output is not None else None
        scale_ref, zp_ref = self._quant_consts(scale, zero_point, elem_type)
        if out is None:
            out = self.make_intermediate(TensorProto.FLOAT)
        self.add_node("DequantizeLinear", [src, scale_ref, zp_ref], [out])
        return out

    def add_qdq_pair(
        self, input: TensorLike, scale: float, zero_point: int, elem_type: int = TensorProto.UINT8
    ) -> TensorRef:
        q = self.add_quantize(input, scale, zero_point, elem_type=elem_type)
        return self.add_dequantize(q, scale, zero_point, elem_type=elem_type)

    # ------------------------------------------------------------------ build
    @property
    def nodes(self) -> Tuple[onnx.NodeProto, ...]:
        return tuple(self._nodes)

    @property
    def inputs(self) -> Tuple[TensorRef, ...]:
        return tuple(self._inputs)

    @property
    def outputs(self) -> Tuple[TensorRef, ...]:
        return tuple(self._outputs)

    def build(self, opset_version: int) -> onnx.ModelProto:
        if not self._outputs:
            raise GraphConstructionError(f"graph '{self.name}' declares no outputs")
        missing = [o.name for o in self._outputs if o.name not in self._produced]
        if missing:
            raise GraphConstructionError(f"graph outputs never produced: {missing}")

        graph = helper.make_graph(
            list(self._nodes),
            self.name,
            [helper.make_tensor_value_info(r.name, r.elem_type, list(r.shape or ())) for r in self._inputs],
            [
                helper.make_tensor_value_info(r.name, r.elem_type, list(r.shape) if r.shape is not None else None)
                for r in self._outputs
            ],
            initializer=list(self._initializers),
        )
        opsets = [helper.make_opsetid("", int(opset_version))]
        opsets += [helper.make_opsetid(d, 1) for d in sorted(self._domains)]

        model = helper.make_model(graph, producer_name="onnx_qdq_harness", opset_imports=opsets)
        model.ir_version = min_ir_version(opsets)
        LOGGER.debug(
            "Built graph '%s': %d node(s), opset %d, ir_version %d",
            self.name,
            len(self._nodes),
            int(opset_version),
            model.ir_version,
        )
        return model

    # ------------------------------------------------------------------ feeds
    @staticmethod
    def _random_array(input_def: InputDef, rng: np.random.Generator) -> np.ndarray:
        dtype = np_dtype_from_onnx(input_def.elem_type)
        lo, hi = input_def.value_range if input_def.value_range is not None else (-1.0, 1.0)
        if np.issubdtype(dtype, np.floating):
            return rng.uniform(float(lo), float(hi), size=input_def.shape).astype(dtype)
        if dtype == np.bool_:
            return (rng.random(input_def.shape) > 0.5).astype(dtype)
        return rng.integers(int(lo), int(hi), size=input_def.shape, dtype=dtype, endpoint=True)

    def make_feeds(self, seed: Optional[int] = None) -> Dict[str, np.ndarray]:
        """Generate one value per graph input, deterministic for a given seed."""
        rng = np.random.default_rng(self.seed if seed is None else int(seed))
        feeds: Dict[str, np.ndarray] = {}
        for ref in self._inputs:
            d = self._input_defs[ref.name]
            if d.values is not None:
                feeds[ref.name] = np.asarray(d.values, dtype=np_dtype_from_onnx(d.elem_type)).reshape(d.shape)
            else:
                feeds[ref.name] = self._random_array(d, rng)
        return feeds
