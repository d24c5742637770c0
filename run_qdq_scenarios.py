#!/usr/bin/env python3
"""Convenience entry point.

Equivalent to `python -m onnx_qdq_harness.cli` / the `qdq-harness` console script.
"""

from onnx_qdq_harness.cli import main as _main


if __name__ == "__main__":
    raise SystemExit(_main())
