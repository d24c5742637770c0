"""Logging-related utilities.

This module intentionally has *no* heavy dependencies so it can be reused by
the backends, the CLI and the pytest suite alike.
"""

from __future__ import annotations

import logging
import re
import sys
from pathlib import Path
from typing import Optional


# A reasonably complete ANSI escape sequence matcher (CSI + single-character).
_ANSI_ESCAPE_RE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def sanitize_log(text: str) -> str:
    """Sanitize text captured from onnxruntime / vendor SDKs.

    - Normalize carriage returns (``\\r``) into newlines (``\\n``).
    - Strip ANSI escape sequences (colors, cursor movement, etc.).
    - Prefix ORT warnings/errors with ``[warn]`` / ``[error]`` for consistency
      with our own log style.

    The function is conservative: it avoids filtering content; it only
    normalizes formatting artifacts.
    """

    if not text:
        return ""

    # Normalize CR to NL (including CRLF).
    text = text.replace("\r\n", "\n").replace("\r", "\n")

    # Strip ANSI control sequences.
    text = _ANSI_ESCAPE_RE.sub("", text)

    out_lines: list[str] = []
    for line in text.split("\n"):
        if line == "":
            out_lines.append("")
            continue

        s = line
        if "[W:onnxruntime" in s and not s.lstrip().startswith("[warn]"):
            s = "[warn] " + s
        elif "[E:onnxruntime" in s and not s.lstrip().startswith("[error]"):
            s = "[error] " + s

        out_lines.append(s)

    return "\n".join(out_lines)


def setup_logging(log_path: Optional[Path] = None, verbose: bool = False) -> Optional[Path]:
    """Configure root logging for command-line runs.

    Logs go to stdout and, when `log_path` is given, to that file as well.
    An existing logging configuration (pytest, an embedding app) is left alone.
    """
    root = logging.getLogger()
    if root.handlers:
        return None

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(str(log_path), mode="a", encoding="utf-8"))

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
    )
    return log_path
