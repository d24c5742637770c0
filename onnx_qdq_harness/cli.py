"""Command line interface for the ONNX QDQ harness."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional

from . import __version__
from .capability import probe_backend
from .config import resolve_backend_path, resolve_workdir
from .errors import BackendUnavailableError, HarnessError
from .log_utils import setup_logging
from .provider_options import QNN_PROVIDER
from .runners.artifacts import write_json
from .scenarios import SCENARIOS, run_scenario, select_scenarios
from .settings import SettingsStore
from .workdir import ensure_workdir

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_UNAVAILABLE = 2


def _cmd_list(args: argparse.Namespace) -> int:
    for sc in SCENARIOS:
        if not sc.enabled and not args.all:
            continue
        status = "enabled" if sc.enabled else "known-failing"
        op = f"{sc.domain}:{sc.op_type}" if sc.domain else sc.op_type
        cache = " +cache" if sc.context_cache else ""
        print(
            f"{sc.name:<26} {op:<22} opset={sc.opset_version:<3} "
            f"expect={sc.expected_assignment.value}/{sc.expected_node_count} {status}{cache}"
        )
    return EXIT_OK


def _cmd_probe(args: argparse.Namespace) -> int:
    store = SettingsStore()
    backend_path = resolve_backend_path(args.backend_path, store)
    probe = probe_backend(QNN_PROVIDER, backend_path)
    print(f"provider:      {probe.provider}")
    print(f"backend_path:  {backend_path}")
    print(f"host:          {probe.system}/{probe.machine}")
    print(f"onnxruntime:   {probe.ort_version or '-'}")
    print(f"available:     {'yes' if probe.available else 'no'}")
    if probe.reason:
        print(f"reason:        {probe.reason}")
    return EXIT_OK if probe.available else EXIT_UNAVAILABLE


def _cmd_run(args: argparse.Namespace) -> int:
    store = SettingsStore()
    backend_path = resolve_backend_path(args.backend_path, store)
    layout = ensure_workdir(resolve_workdir(Path(args.workdir) if args.workdir else None, store))
    setup_logging(layout.root / "qdq_harness.log", verbose=args.verbose)

    probe = probe_backend(QNN_PROVIDER, backend_path)
    if not probe.available:
        print(f"[skip] {QNN_PROVIDER} unavailable: {probe.reason}")
        return EXIT_UNAVAILABLE

    try:
        selected = select_scenarios(args.names, include_known_failing=args.include_known_failing)
    except KeyError as e:
        print(f"[error] {e.args[0]}")
        return EXIT_FAILED

    cache_mode = args.cache_mode or store.get("cache_mode", "provider_options")
    seed = args.seed if args.seed is not None else int(store.get("seed", 0))

    summary: list[dict] = []
    failed = 0
    for sc in selected:
        entry = {"name": sc.name, "known_failure": sc.known_failure}
        try:
            result = run_scenario(sc, layout, backend_path, cache_mode=cache_mode, seed=seed)
            entry.update(status="ok", assignment=result.assignment, accuracy=result.accuracy)
            print(f"[ok]   {sc.name}")
        except BackendUnavailableError as e:
            entry.update(status="skipped", error=str(e))
            print(f"[skip] {sc.name}: {e}")
        except Exception as e:
            # HarnessError, or onnxruntime's own types for session creation and run failures
            status = "xfail" if sc.known_failure else "failed"
            entry.update(status=status, error=f"{type(e).__name__}: {e}")
            if not sc.known_failure:
                failed += 1
            if not isinstance(e, HarnessError):
                LOGGER.debug("[%s] %s", sc.name, type(e).__name__, exc_info=True)
            print(f"[{status}] {sc.name}: {type(e).__name__}: {e}")
        summary.append(entry)

    summary_path = Path(args.summary) if args.summary else layout.reports / "summary.json"
    write_json(
        summary_path,
        {
            "schema_version": 1,
            "tool_version": __version__,
            "backend_path": backend_path,
            "onnxruntime": probe.ort_version,
            "scenarios": summary,
        },
    )
    print(f"\nWrote summary to: {summary_path}")
    return EXIT_FAILED if failed else EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(
        description="Run QDQ operator scenarios on CPU and an accelerator execution provider and compare them."
    )
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = ap.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", help="List the scenario catalogue")
    p_list.add_argument("--all", action="store_true", help="Include known-failing scenarios")
    p_list.set_defaults(func=_cmd_list)

    p_probe = sub.add_parser("probe", help="Check whether the QNN execution provider is usable here")
    p_probe.add_argument("--backend-path", type=str, default=None)
    p_probe.set_defaults(func=_cmd_probe)

    p_run = sub.add_parser("run", help="Run scenarios (default: every enabled scenario)")
    p_run.add_argument("names", nargs="*", help="Scenario names")
    p_run.add_argument("--backend-path", type=str, default=None, help="QNN backend library (e.g. libQnnHtp.so)")
    p_run.add_argument("--workdir", type=str, default=None, help="Artifacts root (context caches, reports)")
    p_run.add_argument("--include-known-failing", action="store_true")
    p_run.add_argument("--cache-mode", type=str, default=None, choices=["provider_options", "session_config"])
    p_run.add_argument("--seed", type=int, default=None)
    p_run.add_argument("--summary", type=str, default=None, help="Summary JSON path")
    p_run.add_argument("-v", "--verbose", action="store_true")
    p_run.set_defaults(func=_cmd_run)

    args = ap.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
