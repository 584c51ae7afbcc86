"""Command-line entry point for running cascade definitions."""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path
from typing import Optional, Sequence

from flowcascade.engine import (
    Cascade,
    CascadeConfig,
    CascadeConnector,
    CascadeError,
    load_definition,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser("flowcascade")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run a cascade definition")
    run.add_argument("definition", type=str, help="YAML or JSON cascade definition")
    run.add_argument("--max-concurrent", type=int, default=None, help="Maximum units running at once (0 = unbounded)")
    run.add_argument("--log-dir", type=str, default=None, help="Directory for the JSONL event log and summary")
    run.add_argument("--config", type=str, default=None, help="YAML or JSON cascade configuration")
    run.add_argument("--dot", type=str, default=None, help="Also write the identifier graph as DOT")

    dot = subparsers.add_parser("dot", help="Render the identifier graph of a definition as DOT")
    dot.add_argument("definition", type=str)
    dot.add_argument("--out", type=str, default=None, help="Output file (stdout when omitted)")
    return parser


def _connect(args: argparse.Namespace) -> Cascade:
    config = CascadeConfig.from_file(args.config) if getattr(args, "config", None) else CascadeConfig()
    if getattr(args, "log_dir", None):
        config.log_dir = Path(args.log_dir).expanduser().resolve()
    cascade_def = load_definition(args.definition)
    if getattr(args, "max_concurrent", None) is not None:
        cascade_def.max_concurrent_units = args.max_concurrent
    return CascadeConnector(config).connect_def(cascade_def)


def _print_summary(cascade: Cascade, elapsed: float) -> None:
    print(f"Cascade '{cascade.name}': {cascade.status.value} in {elapsed:.2f}s")
    for unit in cascade.units():
        stats = unit.stats
        duration = stats.duration_ns
        timing = f"{duration / 1e9:.2f}s" if duration is not None else "-"
        print(f"  {unit.name:<32} {stats.status.value:<10} {timing}")
    if cascade.logger.log_path is not None:
        print(f"Event log: {cascade.logger.log_path}")


def run_command(args: argparse.Namespace) -> int:
    cascade = _connect(args)
    if args.dot:
        cascade.write_dot(args.dot)

    t0 = time.time()
    error: Optional[CascadeError] = None
    try:
        cascade.complete()
    except CascadeError as exc:
        if isinstance(exc.__cause__, KeyboardInterrupt):
            cascade.stop()
        error = exc
    except BaseException:
        cascade.stop()
        raise
    _print_summary(cascade, time.time() - t0)

    if error is not None:
        cause = error.__cause__
        detail = f": {cause}" if cause is not None else ""
        print(f"error: {error}{detail}", file=sys.stderr)
    return 0 if cascade.stats.is_successful() else 1


def dot_command(args: argparse.Namespace) -> int:
    cascade_def = load_definition(args.definition)
    cascade = CascadeConnector().connect_def(cascade_def)
    if args.out:
        path = cascade.write_dot(args.out)
        print(f"Wrote {path}")
    else:
        sys.stdout.write(cascade.to_dot())
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    handlers = {"run": run_command, "dot": dot_command}
    try:
        return handlers[args.command](args)
    except (CascadeError, FileNotFoundError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
