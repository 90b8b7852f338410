"""Command line interface for applying patches and replaying event logs."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Sequence

from .config import SyncConfig
from .core.errors import PatchError
from .core.patch import apply_patch
from .io.stream import MemoryEventStream
from .runtime.loop import consume
from .runtime.router import EventRouter
from .runtime.store import UNSET

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _load_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SystemExit(f"{path}: invalid JSON ({exc.msg} at line {exc.lineno})") from exc


def _dump(document: Any) -> str:
    return json.dumps(document, indent=2, ensure_ascii=False, sort_keys=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Agent state synchronization utilities")
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        default="WARNING",
        help="Logging verbosity written to stderr",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    apply_parser = subparsers.add_parser("apply", help="apply a JSON Patch to a JSON document")
    apply_parser.add_argument("document", type=Path, help="Path to the JSON document")
    apply_parser.add_argument("patch", type=Path, help="Path to the JSON Patch array")
    apply_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        help="Write the patched document to this path instead of stdout",
    )

    replay_parser = subparsers.add_parser(
        "replay", help="feed a JSON-lines or SSE event log through a run and print the final state"
    )
    replay_parser.add_argument("events", type=Path, help="Path to the event log")
    replay_parser.add_argument("--initial", type=Path, help="JSON document the run starts from")
    replay_parser.add_argument("--run-id", default="replay", help="Identifier used for the run")
    replay_parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with status 1 when any state event was rejected",
    )

    return parser


def _handle_apply(args: argparse.Namespace) -> int:
    document = _load_json(args.document)
    operations = _load_json(args.patch)
    if not isinstance(operations, list):
        sys.stderr.write(f"{args.patch}: a JSON Patch must be an array of operations\n")
        return 2

    config = SyncConfig.from_env()
    try:
        patched = apply_patch(document, operations, max_operations=config.max_delta_operations)
    except PatchError as exc:
        sys.stderr.write(f"patch rejected: {exc} [{exc.reason.value}]\n")
        return 1

    rendered = _dump(patched) + "\n"
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(rendered, encoding="utf-8")
    else:
        sys.stdout.write(rendered)
    return 0


def _handle_replay(args: argparse.Namespace) -> int:
    initial = _load_json(args.initial) if args.initial else UNSET
    router = EventRouter(config=SyncConfig.from_env())
    stream = MemoryEventStream([args.events.read_text(encoding="utf-8")])

    runtime = asyncio.run(consume(router, args.run_id, stream, initial_snapshot=initial))

    rejected = runtime.transcript.rejected
    for action in rejected:
        failure = action.failure
        reason = failure.reason if failure is not None else "unknown"
        message = failure.message if failure is not None else ""
        sys.stderr.write(f"rejected {action.kind.value}: {reason}: {message}\n")

    sys.stdout.write(_dump(runtime.final_state) + "\n")
    if args.strict and rejected:
        return 1
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), stream=sys.stderr)
    if args.command == "apply":
        return _handle_apply(args)
    if args.command == "replay":
        return _handle_replay(args)
    parser.error("no command provided")
    return 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
