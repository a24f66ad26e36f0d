# ruff: noqa: T201

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import UTC, datetime
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from syncledger import __version__
from syncledger.app import build_service
from syncledger.config import configure_logging
from syncledger.domain.codec import isoformat, to_jsonable

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from types import FrameType

    from syncledger.app import SyncLedgerService
    from syncledger.domain.model import Snapshot

log = logging.getLogger(__name__)

type ServiceFactory = Callable[[], SyncLedgerService]


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile a local workspace with a remote store")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log at debug level")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Run one reconciliation pass")
    sync.add_argument(
        "--watch",
        action="store_true",
        help="Keep running passes on the configured interval until interrupted",
    )

    timeline = subparsers.add_parser("timeline", help="List the recorded changes of an entity")
    timeline.add_argument("entity_id", type=str)
    timeline.add_argument("--limit", type=int, help="Maximum number of entries to show")

    preview = subparsers.add_parser("preview", help="Show an entity's state at an instant")
    preview.add_argument("entity_id", type=str)
    preview.add_argument("--at", required=True, help="ISO-8601 timestamp (UTC)")

    rewind = subparsers.add_parser("rewind", help="Restore an entity to an earlier state")
    rewind.add_argument("entity_id", type=str)
    rewind.add_argument("--at", required=True, help="ISO-8601 timestamp (UTC)")
    rewind.add_argument(
        "--no-validate",
        dest="validate",
        action="store_false",
        help="Skip the future-timestamp and unsaved-changes checks",
    )

    compare = subparsers.add_parser("compare", help="Diff an entity's state at two instants")
    compare.add_argument("entity_id", type=str)
    compare.add_argument("--first", required=True, help="ISO-8601 timestamp (UTC)")
    compare.add_argument("--second", required=True, help="ISO-8601 timestamp (UTC)")

    return parser.parse_args(list(argv))


def _parse_iso_datetime(value: str) -> datetime:
    try:
        normalized = value.strip()
        if normalized.endswith("Z"):
            normalized = normalized[:-1] + "+00:00"
        dt = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"Invalid ISO timestamp: {value}") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _format_snapshot(snapshot: Snapshot | None) -> str:
    if snapshot is None:
        return "no recorded state"
    if not snapshot.exists:
        return f"deleted (as of record {snapshot.record.id})"
    return json.dumps(to_jsonable(snapshot.values), indent=2, sort_keys=True)


async def _watch(service: SyncLedgerService) -> None:
    await service.tracker.start()
    service.scheduler.start()
    try:
        await asyncio.Event().wait()
    finally:
        await service.scheduler.stop()


async def _run_command(args: argparse.Namespace, service: SyncLedgerService) -> None:
    try:
        if args.command == "sync":
            if args.watch:
                await _watch(service)
                return
            report = await service.sync()
            print(report.summary())
        elif args.command == "timeline":
            for entry in await service.rewind.get_timeline(args.entity_id, limit=args.limit):
                fields = ", ".join(change.field for change in entry.changes) or "-"
                marker = "" if entry.can_rewind else " (remote)"
                print(
                    f"{isoformat(entry.timestamp)}  {entry.action:<7} {entry.agent.id:<16} "
                    f"{fields}{marker}  [{entry.record_id}]"
                )
        elif args.command == "preview":
            snapshot = await service.rewind.preview_at_time(
                args.entity_id, _parse_iso_datetime(args.at)
            )
            print(_format_snapshot(snapshot))
        elif args.command == "rewind":
            result = await service.rewind.rewind_to(
                args.entity_id, _parse_iso_datetime(args.at), validate=args.validate
            )
            print(f"Rewound {result.entity_id} to {isoformat(result.timestamp)}")
            print(_format_snapshot(result.target))
        elif args.command == "compare":
            comparison = await service.rewind.compare_states(
                args.entity_id,
                _parse_iso_datetime(args.first),
                _parse_iso_datetime(args.second),
            )
            if not comparison.differences:
                print("no differences")
            for diff in comparison.differences:
                print(
                    f"{diff.change_type:<8} {diff.field}: "
                    f"{json.dumps(to_jsonable(diff.before))} -> "
                    f"{json.dumps(to_jsonable(diff.after))}"
                )
        else:
            raise ValueError(f"Unsupported command: {args.command}")
    finally:
        await service.aclose()


def main(
    argv: Sequence[str] | None = None,
    *,
    service_factory: ServiceFactory = build_service,
) -> None:
    """Main application entry point."""
    load_dotenv()
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args = _parse_args(args_list)
    configure_logging(level=logging.DEBUG if parsed_args.verbose else None)
    try:
        for name in ("at", "first", "second"):
            value = getattr(parsed_args, name, None)
            if value is not None:
                _parse_iso_datetime(value)
    except ValueError:
        log.exception("CLI validation error")
        sys.exit(2)

    try:
        service = service_factory()
        asyncio.run(_run_command(parsed_args, service))
    except Exception:
        log.exception("Fatal error")
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


if __name__ == "__main__":
    signal(SIGINT, sigint_handler)
    main()
