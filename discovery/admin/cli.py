"""Administrative CLI utilities for inspecting and nudging the queue."""
from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

from discovery.config import DEFAULT_SETTINGS_PATH, load_settings
from discovery.fetch.freshness import FreshnessCache
from discovery.observability.log import configure_logging
from discovery.orchestrator.calls import CallLog
from discovery.orchestrator.queue import TaskQueue
from discovery.storage.database import Database


def _database(args: argparse.Namespace) -> Database:
    path = Path(args.database) if args.database else load_settings(Path(args.settings)).app.database_path
    database = Database(path)
    database.initialise()
    return database


def cmd_status(args: argparse.Namespace) -> None:
    queue = TaskQueue(_database(args))
    counts = asyncio.run(queue.counts())
    totals: dict = {}
    for statuses in counts.values():
        for status, total in statuses.items():
            totals[status] = totals.get(status, 0) + total
    print(json.dumps({"by_kind": counts, "totals": totals}, indent=2))


def cmd_calls(args: argparse.Namespace) -> None:
    calls = asyncio.run(CallLog(_database(args)).for_task(args.task_id))
    rows = []
    for call in calls:
        row = asdict(call)
        if not args.verbose:
            row.pop("payload")
            for entry in row["errors"]:
                entry.pop("stack", None)
        rows.append(row)
    print(json.dumps(rows, indent=2, default=str))


def cmd_requeue_failed(args: argparse.Namespace) -> None:
    count = asyncio.run(TaskQueue(_database(args)).requeue_failed(args.kind))
    print(json.dumps({"requeued": count, "kind": args.kind}))


def cmd_purge_freshness(args: argparse.Namespace) -> None:
    count = asyncio.run(FreshnessCache(_database(args)).purge(args.url))
    print(json.dumps({"purged": count, "url": args.url}))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="discovery.admin.cli", description="Administration commands")
    parser.add_argument("--settings", default=str(DEFAULT_SETTINGS_PATH))
    parser.add_argument("--database", help="Override the database path from settings")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show task counts by kind and status")

    calls = sub.add_parser("calls", help="Show the execution records of one task")
    calls.add_argument("--task-id", type=int, required=True)
    calls.add_argument("--verbose", action="store_true", help="Include payloads and stack traces")

    requeue = sub.add_parser("requeue-failed", help="Put failed tasks back in the queue")
    requeue.add_argument("--kind", help="Only requeue tasks of this kind")

    purge = sub.add_parser("purge-freshness", help="Forget freshness records so URLs are crawled again")
    purge.add_argument("--url", help="Only purge this URL")

    return parser


COMMANDS = {
    "status": cmd_status,
    "calls": cmd_calls,
    "requeue-failed": cmd_requeue_failed,
    "purge-freshness": cmd_purge_freshness,
}


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(load_settings(Path(args.settings)).app.log_config)
    COMMANDS[args.command](args)


if __name__ == "__main__":
    main()
