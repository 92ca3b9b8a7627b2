"""Command-line entrypoints for the discovery pipeline."""
from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

try:
    import uvloop
except ImportError:  # pragma: no cover - uvloop optional on some platforms
    uvloop = None

from discovery.config import DEFAULT_SETTINGS_PATH, PipelineSettings, load_settings
from discovery.extract.client import OpenAIExtractor
from discovery.fetch.browser import BrowserPool
from discovery.fetch.freshness import FreshnessCache
from discovery.fetch.robots import RobotsCache
from discovery.fetch.session import create_http_session
from discovery.fetch.snapshot import Snapshotter
from discovery.handlers import directory, source
from discovery.handlers.common import HandlerDeps
from discovery.observability.log import configure_logging
from discovery.observability.metrics import MetricsRegistry
from discovery.orchestrator.calls import CallLog
from discovery.orchestrator.dispatcher import Dispatcher, run_worker
from discovery.orchestrator.queue import TaskQueue
from discovery.orchestrator.registry import build_registry
from discovery.orchestrator.tasks import Task, TaskKind
from discovery.storage.database import Database
from discovery.storage.entities import EntityStore


def open_database(settings: PipelineSettings) -> Database:
    database = Database(settings.app.database_path)
    database.initialise()
    return database


def build_arg_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(prog="startup-discovery", description="Canadian startup discovery pipeline")
    parser.add_argument("--settings", type=Path, default=DEFAULT_SETTINGS_PATH, help="Path to settings TOML")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the SQLite schema")

    seed_source = sub.add_parser("seed-source", help="Queue an investor's home and portfolio pages")
    seed_source.add_argument("--home", required=True, help="Investor home page URL")
    seed_source.add_argument("--portfolio", required=True, help="Portfolio page URL")

    seed_directory = sub.add_parser("seed-directory", help="Queue a startup directory page")
    seed_directory.add_argument("--url", required=True, help="Directory page URL")
    seed_directory.add_argument("--depth", type=int, default=0, help="Starting recursion depth")

    sub.add_parser("worker", help="Run the dispatcher loop until interrupted")
    return parser


async def seed_task(settings: PipelineSettings, kind: TaskKind, payload: Dict[str, Any]) -> Task:
    """Enqueue a seed task with the configured retry budget."""
    queue = TaskQueue(open_database(settings))
    return await queue.enqueue(payload, kind, max_retries=settings.worker.max_retries)


async def run_worker_command(settings: PipelineSettings) -> Dict[str, int]:
    """Wire the real collaborators and run one worker process until it is stopped."""
    database = open_database(settings)
    metrics = MetricsRegistry()
    queue = TaskQueue(database)
    browsers = BrowserPool(user_agent=settings.fetch.user_agent)
    async with create_http_session(
        user_agent=settings.fetch.user_agent,
        timeout=settings.fetch.timeout_seconds,
    ) as session:
        deps = HandlerDeps(
            settings=settings,
            session=session,
            freshness=FreshnessCache(database),
            snapshotter=Snapshotter(settings.snapshot, browsers.driver, metrics=metrics),
            extractor=OpenAIExtractor(settings.extraction),
            entities=EntityStore(database),
            metrics=metrics,
            robots=RobotsCache(user_agent=settings.fetch.user_agent, client=session.client),
        )
        dispatcher = Dispatcher(
            queue,
            CallLog(database),
            build_registry(deps),
            poll_interval_ms=settings.worker.poll_interval_ms,
            rate_limit_per_sec=settings.worker.rate_limit_per_sec,
            max_retries=settings.worker.max_retries,
            metrics=metrics,
        )
        try:
            await run_worker(dispatcher, queue)
        finally:
            await browsers.close()
    return metrics.snapshot()


def _run(coro):
    if uvloop is not None:
        return uvloop.run(coro)
    return asyncio.run(coro)


def _validated(schema, values: Dict[str, Any]) -> Dict[str, Any]:
    try:
        return schema.model_validate(values).model_dump(mode="json", exclude_none=True)
    except ValidationError as exc:
        raise SystemExit(f"Invalid seed payload: {exc}")


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI."""
    load_dotenv()
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    settings = load_settings(args.settings)
    configure_logging(settings.app.log_config)

    if args.command == "init-db":
        database = open_database(settings)
        print(json.dumps({"database": str(database.path)}))
        return

    if args.command == "seed-source":
        payload = _validated(source.Payload, {"home": args.home, "portfolio": args.portfolio})
        task = _run(seed_task(settings, TaskKind.SOURCE, payload))
        print(json.dumps({"task_id": task.id, "kind": task.kind}))
        return

    if args.command == "seed-directory":
        payload = _validated(directory.Payload, {"url": args.url, "depth": args.depth})
        task = _run(seed_task(settings, TaskKind.DIRECTORY, payload))
        print(json.dumps({"task_id": task.id, "kind": task.kind}))
        return

    if args.command == "worker":
        counters = _run(run_worker_command(settings))
        print(json.dumps(counters, indent=2))


if __name__ == "__main__":
    main()
