#!/usr/bin/env python
"""Queue the built-in investor sources as seed tasks."""
from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import List

from dotenv import load_dotenv

from discovery.config import DEFAULT_SETTINGS_PATH, load_settings
from discovery.orchestrator.queue import TaskQueue
from discovery.orchestrator.tasks import Task, TaskKind
from discovery.storage.database import Database

SEED_SOURCES = [
    {"home": "https://www.garage.vc", "portfolio": "https://www.garage.vc/#portfolio"},
    {"home": "https://www.inovia.vc", "portfolio": "https://www.inovia.vc/portfolio"},
    {"home": "https://www.realventures.com", "portfolio": "https://www.realventures.com/companies"},
]


async def seed_sources(database: Database, *, max_retries: int = 3) -> List[Task]:
    """Enqueue one source task per built-in investor."""
    queue = TaskQueue(database)
    return [await queue.enqueue(dict(row), TaskKind.SOURCE, max_retries=max_retries) for row in SEED_SOURCES]


def main() -> None:
    """CLI entrypoint used by `python -m scripts.seed_sources`."""
    load_dotenv()
    parser = argparse.ArgumentParser(description="Queue the built-in investor sources")
    parser.add_argument("--settings", type=Path, default=DEFAULT_SETTINGS_PATH, help="Path to settings TOML")
    args = parser.parse_args()
    settings = load_settings(args.settings)
    database = Database(settings.app.database_path)
    database.initialise()
    tasks = asyncio.run(seed_sources(database, max_retries=settings.worker.max_retries))
    for task in tasks:
        print(f"queued source task {task.id}: {task.payload['home']}")


if __name__ == "__main__":
    main()
