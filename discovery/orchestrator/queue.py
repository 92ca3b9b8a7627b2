"""Durable task queue backed by the shared SQLite store."""
from __future__ import annotations

import asyncio
import sqlite3
from typing import Any, Dict, Optional

import orjson
import structlog

from discovery.errors import EmptyQueue, NotFound
from discovery.orchestrator.tasks import Task, TaskStatus, priority_for
from discovery.storage.database import Database, first_row, from_timestamp, to_timestamp, utcnow

LOGGER = structlog.get_logger(__name__)

_CLAIM_SQL = """
    SELECT * FROM tasks
    WHERE status = ?
    ORDER BY priority ASC, created_at ASC, id ASC
    LIMIT 1
"""


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        kind=row["kind"],
        payload=orjson.loads(row["payload"]),
        status=TaskStatus(row["status"]),
        priority=row["priority"],
        retry_count=row["retry_count"],
        max_retries=row["max_retries"],
        created_at=from_timestamp(row["created_at"]),
        updated_at=from_timestamp(row["updated_at"]),
    )


class TaskQueue:
    """Priority-ordered queue shared by every worker process.

    The database is the only arbiter of exclusivity: a claim selects and flips a
    row to ``in_progress`` inside one write transaction, so two workers can never
    hold the same task.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    def _enqueue(self, payload: Dict[str, Any], kind: str, max_retries: int) -> Task:
        now = to_timestamp(utcnow())
        with self._db.transaction() as connection:
            row = first_row(connection.execute(
                """
                INSERT INTO tasks (kind, payload, status, priority, retry_count, max_retries, created_at, updated_at)
                VALUES (?, ?, ?, ?, 0, ?, ?, ?)
                RETURNING *
                """,
                (
                    str(kind),
                    orjson.dumps(payload).decode(),
                    TaskStatus.QUEUED.value,
                    priority_for(str(kind)),
                    max_retries,
                    now,
                    now,
                ),
            ))
        return _row_to_task(row)

    async def enqueue(self, payload: Dict[str, Any], kind: str, max_retries: int = 3) -> Task:
        """Insert a queued task with a zero retry count."""
        kind = getattr(kind, "value", kind)
        task = await asyncio.to_thread(self._enqueue, payload, kind, max_retries)
        LOGGER.info("task_enqueued", task_id=task.id, task_kind=task.kind, priority=task.priority)
        return task

    def _claim_next(self) -> Task:
        with self._db.transaction() as connection:
            row = first_row(connection.execute(_CLAIM_SQL, (TaskStatus.QUEUED.value,)))
            if row is None:
                raise EmptyQueue("No queued tasks")
            claimed = first_row(connection.execute(
                "UPDATE tasks SET status = ?, updated_at = ? WHERE id = ? RETURNING *",
                (TaskStatus.IN_PROGRESS.value, to_timestamp(utcnow()), row["id"]),
            ))
        return _row_to_task(claimed)

    async def claim_next(self) -> Task:
        """Claim the oldest queued task of the lowest priority tier, marking it in progress."""
        return await asyncio.to_thread(self._claim_next)

    def _mark_status(self, task_id: int, status: TaskStatus, retry_count: Optional[int]) -> Task:
        now = to_timestamp(utcnow())
        with self._db.transaction() as connection:
            if retry_count is None:
                row = first_row(connection.execute(
                    "UPDATE tasks SET status = ?, updated_at = ? WHERE id = ? RETURNING *",
                    (TaskStatus(status).value, now, task_id),
                ))
            else:
                row = first_row(connection.execute(
                    "UPDATE tasks SET status = ?, retry_count = ?, updated_at = ? WHERE id = ? RETURNING *",
                    (TaskStatus(status).value, retry_count, now, task_id),
                ))
        if row is None:
            raise NotFound(f"Task {task_id} does not exist", meta={"task_id": task_id})
        return _row_to_task(row)

    async def mark_status(self, task_id: int, status: TaskStatus, retry_count: Optional[int] = None) -> Task:
        return await asyncio.to_thread(self._mark_status, task_id, status, retry_count)

    def _reset_stuck(self) -> int:
        with self._db.transaction() as connection:
            cursor = connection.execute(
                "UPDATE tasks SET status = ?, updated_at = ? WHERE status = ?",
                (TaskStatus.QUEUED.value, to_timestamp(utcnow()), TaskStatus.IN_PROGRESS.value),
            )
            return cursor.rowcount

    async def reset_stuck(self) -> int:
        """Return every in-progress task to the queue; run once at worker start."""
        count = await asyncio.to_thread(self._reset_stuck)
        if count:
            LOGGER.warning("stuck_tasks_reset", count=count)
        return count

    def _get(self, task_id: int) -> Task:
        with self._db.connect() as connection:
            row = first_row(connection.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)))
        if row is None:
            raise NotFound(f"Task {task_id} does not exist", meta={"task_id": task_id})
        return _row_to_task(row)

    async def get(self, task_id: int) -> Task:
        return await asyncio.to_thread(self._get, task_id)

    def _counts(self) -> Dict[str, Dict[str, int]]:
        with self._db.connect() as connection:
            rows = connection.execute(
                "SELECT kind, status, COUNT(*) AS total FROM tasks GROUP BY kind, status ORDER BY kind, status"
            ).fetchall()
        summary: Dict[str, Dict[str, int]] = {}
        for row in rows:
            summary.setdefault(row["kind"], {})[row["status"]] = row["total"]
        return summary

    async def counts(self) -> Dict[str, Dict[str, int]]:
        """Task totals keyed by kind, then status."""
        return await asyncio.to_thread(self._counts)

    def _requeue_failed(self, kind: Optional[str]) -> int:
        sql = "UPDATE tasks SET status = ?, retry_count = 0, updated_at = ? WHERE status = ?"
        params: tuple = (TaskStatus.QUEUED.value, to_timestamp(utcnow()), TaskStatus.FAILED.value)
        if kind is not None:
            sql += " AND kind = ?"
            params += (kind,)
        with self._db.transaction() as connection:
            return connection.execute(sql, params).rowcount

    async def requeue_failed(self, kind: Optional[str] = None) -> int:
        """Put failed tasks back in the queue with a fresh retry budget."""
        return await asyncio.to_thread(self._requeue_failed, kind)
