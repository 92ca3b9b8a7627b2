"""Execution log: one Call row per dispatch attempt of a task."""
from __future__ import annotations

import asyncio
import sqlite3
from typing import Any, Dict, List, Optional

import orjson

from discovery.errors import CallFinalizedError, NotFound
from discovery.orchestrator.tasks import Call, Task
from discovery.storage.database import Database, first_row, from_timestamp, to_timestamp, utcnow

_UNSET = object()


def _row_to_call(row: sqlite3.Row) -> Call:
    return Call(
        id=row["id"],
        task_id=row["task_id"],
        kind=row["kind"],
        payload=orjson.loads(row["payload"]),
        usage=orjson.loads(row["usage"]),
        logs=orjson.loads(row["logs"]),
        result=orjson.loads(row["result"]),
        errors=orjson.loads(row["errors"]),
        dropped_children=row["dropped_children"],
        created_at=from_timestamp(row["created_at"]),
        updated_at=from_timestamp(row["updated_at"]),
        finalized_at=from_timestamp(row["finalized_at"]) if row["finalized_at"] else None,
    )


def _dumps(value: Any) -> str:
    return orjson.dumps(value, default=str).decode()


class CallLog:
    """Creates, updates and finalizes Call rows; finalized rows never change again."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def _create(
        self,
        task: Task,
        payload: Optional[Dict[str, Any]],
        errors: Optional[List[Dict[str, Any]]],
        finalize: bool,
    ) -> Call:
        now = to_timestamp(utcnow())
        with self._db.transaction() as connection:
            row = first_row(
                connection.execute(
                    """
                    INSERT INTO calls (task_id, kind, payload, errors, created_at, updated_at, finalized_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    RETURNING *
                    """,
                    (
                        task.id,
                        task.kind,
                        _dumps(task.payload if payload is None else payload),
                        _dumps(errors or []),
                        now,
                        now,
                        now if finalize else None,
                    ),
                )
            )
        return _row_to_call(row)

    async def create(
        self,
        task: Task,
        payload: Optional[Dict[str, Any]] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
        finalize: bool = False,
    ) -> Call:
        """Open a Call for ``task``; ``finalize=True`` records a one-shot failure."""
        return await asyncio.to_thread(self._create, task, payload, errors, finalize)

    def _write(self, call_id: int, fields: Dict[str, Any], finalize: bool) -> Call:
        now = to_timestamp(utcnow())
        with self._db.transaction() as connection:
            current = first_row(connection.execute("SELECT finalized_at FROM calls WHERE id = ?", (call_id,)))
            if current is None:
                raise NotFound(f"Call {call_id} does not exist", meta={"call_id": call_id})
            if current["finalized_at"] is not None:
                raise CallFinalizedError(f"Call {call_id} is already finalized", meta={"call_id": call_id})
            assignments = ["updated_at = ?"]
            params: List[Any] = [now]
            for column, value in fields.items():
                assignments.append(f"{column} = ?")
                params.append(value if column == "dropped_children" else _dumps(value))
            if finalize:
                assignments.append("finalized_at = ?")
                params.append(now)
            params.append(call_id)
            row = first_row(
                connection.execute(f"UPDATE calls SET {', '.join(assignments)} WHERE id = ? RETURNING *", params)
            )
        return _row_to_call(row)

    async def update(
        self,
        call_id: int,
        *,
        usage: Any = _UNSET,
        logs: Any = _UNSET,
        result: Any = _UNSET,
        errors: Any = _UNSET,
    ) -> Call:
        """Persist partial handler progress into an open Call."""
        fields = {
            key: value
            for key, value in (("usage", usage), ("logs", logs), ("result", result), ("errors", errors))
            if value is not _UNSET
        }
        return await asyncio.to_thread(self._write, call_id, fields, False)

    async def finalize(
        self,
        call_id: int,
        *,
        usage: Any = _UNSET,
        logs: Any = _UNSET,
        result: Any = _UNSET,
        errors: Any = _UNSET,
        dropped_children: int = 0,
    ) -> Call:
        fields: Dict[str, Any] = {
            key: value
            for key, value in (("usage", usage), ("logs", logs), ("result", result), ("errors", errors))
            if value is not _UNSET
        }
        fields["dropped_children"] = dropped_children
        return await asyncio.to_thread(self._write, call_id, fields, True)

    def _get(self, call_id: int) -> Call:
        with self._db.connect() as connection:
            row = first_row(connection.execute("SELECT * FROM calls WHERE id = ?", (call_id,)))
        if row is None:
            raise NotFound(f"Call {call_id} does not exist", meta={"call_id": call_id})
        return _row_to_call(row)

    async def get(self, call_id: int) -> Call:
        return await asyncio.to_thread(self._get, call_id)

    def _for_task(self, task_id: int) -> List[Call]:
        with self._db.connect() as connection:
            rows = connection.execute("SELECT * FROM calls WHERE task_id = ? ORDER BY id", (task_id,)).fetchall()
        return [_row_to_call(row) for row in rows]

    async def for_task(self, task_id: int) -> List[Call]:
        """Every attempt recorded for a task, oldest first."""
        return await asyncio.to_thread(self._for_task, task_id)
