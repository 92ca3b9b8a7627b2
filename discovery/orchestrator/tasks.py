"""Task and execution-record types shared by the queue, dispatcher and handlers."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional


class TaskStatus(str, enum.Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    FAILED = "failed"
    CANCELLED = "cancelled"
    DONE = "done"


class TaskKind(str, enum.Enum):
    """Closed set of task kinds the worker knows how to run."""

    JOB = "job"
    JOB_BOARD = "jobBoard"
    ORGANIZATION = "organization"
    PORTFOLIO_LINKS = "portfolioLinks"
    DIRECTORY = "directory"
    SOURCE = "source"


# Leaf work ranks first so nearly-finished branches drain before wide ones grow.
PRIORITY: Dict[TaskKind, int] = {
    TaskKind.JOB: 1,
    TaskKind.JOB_BOARD: 2,
    TaskKind.ORGANIZATION: 3,
    TaskKind.PORTFOLIO_LINKS: 4,
    TaskKind.DIRECTORY: 5,
    TaskKind.SOURCE: 6,
}

UNKNOWN_PRIORITY = max(PRIORITY.values()) + 1


def priority_for(kind: str) -> int:
    """Return the claim tier for a kind name; unknown names rank after every tier."""
    try:
        return PRIORITY[TaskKind(kind)]
    except ValueError:
        return UNKNOWN_PRIORITY


@dataclass
class Task:
    id: int
    kind: str
    payload: Dict[str, Any]
    status: TaskStatus
    priority: int
    retry_count: int = 0
    max_retries: int = 3
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Call:
    """One attempt at running a task's handler; immutable once ``finalized_at`` is set."""

    id: int
    task_id: int
    kind: str
    payload: Dict[str, Any]
    usage: List[Dict[str, Any]] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)
    result: Any = None
    errors: List[Dict[str, Any]] = field(default_factory=list)
    dropped_children: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None

    @property
    def finalized(self) -> bool:
        return self.finalized_at is not None


@dataclass
class ChildTask:
    kind: TaskKind
    payload: Dict[str, Any]


@dataclass
class HandlerResult:
    """What a handler hands back to the dispatcher."""

    usage: List[Dict[str, Any]] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)
    result: Any = None
    errors: List[Dict[str, Any]] = field(default_factory=list)
    child_tasks: List[ChildTask] = field(default_factory=list)


@dataclass
class HandlerHelpers:
    """Queue and execution-log operations exposed to a running handler.

    ``update_call`` is pre-bound to the Call created for the current attempt so
    a handler can persist partial progress before it returns.
    """

    call_id: int
    enqueue: Callable[..., Awaitable[Task]]
    mark_status: Callable[..., Awaitable[Task]]
    create_call: Callable[..., Awaitable[Call]]
    update_call: Callable[..., Awaitable[Call]]
