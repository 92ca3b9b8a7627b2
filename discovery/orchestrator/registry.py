"""Closed mapping from task kind to handler and payload schema."""
from __future__ import annotations

import functools
from dataclasses import dataclass
from types import MappingProxyType
from typing import Awaitable, Callable, Mapping, Type

from pydantic import BaseModel

from discovery.errors import UnknownKind
from discovery.orchestrator.tasks import HandlerHelpers, HandlerResult, Task, TaskKind

Handler = Callable[[Task, BaseModel, HandlerHelpers], Awaitable[HandlerResult]]


@dataclass(frozen=True)
class HandlerSpec:
    handler: Handler
    schema: Type[BaseModel]


class TaskRegistry:
    """Resolves task kinds to handlers.

    Construction fails unless every :class:`TaskKind` has a handler, and the
    mapping cannot be changed afterwards.
    """

    def __init__(self, specs: Mapping[TaskKind, HandlerSpec]) -> None:
        missing = [kind.value for kind in TaskKind if kind not in specs]
        if missing:
            raise ValueError(f"No handler registered for task kinds: {', '.join(missing)}")
        extra = [str(kind) for kind in specs if not isinstance(kind, TaskKind)]
        if extra:
            raise ValueError(f"Unknown task kinds in registry: {', '.join(extra)}")
        self._specs: Mapping[TaskKind, HandlerSpec] = MappingProxyType(dict(specs))

    def resolve(self, kind: str) -> HandlerSpec:
        try:
            return self._specs[TaskKind(kind)]
        except ValueError as exc:
            raise UnknownKind(f"No handler for task kind {kind!r}", meta={"kind": kind}) from exc

    def kinds(self) -> list:
        return list(self._specs)


def build_registry(deps) -> TaskRegistry:
    """Wire the default handlers against a shared set of collaborators."""
    from discovery.handlers import directory, job, job_board, organization, portfolio_links, source

    modules = {
        TaskKind.SOURCE: source,
        TaskKind.PORTFOLIO_LINKS: portfolio_links,
        TaskKind.ORGANIZATION: organization,
        TaskKind.JOB_BOARD: job_board,
        TaskKind.JOB: job,
        TaskKind.DIRECTORY: directory,
    }
    return TaskRegistry(
        {
            kind: HandlerSpec(handler=functools.partial(module.handle, deps=deps), schema=module.Payload)
            for kind, module in modules.items()
        }
    )
