"""Single-flow worker loop: claim, run and resolve one task at a time."""
from __future__ import annotations

import asyncio
import functools
import signal
import time
from typing import Callable, List, Optional

import structlog
from pydantic import ValidationError

from discovery.errors import EmptyQueue, PipelineError, UnknownKind, error_entry
from discovery.observability.metrics import MetricsRegistry, record_duration
from discovery.observability.tracing import clear_context, set_context
from discovery.orchestrator.calls import CallLog
from discovery.orchestrator.registry import TaskRegistry
from discovery.orchestrator.tasks import ChildTask, HandlerHelpers, HandlerResult, Task, TaskStatus

LOGGER = structlog.get_logger(__name__)


def _validation_errors(exc: ValidationError) -> List[dict]:
    return [
        {
            "code": "INVALID_PAYLOAD",
            "message": str(exc),
            "meta": {"errors": exc.errors(include_url=False, include_context=False)},
        }
    ]


class Dispatcher:
    """Pull-based dispatcher with wall-clock spacing between claims.

    Only one task runs at a time; throughput comes from running more worker
    processes against the same store.
    """

    def __init__(
        self,
        queue,
        calls: CallLog,
        registry: TaskRegistry,
        *,
        poll_interval_ms: int = 2000,
        rate_limit_per_sec: float = 2.0,
        max_retries: int = 3,
        metrics: Optional[MetricsRegistry] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._queue = queue
        self._calls = calls
        self._registry = registry
        self._poll_interval = poll_interval_ms / 1000
        self._min_gap = 1.0 / rate_limit_per_sec
        self._max_retries = max_retries
        self._metrics = metrics or MetricsRegistry()
        self._clock = clock
        self._last_claim: Optional[float] = None

    @property
    def metrics(self) -> MetricsRegistry:
        return self._metrics

    async def run(self, stop: asyncio.Event) -> None:
        """Loop until ``stop`` is set; a task already running always finishes."""
        LOGGER.info("worker_started", min_gap_s=self._min_gap, poll_interval_s=self._poll_interval)
        while not stop.is_set():
            try:
                await self.run_once(stop)
            except PipelineError as exc:
                LOGGER.error("worker_iteration_failed", **exc.to_dict())
                await self._sleep(self._poll_interval, stop)
            except Exception:
                LOGGER.exception("worker_iteration_crashed")
                await self._sleep(self._poll_interval, stop)
        LOGGER.info("worker_stopped", **self._metrics.snapshot())

    async def run_once(self, stop: Optional[asyncio.Event] = None) -> Optional[Task]:
        """Run one loop iteration; returns the resolved task, or None after a wait."""
        if self._last_claim is not None:
            remaining = self._min_gap - (self._clock() - self._last_claim)
            if remaining > 0:
                await self._sleep(remaining, stop)
                return None
        try:
            task = await self._queue.claim_next()
        except EmptyQueue:
            await self._sleep(self._poll_interval, stop)
            return None
        self._last_claim = self._clock()
        return await self.dispatch(task)

    async def _sleep(self, seconds: float, stop: Optional[asyncio.Event]) -> None:
        if stop is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def dispatch(self, task: Task) -> Task:
        """Resolve, validate and execute a claimed task, returning its final state."""
        self._metrics.incr("tasks_claimed")
        set_context(task_id=task.id, kind=task.kind)
        try:
            return await self._dispatch(task)
        finally:
            clear_context()

    async def _dispatch(self, task: Task) -> Task:
        try:
            spec = self._registry.resolve(task.kind)
        except UnknownKind as exc:
            LOGGER.error("unknown_task_kind", task_kind=task.kind)
            await self._calls.create(task, errors=[error_entry(exc)], finalize=True)
            self._metrics.incr("tasks_failed")
            return await self._queue.mark_status(task.id, TaskStatus.FAILED)

        try:
            payload = spec.schema.model_validate(task.payload)
        except ValidationError as exc:
            LOGGER.warning("invalid_payload", retry_count=task.retry_count, error_count=exc.error_count())
            await self._calls.create(task, errors=_validation_errors(exc), finalize=True)
            return await self._retry_or_fail(task)

        call = await self._calls.create(task)
        set_context(task_id=task.id, kind=task.kind, call_id=call.id)
        helpers = HandlerHelpers(
            call_id=call.id,
            enqueue=self._queue.enqueue,
            mark_status=self._queue.mark_status,
            create_call=self._calls.create,
            update_call=functools.partial(self._calls.update, call.id),
        )

        try:
            with record_duration(self._metrics, "handler_ms"):
                outcome: HandlerResult = await spec.handler(task, payload, helpers)
        except Exception as exc:
            # Exceptions are terminal; only structured errors are retried.
            LOGGER.exception("handler_raised")
            await self._calls.finalize(call.id, errors=[error_entry(exc)])
            self._metrics.incr("tasks_failed")
            return await self._queue.mark_status(task.id, TaskStatus.FAILED)

        if outcome.errors:
            LOGGER.warning("handler_reported_errors", error_count=len(outcome.errors))
            await self._calls.finalize(
                call.id,
                usage=outcome.usage,
                logs=outcome.logs,
                result=outcome.result,
                errors=outcome.errors,
            )
            return await self._retry_or_fail(task)

        dropped = await self._enqueue_children(outcome.child_tasks)
        await self._calls.finalize(
            call.id,
            usage=outcome.usage,
            logs=outcome.logs,
            result=outcome.result,
            errors=[],
            dropped_children=dropped,
        )
        self._metrics.incr("tasks_done")
        LOGGER.info("task_done", children=len(outcome.child_tasks), dropped_children=dropped)
        return await self._queue.mark_status(task.id, TaskStatus.DONE)

    async def _enqueue_children(self, children: List[ChildTask]) -> int:
        """Enqueue children best-effort; returns how many could not be stored."""
        dropped = 0
        for child in children:
            try:
                await self._queue.enqueue(child.payload, child.kind, max_retries=self._max_retries)
            except PipelineError as exc:
                dropped += 1
                LOGGER.warning("child_enqueue_dropped", child_kind=str(child.kind), **exc.to_dict())
            except Exception as exc:
                dropped += 1
                LOGGER.warning(
                    "child_enqueue_dropped", child_kind=str(child.kind), code="ENQUEUE_FAILED", message=str(exc)
                )
            else:
                self._metrics.incr("children_enqueued")
        if dropped:
            self._metrics.incr("children_dropped", dropped)
        return dropped

    async def _retry_or_fail(self, task: Task) -> Task:
        retry_count = task.retry_count + 1
        if retry_count >= task.max_retries:
            LOGGER.warning("task_retries_exhausted", retry_count=retry_count, max_retries=task.max_retries)
            self._metrics.incr("tasks_failed")
            return await self._queue.mark_status(task.id, TaskStatus.FAILED, retry_count=retry_count)
        self._metrics.incr("tasks_retried")
        return await self._queue.mark_status(task.id, TaskStatus.QUEUED, retry_count=retry_count)


async def run_worker(
    dispatcher: Dispatcher,
    queue,
    *,
    stop: Optional[asyncio.Event] = None,
    install_signal_handlers: bool = True,
) -> None:
    """Recover stuck tasks, then run the loop until SIGINT/SIGTERM or ``stop``."""
    stop = stop or asyncio.Event()
    await queue.reset_stuck()
    if install_signal_handlers:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, stop.set)
    try:
        await dispatcher.run(stop)
    finally:
        if install_signal_handlers:
            loop = asyncio.get_running_loop()
            for signum in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(signum)
