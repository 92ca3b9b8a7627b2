import asyncio

import pytest
from pydantic import BaseModel

from discovery.errors import PersistenceError
from discovery.orchestrator.calls import CallLog
from discovery.orchestrator.dispatcher import Dispatcher, run_worker
from discovery.orchestrator.queue import TaskQueue
from discovery.orchestrator.registry import HandlerSpec, TaskRegistry
from discovery.orchestrator.tasks import ChildTask, HandlerResult, TaskKind, TaskStatus


class UrlPayload(BaseModel):
    url: str


class Behaviour:
    """Scripted handler shared by every kind in these tests."""

    def __init__(self):
        self.mode = "succeed"
        self.children = []
        self.seen = []
        self.on_call = None

    async def __call__(self, task, payload, helpers):
        self.seen.append((task.id, payload))
        if self.on_call is not None:
            self.on_call()
        await helpers.update_call(logs=["working"])
        if self.mode == "raise":
            raise RuntimeError("handler blew up")
        if self.mode == "errors":
            return HandlerResult(logs=["working"], errors=[{"code": "FETCH_FAILED", "message": "offline"}])
        return HandlerResult(
            usage=[{"model": "fake"}],
            logs=["working", "done"],
            result={"url": payload.url},
            child_tasks=list(self.children),
        )


def make_dispatcher(database, behaviour, *, queue=None, **kwargs):
    queue = queue or TaskQueue(database)
    calls = CallLog(database)
    registry = TaskRegistry({kind: HandlerSpec(handler=behaviour, schema=UrlPayload) for kind in TaskKind})
    kwargs.setdefault("rate_limit_per_sec", 1000.0)
    kwargs.setdefault("poll_interval_ms", 10)
    return Dispatcher(queue, calls, registry, **kwargs), queue, calls


def test_success_finalizes_call_and_enqueues_children(database):
    behaviour = Behaviour()
    behaviour.children = [ChildTask(TaskKind.ORGANIZATION, {"url": "https://acme.ca"})]
    dispatcher, queue, calls = make_dispatcher(database, behaviour)

    async def scenario():
        task = await queue.enqueue({"url": "https://vc.ca"}, TaskKind.SOURCE)
        resolved = await dispatcher.run_once()
        child = await queue.claim_next()
        return task, resolved, child, await calls.for_task(task.id)

    task, resolved, child, history = asyncio.run(scenario())
    assert resolved.id == task.id
    assert resolved.status is TaskStatus.DONE
    assert len(history) == 1
    call = history[0]
    assert call.finalized
    assert call.errors == []
    assert call.result == {"url": "https://vc.ca"}
    assert call.logs == ["working", "done"]
    assert child.kind == "organization"
    assert child.priority == 3
    assert child.payload == {"url": "https://acme.ca"}
    assert dispatcher.metrics.get("tasks_done") == 1
    assert dispatcher.metrics.get("children_enqueued") == 1


def test_structured_errors_retry_until_exhausted(database):
    behaviour = Behaviour()
    behaviour.mode = "errors"
    dispatcher, queue, calls = make_dispatcher(database, behaviour)

    async def scenario():
        task = await queue.enqueue({"url": "https://gone.ca"}, TaskKind.ORGANIZATION, max_retries=3)
        states = []
        for _ in range(3):
            states.append(await dispatcher.dispatch(await queue.claim_next()))
        return task, states, await calls.for_task(task.id)

    task, states, history = asyncio.run(scenario())
    assert [(state.status, state.retry_count) for state in states] == [
        (TaskStatus.QUEUED, 1),
        (TaskStatus.QUEUED, 2),
        (TaskStatus.FAILED, 3),
    ]
    assert len(history) == 3
    assert all(call.finalized and call.errors[0]["code"] == "FETCH_FAILED" for call in history)
    assert dispatcher.metrics.get("tasks_retried") == 2
    assert dispatcher.metrics.get("tasks_failed") == 1


def test_handler_exception_fails_without_retry(database):
    behaviour = Behaviour()
    behaviour.mode = "raise"
    behaviour.children = [ChildTask(TaskKind.JOB, {"url": "https://acme.ca/jobs/1"})]
    dispatcher, queue, calls = make_dispatcher(database, behaviour)

    async def scenario():
        task = await queue.enqueue({"url": "https://acme.ca"}, TaskKind.JOB_BOARD)
        resolved = await dispatcher.run_once()
        return resolved, await calls.for_task(task.id), await queue.counts()

    resolved, history, counts = asyncio.run(scenario())
    assert resolved.status is TaskStatus.FAILED
    assert resolved.retry_count == 0
    assert history[0].finalized
    assert history[0].logs == ["working"]
    assert history[0].errors[0]["code"] == "RuntimeError"
    assert "handler blew up" in history[0].errors[0]["stack"]
    assert counts == {"jobBoard": {"failed": 1}}


def test_unknown_kind_fails_immediately(database):
    behaviour = Behaviour()
    dispatcher, queue, calls = make_dispatcher(database, behaviour)

    async def scenario():
        task = await queue.enqueue({"url": "https://acme.ca"}, "mystery")
        resolved = await dispatcher.run_once()
        return resolved, await calls.for_task(task.id)

    resolved, history = asyncio.run(scenario())
    assert resolved.status is TaskStatus.FAILED
    assert resolved.retry_count == 0
    assert history[0].finalized
    assert history[0].errors[0]["code"] == "UNKNOWN_KIND"
    assert behaviour.seen == []


def test_invalid_payload_records_call_and_retries(database):
    behaviour = Behaviour()
    dispatcher, queue, calls = make_dispatcher(database, behaviour)

    async def scenario():
        task = await queue.enqueue({"link": "https://acme.ca"}, TaskKind.ORGANIZATION, max_retries=2)
        first = await dispatcher.dispatch(await queue.claim_next())
        second = await dispatcher.dispatch(await queue.claim_next())
        return first, second, await calls.for_task(task.id)

    first, second, history = asyncio.run(scenario())
    assert (first.status, first.retry_count) == (TaskStatus.QUEUED, 1)
    assert (second.status, second.retry_count) == (TaskStatus.FAILED, 2)
    assert len(history) == 2
    assert all(call.finalized for call in history)
    assert history[0].errors[0]["code"] == "INVALID_PAYLOAD"
    assert behaviour.seen == []


class RejectingQueue(TaskQueue):
    async def enqueue(self, payload, kind, max_retries=3):
        if payload.get("reject"):
            raise PersistenceError("disk full")
        return await super().enqueue(payload, kind, max_retries)


def test_failed_child_enqueue_is_counted_not_fatal(database):
    behaviour = Behaviour()
    behaviour.children = [
        ChildTask(TaskKind.ORGANIZATION, {"url": "https://acme.ca"}),
        ChildTask(TaskKind.ORGANIZATION, {"url": "https://beta.ca", "reject": True}),
    ]
    dispatcher, queue, calls = make_dispatcher(database, behaviour, queue=RejectingQueue(database))

    async def scenario():
        task = await queue.enqueue({"url": "https://vc.ca"}, TaskKind.SOURCE)
        resolved = await dispatcher.run_once()
        return resolved, await calls.for_task(task.id), await queue.counts()

    resolved, history, counts = asyncio.run(scenario())
    assert resolved.status is TaskStatus.DONE
    assert history[0].dropped_children == 1
    assert counts["organization"] == {"queued": 1}
    assert dispatcher.metrics.get("children_dropped") == 1


def test_unserialisable_child_payload_is_dropped(database):
    behaviour = Behaviour()
    behaviour.children = [
        ChildTask(TaskKind.JOB, {"url": "https://acme.ca/jobs/1", "tags": {"python"}}),
        ChildTask(TaskKind.JOB, {"url": "https://acme.ca/jobs/2"}),
    ]
    dispatcher, queue, calls = make_dispatcher(database, behaviour)

    async def scenario():
        task = await queue.enqueue({"url": "https://acme.ca"}, TaskKind.JOB_BOARD)
        resolved = await dispatcher.run_once()
        return resolved, await calls.for_task(task.id), await queue.counts()

    resolved, history, counts = asyncio.run(scenario())
    assert resolved.status is TaskStatus.DONE
    assert history[0].finalized
    assert history[0].dropped_children == 1
    assert counts["job"] == {"queued": 1}


class FlakyQueue(TaskQueue):
    def __init__(self, database, stop):
        super().__init__(database)
        self.stop = stop
        self.claims = 0

    async def claim_next(self):
        self.claims += 1
        if self.claims == 1:
            raise RuntimeError("connection reset")
        self.stop.set()
        return await super().claim_next()


def test_run_survives_unexpected_errors(database):
    async def scenario():
        stop = asyncio.Event()
        queue = FlakyQueue(database, stop)
        dispatcher, _, _ = make_dispatcher(database, Behaviour(), queue=queue)
        await queue.enqueue({"url": "https://acme.ca"}, TaskKind.JOB)
        await asyncio.wait_for(dispatcher.run(stop), timeout=5)
        return queue.claims, await queue.counts()

    claims, counts = asyncio.run(scenario())
    assert claims == 2
    assert counts == {"job": {"done": 1}}


def test_claims_are_spaced_by_rate_limit(database):
    now = [0.0]
    behaviour = Behaviour()
    dispatcher, queue, _ = make_dispatcher(database, behaviour, rate_limit_per_sec=1.0, clock=lambda: now[0])

    async def scenario():
        stop = asyncio.Event()
        stop.set()
        await queue.enqueue({"url": "https://one.ca"}, TaskKind.JOB)
        await queue.enqueue({"url": "https://two.ca"}, TaskKind.JOB)
        first = await dispatcher.run_once(stop)
        now[0] = 0.5
        too_soon = await dispatcher.run_once(stop)
        now[0] = 1.0
        second = await dispatcher.run_once(stop)
        return first, too_soon, second

    first, too_soon, second = asyncio.run(scenario())
    assert first.payload["url"] == "https://one.ca"
    assert too_soon is None
    assert second.payload["url"] == "https://two.ca"


def test_empty_queue_waits_and_returns_none(database):
    dispatcher, _, _ = make_dispatcher(database, Behaviour())
    assert asyncio.run(dispatcher.run_once()) is None


def test_run_stops_when_event_is_set(database):
    behaviour = Behaviour()
    dispatcher, queue, _ = make_dispatcher(database, behaviour)

    async def scenario():
        stop = asyncio.Event()
        behaviour.on_call = lambda: len(behaviour.seen) == 2 and stop.set()
        for index in range(3):
            await queue.enqueue({"url": f"https://site{index}.ca"}, TaskKind.JOB)
        await asyncio.wait_for(dispatcher.run(stop), timeout=5)
        return await queue.counts()

    counts = asyncio.run(scenario())
    assert counts == {"job": {"done": 2, "queued": 1}}


def test_run_worker_recovers_stuck_tasks(database):
    dispatcher, queue, _ = make_dispatcher(database, Behaviour())

    async def scenario():
        await queue.enqueue({"url": "https://acme.ca"}, TaskKind.JOB)
        stuck = await queue.claim_next()
        stop = asyncio.Event()
        stop.set()
        await run_worker(dispatcher, queue, stop=stop, install_signal_handlers=False)
        return await queue.get(stuck.id)

    task = asyncio.run(scenario())
    assert task.status is TaskStatus.QUEUED


@pytest.mark.parametrize("rate", [0.5, 4.0])
def test_minimum_gap_follows_rate(database, rate):
    dispatcher, _, _ = make_dispatcher(database, Behaviour(), rate_limit_per_sec=rate)
    assert dispatcher._min_gap == pytest.approx(1 / rate)
