import asyncio

import pytest

from discovery.errors import CallFinalizedError, NotFound
from discovery.orchestrator.calls import CallLog
from discovery.orchestrator.queue import TaskQueue
from discovery.orchestrator.tasks import TaskKind


def test_call_lifecycle(database):
    queue = TaskQueue(database)
    calls = CallLog(database)

    async def scenario():
        task = await queue.enqueue({"url": "https://acme.ca"}, TaskKind.ORGANIZATION)
        call = await calls.create(task)
        updated = await calls.update(call.id, logs=["started"], result={"partial": True})
        final = await calls.finalize(
            call.id,
            usage=[{"model": "m"}],
            logs=["started", "done"],
            result={"ok": True},
            errors=[],
            dropped_children=2,
        )
        return call, updated, final

    call, updated, final = asyncio.run(scenario())
    assert call.payload == {"url": "https://acme.ca"}
    assert not call.finalized
    assert updated.logs == ["started"]
    assert updated.result == {"partial": True}
    assert final.finalized
    assert final.result == {"ok": True}
    assert final.usage == [{"model": "m"}]
    assert final.dropped_children == 2


def test_finalized_call_is_immutable(database):
    queue = TaskQueue(database)
    calls = CallLog(database)

    async def scenario():
        task = await queue.enqueue({}, TaskKind.JOB)
        call = await calls.create(task)
        await calls.finalize(call.id, errors=[])
        with pytest.raises(CallFinalizedError):
            await calls.update(call.id, logs=["late"])
        with pytest.raises(CallFinalizedError):
            await calls.finalize(call.id, errors=[])
        return await calls.get(call.id)

    call = asyncio.run(scenario())
    assert call.logs == []


def test_create_finalized_failure_record(database):
    queue = TaskQueue(database)
    calls = CallLog(database)

    async def scenario():
        task = await queue.enqueue({}, TaskKind.JOB)
        first = await calls.create(task, errors=[{"code": "INVALID_PAYLOAD", "message": "bad"}], finalize=True)
        second = await calls.create(task)
        return task, first, second, await calls.for_task(task.id)

    task, first, second, history = asyncio.run(scenario())
    assert first.finalized
    assert first.errors[0]["code"] == "INVALID_PAYLOAD"
    assert [call.id for call in history] == [first.id, second.id]
    assert all(call.task_id == task.id for call in history)


def test_missing_call(database):
    calls = CallLog(database)
    with pytest.raises(NotFound):
        asyncio.run(calls.get(99))
    with pytest.raises(NotFound):
        asyncio.run(calls.update(99, logs=[]))
