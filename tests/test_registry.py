import pytest
from pydantic import BaseModel

from discovery.errors import UnknownKind
from discovery.handlers import job, source
from discovery.orchestrator.registry import HandlerSpec, TaskRegistry, build_registry
from discovery.orchestrator.tasks import HandlerResult, TaskKind


class Empty(BaseModel):
    pass


async def noop(task, payload, helpers):
    return HandlerResult()


def full_specs():
    return {kind: HandlerSpec(handler=noop, schema=Empty) for kind in TaskKind}


def test_registry_requires_every_kind():
    specs = full_specs()
    del specs[TaskKind.JOB]
    with pytest.raises(ValueError, match="job"):
        TaskRegistry(specs)


def test_registry_rejects_foreign_kinds():
    specs = full_specs()
    specs["mystery"] = HandlerSpec(handler=noop, schema=Empty)
    with pytest.raises(ValueError, match="mystery"):
        TaskRegistry(specs)


def test_resolve_by_name():
    registry = TaskRegistry(full_specs())
    assert registry.resolve("jobBoard").schema is Empty
    assert set(registry.kinds()) == set(TaskKind)
    with pytest.raises(UnknownKind):
        registry.resolve("mystery")


def test_registry_is_not_mutated_by_its_input():
    specs = full_specs()
    registry = TaskRegistry(specs)
    specs.clear()
    assert registry.resolve(TaskKind.SOURCE.value).handler is noop


def test_build_registry_binds_handler_modules():
    registry = build_registry(deps=None)
    assert registry.resolve("source").schema is source.Payload
    assert registry.resolve("job").schema is job.Payload
    assert registry.resolve("job").handler.keywords == {"deps": None}
