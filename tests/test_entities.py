import asyncio

import pytest

from discovery.errors import NotFound
from discovery.storage.entities import EntityStore


def test_upserts_are_keyed_by_url(database):
    store = EntityStore(database)

    async def scenario():
        source = await store.upsert_source(url="https://vc.ca", name="Maple", portfolio="https://vc.ca/portfolio")
        first = await store.upsert_organization(
            url="https://acme.ca", name="Acme", careers_page="https://acme.ca/careers", source_id=source["id"]
        )
        second = await store.upsert_organization(url="https://acme.ca", name="Acme Robotics", city="Toronto")
        return first, second, await store.count("organizations"), await store.get_organization(first["id"])

    first, second, count, stored = asyncio.run(scenario())
    assert second["id"] == first["id"]
    assert count == 1
    assert stored["name"] == "Acme Robotics"
    assert stored["city"] == "Toronto"
    # Missing optional links do not erase what an earlier run found.
    assert stored["careers_page"] == "https://acme.ca/careers"
    assert stored["source_id"] == first["source_id"]
    assert stored["description"] == ""


def test_jobs_store_remote_flag_as_integer(database):
    store = EntityStore(database)

    async def scenario():
        await store.upsert_job(url="https://acme.ca/jobs/1", title="Engineer", company="Acme", remote_ok=True)
        await store.upsert_job(url="https://acme.ca/jobs/2", title="Designer", company="Acme")
        return await store.list("jobs")

    jobs = asyncio.run(scenario())
    assert [job["remote_ok"] for job in jobs] == [1, 0]


def test_list_respects_limit(database):
    store = EntityStore(database)

    async def scenario():
        for index in range(3):
            await store.upsert_job_board(url=f"https://jobs{index}.ca", name=f"Board {index}")
        return await store.list("job_boards", limit=2)

    boards = asyncio.run(scenario())
    assert [board["name"] for board in boards] == ["Board 0", "Board 1"]


def test_unknown_table_and_missing_row(database):
    store = EntityStore(database)
    with pytest.raises(ValueError):
        asyncio.run(store.list("tasks"))
    with pytest.raises(ValueError):
        asyncio.run(store.count("freshness"))
    with pytest.raises(NotFound):
        asyncio.run(store.get_organization(7))
