import asyncio
from datetime import datetime, timedelta, timezone

from discovery.fetch.freshness import Freshness, FreshnessCache, content_hash

URL = "https://acme.ca"


class Clock:
    def __init__(self):
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **delta):
        self.now += timedelta(**delta)


def test_content_hash_is_stable_sha256():
    assert content_hash("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    assert content_hash("abc") != content_hash("abd")


def test_fresh_until_follows_ttl(database):
    clock = Clock()
    cache = FreshnessCache(database, clock=clock)

    async def scenario():
        record = await cache.record_fetch(URL, "h1", timedelta(hours=24))
        fresh_now = await cache.is_fresh(URL)
        clock.advance(hours=24)
        fresh_at_deadline = await cache.is_fresh(URL)
        clock.advance(seconds=1)
        fresh_after = await cache.is_fresh(URL)
        return record, fresh_now, fresh_at_deadline, fresh_after

    record, fresh_now, fresh_at_deadline, fresh_after = asyncio.run(scenario())
    assert record.fresh_until == datetime(2024, 5, 2, 12, 0, tzinfo=timezone.utc)
    assert fresh_now and fresh_at_deadline
    assert not fresh_after


def test_assess_tiers(database):
    clock = Clock()
    cache = FreshnessCache(database, clock=clock)

    async def scenario():
        never_seen = await cache.assess(URL, "h1")
        await cache.record_fetch(URL, "h1", timedelta(hours=1))
        fresh = await cache.assess(URL, "other")
        clock.advance(hours=2)
        unchanged = await cache.assess(URL, "h1")
        changed = await cache.assess(URL, "h2")
        without_hash = await cache.assess(URL)
        return never_seen, fresh, unchanged, changed, without_hash

    assert asyncio.run(scenario()) == (
        Freshness.CHANGED,
        Freshness.FRESH,
        Freshness.UNCHANGED,
        Freshness.CHANGED,
        Freshness.CHANGED,
    )


def test_record_fetch_overwrites_hash_and_deadline(database):
    clock = Clock()
    cache = FreshnessCache(database, clock=clock)

    async def scenario():
        await cache.record_fetch(URL, "h1", timedelta(hours=1))
        clock.advance(hours=5)
        await cache.record_fetch(URL, "h2", timedelta(hours=1))
        return await cache.get(URL), await cache.hash_unchanged(URL, "h2"), await cache.hash_unchanged(URL, "h1")

    record, same, stale = asyncio.run(scenario())
    assert record.content_hash == "h2"
    assert record.fresh_until == clock.now + timedelta(hours=1)
    assert same and not stale


def test_touch_only_moves_last_checked(database):
    clock = Clock()
    cache = FreshnessCache(database, clock=clock)

    async def scenario():
        await cache.record_fetch(URL, "h1", timedelta(hours=1))
        clock.advance(minutes=30)
        await cache.touch(URL)
        return await cache.get(URL)

    record = asyncio.run(scenario())
    assert record.last_checked_at == clock.now
    assert record.last_fetched_at == clock.now - timedelta(minutes=30)


def test_purge(database):
    cache = FreshnessCache(database)

    async def scenario():
        for url in (URL, "https://beta.ca", "https://gamma.ca"):
            await cache.record_fetch(url, "h", timedelta(hours=1))
        one = await cache.purge(URL)
        rest = await cache.purge()
        return one, rest, await cache.get("https://beta.ca")

    one, rest, record = asyncio.run(scenario())
    assert (one, rest) == (1, 2)
    assert record is None
