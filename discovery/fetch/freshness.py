"""Per-URL change detection: content hash plus a fresh-until deadline."""
from __future__ import annotations

import asyncio
import enum
import hashlib
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog

from discovery.storage.database import Database, first_row, from_timestamp, to_timestamp, utcnow

LOGGER = structlog.get_logger(__name__)


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class Freshness(str, enum.Enum):
    FRESH = "fresh"
    UNCHANGED = "unchanged"
    CHANGED = "changed"


@dataclass
class FreshnessRecord:
    url: str
    content_hash: str
    fresh_until: datetime
    last_checked_at: datetime
    last_fetched_at: datetime


def _row_to_record(row: sqlite3.Row) -> FreshnessRecord:
    return FreshnessRecord(
        url=row["url"],
        content_hash=row["content_hash"],
        fresh_until=from_timestamp(row["fresh_until"]),
        last_checked_at=from_timestamp(row["last_checked_at"]),
        last_fetched_at=from_timestamp(row["last_fetched_at"]),
    )


class FreshnessCache:
    """Three-tier gate deciding whether a URL needs re-extraction.

    * fresh: ``now <= fresh_until``, skip entirely;
    * unchanged: TTL lapsed but the probed hash matches, only extend the TTL;
    * changed: hash differs or the URL was never seen, re-extract.
    """

    def __init__(self, database: Database, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._db = database
        self._clock = clock

    def _get(self, url: str) -> Optional[FreshnessRecord]:
        with self._db.connect() as connection:
            row = first_row(connection.execute("SELECT * FROM freshness WHERE url = ?", (url,)))
        return _row_to_record(row) if row is not None else None

    async def get(self, url: str) -> Optional[FreshnessRecord]:
        return await asyncio.to_thread(self._get, url)

    async def is_fresh(self, url: str) -> bool:
        record = await self.get(url)
        return record is not None and self._clock() <= record.fresh_until

    def _record_fetch(self, url: str, digest: str, ttl: timedelta) -> FreshnessRecord:
        now = self._clock()
        stamp = to_timestamp(now)
        with self._db.transaction() as connection:
            row = first_row(
                connection.execute(
                    """
                    INSERT INTO freshness (url, content_hash, fresh_until, last_checked_at, last_fetched_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(url) DO UPDATE SET
                        content_hash=excluded.content_hash,
                        fresh_until=excluded.fresh_until,
                        last_checked_at=excluded.last_checked_at,
                        last_fetched_at=excluded.last_fetched_at
                    RETURNING *
                    """,
                    (url, digest, to_timestamp(now + ttl), stamp, stamp),
                )
            )
        return _row_to_record(row)

    async def record_fetch(self, url: str, digest: str, ttl: timedelta) -> FreshnessRecord:
        """Store the hash of a successful fetch and extend ``fresh_until`` to now + ttl."""
        record = await asyncio.to_thread(self._record_fetch, url, digest, ttl)
        LOGGER.info("freshness_recorded", url=url, fresh_until=to_timestamp(record.fresh_until))
        return record

    async def hash_unchanged(self, url: str, new_hash: str) -> bool:
        record = await self.get(url)
        return record is not None and record.content_hash == new_hash

    def _touch(self, url: str) -> None:
        with self._db.transaction() as connection:
            connection.execute(
                "UPDATE freshness SET last_checked_at = ? WHERE url = ?",
                (to_timestamp(self._clock()), url),
            )

    async def touch(self, url: str) -> None:
        """Note a check that did not refetch the content."""
        await asyncio.to_thread(self._touch, url)

    async def assess(self, url: str, new_hash: Optional[str] = None) -> Freshness:
        record = await self.get(url)
        if record is None:
            return Freshness.CHANGED
        if self._clock() <= record.fresh_until:
            return Freshness.FRESH
        if new_hash is not None and record.content_hash == new_hash:
            return Freshness.UNCHANGED
        return Freshness.CHANGED

    def _purge(self, url: Optional[str]) -> int:
        with self._db.transaction() as connection:
            if url is None:
                return connection.execute("DELETE FROM freshness").rowcount
            return connection.execute("DELETE FROM freshness WHERE url = ?", (url,)).rowcount

    async def purge(self, url: Optional[str] = None) -> int:
        """Delete one record, or every record when ``url`` is omitted."""
        return await asyncio.to_thread(self._purge, url)
