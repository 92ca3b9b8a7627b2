"""Collaborators and bookkeeping shared by every task handler."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional, Sequence
from urllib.parse import urlparse

import httpx
import structlog
from pydantic import AfterValidator, BaseModel, Field

from discovery.config import PipelineSettings
from discovery.errors import PipelineError, error_entry
from discovery.extract.client import Extraction, Extractor
from discovery.fetch.fetcher import PageResult, fetch_page
from discovery.fetch.freshness import Freshness, FreshnessCache, content_hash
from discovery.fetch.robots import RobotsCache
from discovery.fetch.session import CrawlSession
from discovery.fetch.snapshot import Snapshotter
from discovery.observability.metrics import MetricsRegistry
from discovery.orchestrator.tasks import ChildTask, HandlerHelpers, HandlerResult, Task, TaskKind
from discovery.parse.chunking import chunk_document
from discovery.storage.database import utcnow
from discovery.storage.entities import EntityStore

LOGGER = structlog.get_logger(__name__)

# Failures a handler reports as structured, retryable errors. Anything else is a bug and propagates.
EXPECTED_ERRORS = (PipelineError, httpx.HTTPError)

_SOCIAL_HOSTS = (
    "linkedin.com",
    "twitter.com",
    "x.com",
    "facebook.com",
    "instagram.com",
    "youtube.com",
    "medium.com",
    "github.com",
    "crunchbase.com",
)


def is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _http_url(value: str) -> str:
    if not is_http_url(value):
        raise ValueError(f"not an absolute http(s) URL: {value!r}")
    return value


HttpUrlStr = Annotated[str, AfterValidator(_http_url)]


def host_of(url: str) -> str:
    host = urlparse(url).netloc.lower()
    return host[4:] if host.startswith("www.") else host


def is_social(url: str) -> bool:
    host = host_of(url)
    return any(host == item or host.endswith("." + item) for item in _SOCIAL_HOSTS)


def external_links(links: Sequence[str], *own_urls: str) -> List[str]:
    """Links that leave the given sites, minus social profiles."""
    own_hosts = {host_of(url) for url in own_urls}
    return [link for link in links if host_of(link) not in own_hosts and not is_social(link)]


def page_excerpt(markdown: str, max_chars: int) -> str:
    """Leading part of ``markdown`` within ``max_chars``, cut at a heading boundary where possible."""
    if len(markdown) <= max_chars:
        return markdown
    if max_chars < 64:
        return markdown[:max_chars]
    chunks = chunk_document(markdown, max_chars)
    return chunks[0] if chunks else ""


def link_batches(links: Sequence[str], max_chars: int) -> List[List[str]]:
    """Split ``links`` into runs whose numbered listing fits ``max_chars``; longer links are dropped."""
    batches: List[List[str]] = []
    current: List[str] = []
    size = 0
    for link in links:
        line = len(f"{len(current) + 1}. {link}") + (1 if current else 0)
        if current and size + line > max_chars:
            batches.append(current)
            current, size = [], 0
            line = len(f"1. {link}")
        if line > max_chars:
            LOGGER.warning("link_too_long", link=link[:200], max_chars=max_chars)
            continue
        current.append(link)
        size += line
    if current:
        batches.append(current)
    return batches


class PreFetched(BaseModel):
    """Page content fetched by a parent task and handed to its child."""

    url: str
    markdown: str = ""
    links: List[str] = Field(default_factory=list)
    pulled_at: datetime
    fresh_until: datetime

    def usable(self, now: Optional[datetime] = None) -> bool:
        return bool(self.markdown) and (now or utcnow()) <= self.fresh_until

    def to_page(self) -> PageResult:
        return PageResult(
            url=self.url,
            status=200,
            markup="",
            markdown=self.markdown,
            links=list(self.links),
            content_hash=content_hash(self.markdown),
        )


@dataclass
class HandlerDeps:
    settings: PipelineSettings
    session: CrawlSession
    freshness: FreshnessCache
    snapshotter: Snapshotter
    extractor: Extractor
    entities: EntityStore
    metrics: MetricsRegistry
    robots: Optional[RobotsCache] = None


async def fetch(deps: HandlerDeps, url: str) -> PageResult:
    fetch_settings = deps.settings.fetch
    return await fetch_page(
        deps.session,
        url,
        metrics=deps.metrics,
        robots=deps.robots if fetch_settings.respect_robots else None,
        timeout=fetch_settings.timeout_seconds,
        max_attempts=fetch_settings.max_attempts,
    )


async def prefetch(deps: HandlerDeps, url: str, source_type: str) -> PreFetched:
    """Fetch ``url`` for a child task; the copy stays usable for that source type's TTL."""
    page = await fetch(deps, url)
    now = utcnow()
    return PreFetched(
        url=url,
        markdown=page.markdown,
        links=page.links,
        pulled_at=now,
        fresh_until=now + deps.settings.freshness.ttl(source_type),
    )


@dataclass
class GateOutcome:
    verdict: Freshness
    page: Optional[PageResult] = None

    @property
    def changed_page(self) -> Optional[PageResult]:
        """The fetched page when it needs extracting, otherwise None."""
        return self.page if self.verdict is Freshness.CHANGED else None


async def freshness_gate(
    deps: HandlerDeps,
    url: str,
    source_type: str,
    pre_fetched: Optional[PreFetched] = None,
) -> GateOutcome:
    """Decide between skip, refresh-only and re-extract for ``url``.

    A fresh URL is not fetched at all. Otherwise the page is taken from the
    pre-fetched copy when still usable, or fetched, and its hash compared with
    the stored one; an identical hash only extends the TTL.
    """
    if await deps.freshness.is_fresh(url):
        deps.metrics.incr("fresh_skips")
        return GateOutcome(Freshness.FRESH)
    if pre_fetched is not None and pre_fetched.usable():
        page = pre_fetched.to_page()
    else:
        page = await fetch(deps, url)
    verdict = await deps.freshness.assess(url, page.content_hash)
    if verdict is Freshness.UNCHANGED:
        deps.metrics.incr("unchanged_skips")
        await deps.freshness.record_fetch(url, page.content_hash, deps.settings.freshness.ttl(source_type))
    return GateOutcome(verdict, page)


class Progress:
    """Collects logs, usage and children for one handler run and mirrors them into its Call."""

    def __init__(self, name: str, task: Task, helpers: HandlerHelpers) -> None:
        self._helpers = helpers
        self.logs: List[str] = [f"{name}: started", f"task_id: {task.id}", f"call_id: {helpers.call_id}"]
        self.usage: List[Dict[str, Any]] = []
        self.children: List[ChildTask] = []

    def log(self, line: str) -> None:
        self.logs.append(line)

    def track(self, extraction: Extraction) -> Any:
        self.usage.append(extraction.usage)
        return extraction.value

    def child(self, kind: TaskKind, payload: Dict[str, Any]) -> None:
        self.children.append(ChildTask(kind=kind, payload=payload))

    async def checkpoint(self, result: Any = None) -> None:
        await self._helpers.update_call(usage=self.usage, logs=self.logs, result=result)

    async def succeed(self, result: Dict[str, Any]) -> HandlerResult:
        await self._helpers.update_call(usage=self.usage, logs=self.logs, result=result, errors=[])
        return HandlerResult(usage=self.usage, logs=self.logs, result=result, errors=[], child_tasks=self.children)

    async def fail(self, exc: BaseException) -> HandlerResult:
        """Turn an expected failure into a structured, retryable error."""
        LOGGER.warning("handler_failed", error=str(exc), error_type=type(exc).__name__)
        self.log(f"Error: {exc}")
        errors = [error_entry(exc)]
        await self._helpers.update_call(usage=self.usage, logs=self.logs, result=None, errors=errors)
        return HandlerResult(usage=self.usage, logs=self.logs, result=None, errors=errors)

    async def skip(self, reason: str, **result: Any) -> HandlerResult:
        self.log(f"Skipped: {reason}")
        return await self.succeed({"skipped": reason, **result})
