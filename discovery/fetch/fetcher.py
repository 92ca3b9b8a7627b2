"""Page fetching with robots checks, bounded retries and metrics."""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx
import structlog

from discovery.errors import FetchError
from discovery.fetch.freshness import content_hash
from discovery.fetch.robots import RobotsCache
from discovery.fetch.session import CrawlSession
from discovery.observability.metrics import MetricsRegistry
from discovery.observability.tracing import log_fetch_result, log_retry, span
from discovery.parse.links import extract_links
from discovery.parse.markdown import html_to_markdown

LOGGER = structlog.get_logger(__name__)


@dataclass
class PageResult:
    """A fetched page in the shapes handlers need."""

    url: str
    status: int
    markup: str
    markdown: str
    links: List[str] = field(default_factory=list)
    content_hash: str = ""
    headers: Dict[str, str] = field(default_factory=dict)


async def _do_fetch(
    session: CrawlSession,
    url: str,
    *,
    timeout: float,
    metrics: MetricsRegistry,
    max_attempts: int,
    backoff: float,
) -> httpx.Response:
    delay = backoff
    for attempt in range(1, max_attempts + 1):
        try:
            with span(name="fetch", url=url):
                start = time.perf_counter()
                response = await session.fetch(url, timeout=timeout)
            elapsed_ms = int((time.perf_counter() - start) * 1000)
            log_fetch_result(
                url=url,
                status=response.status_code,
                bytes_read=len(response.content or b""),
                elapsed_ms=elapsed_ms,
            )
            return response
        except httpx.HTTPError as exc:
            metrics.incr("retries")
            log_retry(attempt, url=url, reason=str(exc))
            if attempt == max_attempts:
                raise FetchError(f"Fetching {url} failed", meta={"url": url, "reason": str(exc)}) from exc
            await asyncio.sleep(delay)
            delay *= 2
    raise FetchError(f"Fetching {url} was not attempted", meta={"url": url})


async def fetch_page(
    session: CrawlSession,
    url: str,
    *,
    metrics: MetricsRegistry,
    robots: Optional[RobotsCache] = None,
    timeout: float = 30.0,
    max_attempts: int = 4,
    backoff: float = 1.0,
) -> PageResult:
    """Fetch one URL and return its markup, markdown, links and content hash.

    Raises :class:`FetchError` when robots.txt disallows the URL, the transport
    keeps failing, or the server answers with a non-success status.
    """
    if robots is not None and not await robots.allowed(url):
        LOGGER.info("robots_disallow", url=url)
        metrics.incr("robots_disallow")
        raise FetchError(f"robots.txt disallows {url}", meta={"url": url, "reason": "robots"})

    response = await _do_fetch(session, url, timeout=timeout, metrics=metrics, max_attempts=max_attempts, backoff=backoff)

    metrics.incr("pages_fetched")
    metrics.incr(f"http_{response.status_code // 100}xx")
    if response.status_code >= 400:
        raise FetchError(
            f"{url} answered with HTTP {response.status_code}",
            meta={"url": url, "status": response.status_code},
        )

    final_url = str(response.url) if response.url else url
    if final_url.startswith("file:"):
        final_url = url
    markup = response.text
    markdown = html_to_markdown(markup, base_url=final_url)
    return PageResult(
        url=final_url,
        status=response.status_code,
        markup=markup,
        markdown=markdown,
        links=extract_links(markup, final_url),
        content_hash=content_hash(markdown),
        headers=dict(response.headers),
    )
