"""Pagination walk producing one content snapshot per page state."""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, AsyncContextManager, Callable, List, Optional, Protocol

import structlog

from discovery.config import SnapshotSettings
from discovery.fetch.freshness import content_hash
from discovery.observability.metrics import MetricsRegistry
from discovery.observability.tracing import span
from discovery.parse.links import extract_links, merge_links
from discovery.parse.markdown import html_to_markdown
from discovery.parse.pagination import build_pagination_selector

LOGGER = structlog.get_logger(__name__)


@dataclass(slots=True)
class ContentSnapshot:
    """One captured state of a page during a pagination walk."""

    page_index: int
    url: str
    html: str
    markdown: str

    @property
    def text(self) -> str:
        return self.markdown


@dataclass
class Affordance:
    """A located "next" or "load more" control."""

    handle: Any
    disabled: bool = False
    label: str = ""


class PageDriver(Protocol):
    """Browser operations the walk relies on."""

    async def capture(self, content_selector: str) -> str: ...

    async def find_next(self, selector: str) -> Optional[Affordance]: ...

    async def activate(self, affordance: Affordance) -> None: ...

    async def wait_for_change(self, content_selector: str, previous_html: str, timeout_ms: int) -> bool: ...

    async def settle(self, delay_ms: int) -> None: ...


@dataclass
class WalkResult:
    snapshots: List[ContentSnapshot]
    stop_reason: str


async def _advance(driver: PageDriver, selector: str, previous_html: str, config: SnapshotSettings) -> Optional[str]:
    """Activate the pagination control; returns a stop reason when there is nothing to advance."""
    affordance = await driver.find_next(selector)
    if affordance is None:
        return "no_affordance"
    if affordance.disabled:
        return "affordance_disabled"
    await driver.activate(affordance)
    changed = await driver.wait_for_change(config.content_selector, previous_html, config.change_timeout_ms)
    if not changed:
        LOGGER.info("pagination_no_change", label=affordance.label)
    await driver.settle(config.post_click_delay_ms)
    return None


def _timeout_reason(walk_left: float, iteration_left: float) -> str:
    return "walk_timeout" if walk_left <= iteration_left else "iteration_timeout"


async def walk_pagination(
    driver: PageDriver,
    config: SnapshotSettings,
    *,
    url: str,
    clock: Callable[[], float] = time.monotonic,
) -> WalkResult:
    """Capture the page, advance through its pagination and capture again until a stop condition.

    Identical consecutive captures are counted but not kept; the walk stops once
    ``stable_captures`` of them happen in a row. Timeouts end the walk with the
    snapshots captured so far, and both the capture and the advance of an
    iteration count against the budgets.
    """
    selector = build_pagination_selector(config.pagination_selector)
    walk_budget = config.walk_timeout_ms / 1000
    iteration_budget = config.iteration_timeout_ms / 1000
    walk_started = clock()
    snapshots: List[ContentSnapshot] = []
    previous_hash: Optional[str] = None
    identical = 0

    while True:
        iteration_started = clock()
        walk_left = walk_budget - (iteration_started - walk_started)
        if walk_left <= 0:
            return WalkResult(snapshots, "walk_timeout")
        try:
            html = await asyncio.wait_for(
                driver.capture(config.content_selector),
                timeout=min(walk_left, iteration_budget),
            )
        except asyncio.TimeoutError:
            return WalkResult(snapshots, _timeout_reason(walk_left, iteration_budget))
        markdown = html_to_markdown(html, base_url=url)
        digest = content_hash(markdown)
        if digest == previous_hash:
            identical += 1
            if identical + 1 >= config.stable_captures:
                return WalkResult(snapshots, "stable")
        else:
            identical = 0
            previous_hash = digest
            snapshots.append(ContentSnapshot(page_index=len(snapshots), url=url, html=html, markdown=markdown))
            if len(snapshots) >= config.max_snapshots:
                return WalkResult(snapshots, "max_snapshots")

        now = clock()
        walk_left = walk_budget - (now - walk_started)
        iteration_left = iteration_budget - (now - iteration_started)
        if walk_left <= 0:
            return WalkResult(snapshots, "walk_timeout")
        if iteration_left <= 0:
            return WalkResult(snapshots, "iteration_timeout")
        try:
            stop_reason = await asyncio.wait_for(
                _advance(driver, selector, html, config),
                timeout=min(walk_left, iteration_left),
            )
        except asyncio.TimeoutError:
            stop_reason = _timeout_reason(walk_left, iteration_left)
        if stop_reason is not None:
            return WalkResult(snapshots, stop_reason)


@dataclass
class SnapshotResult:
    url: str
    snapshots: List[ContentSnapshot] = field(default_factory=list)
    links: List[str] = field(default_factory=list)
    stop_reason: str = ""


DriverFactory = Callable[[str, SnapshotSettings], AsyncContextManager[PageDriver]]


class Snapshotter:
    """Loads a URL in a browser page and walks its pagination."""

    def __init__(
        self,
        settings: SnapshotSettings,
        driver_factory: DriverFactory,
        *,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self._settings = settings
        self._driver_factory = driver_factory
        self._metrics = metrics or MetricsRegistry()

    async def snapshot(self, url: str, config: Optional[SnapshotSettings] = None) -> SnapshotResult:
        config = config or self._settings
        with span(name="snapshot", url=url):
            async with self._driver_factory(url, config) as driver:
                walk = await walk_pagination(driver, config, url=url)
        self._metrics.incr("pages_fetched", len(walk.snapshots))
        links = merge_links(*(extract_links(item.html, url) for item in walk.snapshots))
        LOGGER.info(
            "snapshot_complete",
            url=url,
            snapshots=len(walk.snapshots),
            links=len(links),
            stop_reason=walk.stop_reason,
        )
        return SnapshotResult(url=url, snapshots=walk.snapshots, links=links, stop_reason=walk.stop_reason)
