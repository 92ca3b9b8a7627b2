import asyncio
import contextlib
import time

import pytest

from discovery.config import SnapshotSettings
from discovery.fetch.snapshot import Affordance, Snapshotter, walk_pagination
from discovery.observability.metrics import MetricsRegistry

URL = "https://dir.ca/companies"


def page(number, link=None):
    anchor = f'<a href="{link}">Company {number}</a>' if link else ""
    return f"<body><h2>Page {number}</h2><p>Listing {number}</p>{anchor}</body>"


class FakeDriver:
    """Serves a fixed list of page states; activating the control moves to the next one."""

    def __init__(self, pages, *, disable_at_end=False, stuck=False, hang=False, hang_capture_at=None):
        self.pages = pages
        self.index = 0
        self.disable_at_end = disable_at_end
        self.stuck = stuck
        self.hang = hang
        self.hang_capture_at = hang_capture_at
        self.activations = 0
        self.captures = 0

    async def capture(self, content_selector):
        self.captures += 1
        if self.captures == self.hang_capture_at:
            await asyncio.sleep(10)
        return self.pages[self.index]

    async def find_next(self, selector):
        if self.index >= len(self.pages) - 1:
            return Affordance(handle=None, disabled=True) if self.disable_at_end else None
        return Affordance(handle=self.index, label="Next")

    async def activate(self, affordance):
        self.activations += 1
        if self.hang:
            await asyncio.sleep(10)
        if not self.stuck:
            self.index += 1

    async def wait_for_change(self, content_selector, previous_html, timeout_ms):
        return self.pages[self.index] != previous_html

    async def settle(self, delay_ms):
        return None


def settings(**overrides):
    values = {"post_click_delay_ms": 0, "change_timeout_ms": 0}
    values.update(overrides)
    return SnapshotSettings(**values)


def test_walk_stops_without_affordance():
    driver = FakeDriver([page(1), page(2)])
    walk = asyncio.run(walk_pagination(driver, settings(), url=URL))
    assert walk.stop_reason == "no_affordance"
    assert [item.page_index for item in walk.snapshots] == [0, 1]
    assert walk.snapshots[1].markdown == "## Page 2\n\nListing 2"


def test_walk_stops_on_disabled_affordance():
    driver = FakeDriver([page(1), page(2)], disable_at_end=True)
    walk = asyncio.run(walk_pagination(driver, settings(), url=URL))
    assert walk.stop_reason == "affordance_disabled"
    assert len(walk.snapshots) == 2


def test_walk_caps_snapshots():
    driver = FakeDriver([page(number) for number in range(10)])
    walk = asyncio.run(walk_pagination(driver, settings(max_snapshots=3), url=URL))
    assert walk.stop_reason == "max_snapshots"
    assert len(walk.snapshots) == 3
    assert driver.activations == 2


def test_walk_detects_stable_content():
    driver = FakeDriver([page(1), page(2)], stuck=True)
    walk = asyncio.run(walk_pagination(driver, settings(stable_captures=3), url=URL))
    assert walk.stop_reason == "stable"
    assert len(walk.snapshots) == 1
    assert driver.activations == 2


def test_walk_respects_overall_budget():
    ticks = iter(range(0, 1000, 10))
    driver = FakeDriver([page(number) for number in range(10)])
    walk = asyncio.run(
        walk_pagination(driver, settings(walk_timeout_ms=15000), url=URL, clock=lambda: float(next(ticks)))
    )
    assert walk.stop_reason == "walk_timeout"
    assert len(walk.snapshots) == 1


def test_walk_bounds_each_iteration():
    driver = FakeDriver([page(1), page(2)], hang=True)
    walk = asyncio.run(walk_pagination(driver, settings(iteration_timeout_ms=50), url=URL))
    assert walk.stop_reason == "iteration_timeout"
    assert len(walk.snapshots) == 1


@pytest.mark.parametrize(
    ("budgets", "reason"),
    [
        ({"iteration_timeout_ms": 100, "walk_timeout_ms": 5000}, "iteration_timeout"),
        ({"iteration_timeout_ms": 5000, "walk_timeout_ms": 150}, "walk_timeout"),
    ],
)
def test_walk_bounds_a_hanging_capture(budgets, reason):
    driver = FakeDriver([page(1), page(2)], hang_capture_at=2)
    started = time.monotonic()
    walk = asyncio.run(walk_pagination(driver, settings(**budgets), url=URL))
    assert time.monotonic() - started < 2
    assert walk.stop_reason == reason
    assert len(walk.snapshots) == 1


def test_snapshotter_merges_links_across_snapshots():
    driver = FakeDriver([page(1, "https://acme.ca"), page(2, "https://beta.ca"), page(3, "https://acme.ca")])
    opened = []

    @contextlib.asynccontextmanager
    async def factory(url, config):
        opened.append(url)
        yield driver

    metrics = MetricsRegistry()
    result = asyncio.run(Snapshotter(settings(), factory, metrics=metrics).snapshot(URL))
    assert opened == [URL]
    assert result.stop_reason == "no_affordance"
    assert len(result.snapshots) == 3
    assert result.links == ["https://acme.ca", "https://beta.ca"]
    assert metrics.get("pages_fetched") == 3
