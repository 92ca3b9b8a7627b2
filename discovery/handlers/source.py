"""Seed handler: profile an investor and walk its portfolio page."""
from __future__ import annotations

from pydantic import BaseModel

from discovery.extract import prompts
from discovery.extract.schemas import SourceProfile
from discovery.fetch.freshness import Freshness, content_hash
from discovery.handlers.common import (
    EXPECTED_ERRORS,
    HandlerDeps,
    HttpUrlStr,
    Progress,
    external_links,
    fetch,
    page_excerpt,
)
from discovery.orchestrator.tasks import HandlerHelpers, HandlerResult, Task, TaskKind
from discovery.parse.reconcile import reconcile


class Payload(BaseModel):
    home: HttpUrlStr
    portfolio: HttpUrlStr


async def handle(task: Task, payload: Payload, helpers: HandlerHelpers, *, deps: HandlerDeps) -> HandlerResult:
    progress = Progress("source", task, helpers)
    progress.log(f"home: {payload.home}")
    progress.log(f"portfolio: {payload.portfolio}")
    try:
        home = await fetch(deps, payload.home)
        profile: SourceProfile = progress.track(
            await deps.extractor.extract(
                page_excerpt(home.markdown, deps.settings.reconcile.chunk_chars),
                SourceProfile,
                prompts.SOURCE_PROFILE,
                fast=True,
            )
        )
        source = await deps.entities.upsert_source(
            url=payload.home,
            name=profile.name,
            description=profile.description,
            portfolio=payload.portfolio,
        )
        progress.log(f"Stored source {source['id']} ({profile.name})")
        await progress.checkpoint({"source_id": source["id"]})

        if await deps.freshness.is_fresh(payload.portfolio):
            deps.metrics.incr("fresh_skips")
            return await progress.skip("portfolio is fresh", source_id=source["id"])

        walk = await deps.snapshotter.snapshot(payload.portfolio)
        progress.log(f"Captured {len(walk.snapshots)} portfolio snapshots ({walk.stop_reason})")
        document = reconcile(
            walk.snapshots,
            dedup=deps.settings.reconcile.dedup,
            probe_chars=deps.settings.reconcile.append_probe_chars,
        )
        digest = content_hash(document)
        ttl = deps.settings.freshness.ttl("portfolio")
        if await deps.freshness.assess(payload.portfolio, digest) is Freshness.UNCHANGED:
            deps.metrics.incr("unchanged_skips")
            await deps.freshness.record_fetch(payload.portfolio, digest, ttl)
            return await progress.skip("portfolio unchanged", source_id=source["id"])

        candidates = external_links(walk.links, payload.home, payload.portfolio)
        cap = deps.settings.discovery.portfolio_links
        links = candidates[:cap]
        progress.log(f"Found {len(candidates)} outbound portfolio links, keeping {len(links)}")
        if links:
            progress.child(TaskKind.PORTFOLIO_LINKS, {"source_id": source["id"], "links": links})
        await deps.freshness.record_fetch(payload.portfolio, digest, ttl)
        return await progress.succeed(
            {
                "source_id": source["id"],
                "snapshots": len(walk.snapshots),
                "links_found": len(candidates),
                "links_queued": len(links),
            }
        )
    except EXPECTED_ERRORS as exc:
        return await progress.fail(exc)
