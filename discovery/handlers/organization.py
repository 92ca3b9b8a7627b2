"""Profile one company from its home page and queue its careers page."""
from __future__ import annotations

from typing import Optional
from urllib.parse import urljoin

from pydantic import BaseModel

from discovery.extract import prompts
from discovery.extract.schemas import OrganizationProfile
from discovery.handlers.common import (
    EXPECTED_ERRORS,
    HandlerDeps,
    HttpUrlStr,
    PreFetched,
    Progress,
    freshness_gate,
    is_http_url,
    link_batches,
    page_excerpt,
)
from discovery.orchestrator.tasks import HandlerHelpers, HandlerResult, Task, TaskKind

LINKS_HEADER = "\n\nLinks:\n"


class Payload(BaseModel):
    url: HttpUrlStr
    source_id: Optional[int] = None
    pre_fetched: Optional[PreFetched] = None


async def handle(task: Task, payload: Payload, helpers: HandlerHelpers, *, deps: HandlerDeps) -> HandlerResult:
    progress = Progress("organization", task, helpers)
    progress.log(f"url: {payload.url}")
    try:
        gate = await freshness_gate(deps, payload.url, "organization", payload.pre_fetched)
        page = gate.changed_page
        if page is None:
            return await progress.skip(f"organization {gate.verdict.value}", url=payload.url)
        source = "pre-fetched copy" if payload.pre_fetched is not None and payload.pre_fetched.usable() else "fresh fetch"
        progress.log(f"Using {source} ({len(page.markdown)} chars)")

        header = f"URL: {payload.url}\n\n"
        budget = max(deps.settings.reconcile.chunk_chars - len(header) - len(LINKS_HEADER), 2)
        excerpt = page_excerpt(page.markdown, budget // 2)
        batches = link_batches(page.links, budget - len(excerpt))
        links = batches[0] if batches else []
        if len(links) < len(page.links):
            progress.log(f"Showing {len(links)} of {len(page.links)} links to the extractor")
        document = f"{header}{excerpt}{LINKS_HEADER}{prompts.numbered_links(links)}"
        profile: OrganizationProfile = progress.track(
            await deps.extractor.extract(document, OrganizationProfile, prompts.ORGANIZATION_PROFILE)
        )
        careers_page = urljoin(payload.url, profile.careers_page) if profile.careers_page else None
        if careers_page and not is_http_url(careers_page):
            progress.log(f"Ignoring careers page {careers_page}")
            careers_page = None
        organization = await deps.entities.upsert_organization(
            url=payload.url,
            name=profile.name,
            city=profile.city,
            province=profile.province,
            description=profile.description,
            careers_page=careers_page,
            industry=profile.industry,
            source_id=payload.source_id,
        )
        progress.log(f"Stored organization {organization['id']} ({profile.name})")
        await progress.checkpoint({"organization_id": organization["id"]})

        if careers_page:
            progress.child(
                TaskKind.JOB_BOARD,
                {
                    "organization_id": organization["id"],
                    "careers_url": careers_page,
                    "company_name": profile.name,
                },
            )
            progress.log(f"Queued jobBoard for {careers_page}")
        else:
            progress.log("No careers page found")

        await deps.freshness.record_fetch(payload.url, page.content_hash, deps.settings.freshness.ttl("organization"))
        return await progress.succeed(
            {"organization_id": organization["id"], "name": profile.name, "careers_page": careers_page}
        )
    except EXPECTED_ERRORS as exc:
        return await progress.fail(exc)
