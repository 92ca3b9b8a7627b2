"""Find job postings on a company's careers page."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel

from discovery.extract import prompts
from discovery.extract.schemas import JobLinkEvaluations
from discovery.handlers.common import (
    EXPECTED_ERRORS,
    HandlerDeps,
    HttpUrlStr,
    PreFetched,
    Progress,
    freshness_gate,
    host_of,
    is_social,
    link_batches,
    page_excerpt,
    prefetch,
)
from discovery.orchestrator.tasks import HandlerHelpers, HandlerResult, Task, TaskKind

LINKS_HEADER = "\n\nLinks:\n"


class Payload(BaseModel):
    careers_url: HttpUrlStr
    organization_id: Optional[int] = None
    company_name: Optional[str] = None
    pre_fetched: Optional[PreFetched] = None


async def handle(task: Task, payload: Payload, helpers: HandlerHelpers, *, deps: HandlerDeps) -> HandlerResult:
    progress = Progress("jobBoard", task, helpers)
    progress.log(f"careers_url: {payload.careers_url}")
    company_name = payload.company_name or host_of(payload.careers_url)
    progress.log(f"company: {company_name}")
    try:
        gate = await freshness_gate(deps, payload.careers_url, "job_board", payload.pre_fetched)
        page = gate.changed_page
        if page is None:
            return await progress.skip(f"job board {gate.verdict.value}", careers_url=payload.careers_url)

        board = await deps.entities.upsert_job_board(
            url=payload.careers_url,
            name=f"{company_name} careers",
            organization_id=payload.organization_id,
        )
        progress.log(f"Stored job board {board['id']}")

        candidates = [link for link in page.links if link != payload.careers_url and not is_social(link)]
        queued: List[str] = []
        if candidates:
            budget = max(deps.settings.reconcile.chunk_chars - len(LINKS_HEADER), 2)
            excerpt = page_excerpt(page.markdown, budget // 2)
            batches = link_batches(candidates, budget - len(excerpt))
            postings: List[str] = []
            for batch in batches:
                verdicts: JobLinkEvaluations = progress.track(
                    await deps.extractor.extract(
                        f"{excerpt}{LINKS_HEADER}{prompts.numbered_links(batch)}",
                        JobLinkEvaluations,
                        prompts.job_link_filter(company_name),
                        fast=True,
                    )
                )
                offered = set(batch)
                for item in verdicts.job_links:
                    if item.should_queue and item.url in offered and item.url not in postings:
                        postings.append(item.url)
            if len(batches) > 1:
                progress.log(f"Evaluated links in {len(batches)} batches")
            progress.log(f"{len(postings)} job posting links among {len(candidates)} links")
            for url in postings[: deps.settings.discovery.job_postings]:
                if await deps.freshness.is_fresh(url):
                    progress.log(f"Posting is fresh, not queued: {url}")
                    continue
                try:
                    posting = await prefetch(deps, url, "job")
                except EXPECTED_ERRORS as exc:
                    progress.log(f"Pre-fetch failed for {url}: {exc}")
                    continue
                progress.child(
                    TaskKind.JOB,
                    {
                        "organization_id": payload.organization_id,
                        "url": url,
                        "company_name": company_name,
                        "job_board_url": payload.careers_url,
                        "pre_fetched": posting.model_dump(mode="json"),
                    },
                )
                queued.append(url)
        else:
            progress.log("Careers page has no outbound links")

        await deps.freshness.record_fetch(
            payload.careers_url, page.content_hash, deps.settings.freshness.ttl("job_board")
        )
        return await progress.succeed({"job_board_id": board["id"], "queued": queued})
    except EXPECTED_ERRORS as exc:
        return await progress.fail(exc)
