"""Extract and store one job posting."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from discovery.extract import prompts
from discovery.extract.schemas import JobPosting
from discovery.handlers.common import (
    EXPECTED_ERRORS,
    HandlerDeps,
    HttpUrlStr,
    PreFetched,
    Progress,
    freshness_gate,
    page_excerpt,
)
from discovery.orchestrator.tasks import HandlerHelpers, HandlerResult, Task


class Payload(BaseModel):
    url: HttpUrlStr
    company_name: str
    organization_id: Optional[int] = None
    job_board_url: Optional[str] = None
    pre_fetched: Optional[PreFetched] = None


async def handle(task: Task, payload: Payload, helpers: HandlerHelpers, *, deps: HandlerDeps) -> HandlerResult:
    progress = Progress("job", task, helpers)
    progress.log(f"url: {payload.url}")
    try:
        gate = await freshness_gate(deps, payload.url, "job", payload.pre_fetched)
        page = gate.changed_page
        if page is None:
            return await progress.skip(f"posting {gate.verdict.value}", url=payload.url)

        header = f"URL: {payload.url}\n\n"
        budget = max(deps.settings.reconcile.chunk_chars - len(header), 1)
        document = header + page_excerpt(page.markdown, budget)
        posting: JobPosting = progress.track(await deps.extractor.extract(document, JobPosting, prompts.JOB_POSTING))
        job = await deps.entities.upsert_job(
            url=payload.url,
            title=posting.title,
            company=posting.company or payload.company_name,
            city=posting.city,
            province=posting.province,
            remote_ok=posting.remote_ok,
            salary_min=posting.salary_min,
            salary_max=posting.salary_max,
            description=posting.description,
            job_board_url=payload.job_board_url or posting.job_board_url,
            organization_id=payload.organization_id,
        )
        progress.log(f"Stored job {job['id']} ({posting.title})")
        await deps.freshness.record_fetch(payload.url, page.content_hash, deps.settings.freshness.ttl("job"))
        return await progress.succeed({"job_id": job["id"], "title": posting.title})
    except EXPECTED_ERRORS as exc:
        return await progress.fail(exc)
