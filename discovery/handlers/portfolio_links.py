"""Filter portfolio links down to active Canadian companies and queue them."""
from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from discovery.extract import prompts
from discovery.extract.schemas import LinkEvaluation, PortfolioLinkEvaluations
from discovery.handlers.common import EXPECTED_ERRORS, HandlerDeps, HttpUrlStr, Progress, link_batches, prefetch
from discovery.orchestrator.tasks import HandlerHelpers, HandlerResult, Task, TaskKind


class Payload(BaseModel):
    source_id: int
    links: List[HttpUrlStr] = Field(min_length=1)


async def handle(task: Task, payload: Payload, helpers: HandlerHelpers, *, deps: HandlerDeps) -> HandlerResult:
    progress = Progress("portfolioLinks", task, helpers)
    progress.log(f"source_id: {payload.source_id}")
    progress.log(f"links: {len(payload.links)}")
    try:
        evaluations: List[LinkEvaluation] = []
        for batch in link_batches(payload.links, deps.settings.reconcile.chunk_chars):
            verdicts: PortfolioLinkEvaluations = progress.track(
                await deps.extractor.extract(
                    prompts.numbered_links(batch),
                    PortfolioLinkEvaluations,
                    prompts.PORTFOLIO_LINK_FILTER,
                    fast=True,
                )
            )
            offered = set(batch)
            evaluations.extend(item for item in verdicts.evaluations if item.url in offered)
        qualifying = [item for item in evaluations if item.should_queue]
        rejected = [item for item in evaluations if not item.should_queue]
        progress.log(f"{len(qualifying)} qualifying companies, {len(rejected)} filtered out")

        cap = deps.settings.discovery.organizations
        queued: List[str] = []
        failed: List[str] = []
        for evaluation in qualifying[:cap]:
            try:
                page = await prefetch(deps, evaluation.url, "organization")
            except EXPECTED_ERRORS as exc:
                # One unreachable site should not cost the rest of the batch.
                progress.log(f"Pre-fetch failed for {evaluation.url}: {exc}")
                failed.append(evaluation.url)
                continue
            progress.child(
                TaskKind.ORGANIZATION,
                {"url": evaluation.url, "source_id": payload.source_id, "pre_fetched": page.model_dump(mode="json")},
            )
            queued.append(evaluation.url)
        await progress.checkpoint({"queued": queued})

        return await progress.succeed(
            {
                "source_id": payload.source_id,
                "total_links": len(payload.links),
                "qualifying": [{"url": item.url, "reason": item.reason} for item in qualifying],
                "filtered_out": [{"url": item.url, "reason": item.reason} for item in rejected],
                "queued": queued,
                "prefetch_failed": failed,
            }
        )
    except EXPECTED_ERRORS as exc:
        return await progress.fail(exc)
