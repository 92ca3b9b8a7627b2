"""Walk a startup directory and fan out into companies, job boards and sub-directories."""
from __future__ import annotations

from typing import Dict, List

from pydantic import BaseModel, Field

from discovery.extract import prompts
from discovery.extract.schemas import DirectoryEntities
from discovery.fetch.freshness import Freshness, content_hash
from discovery.handlers.common import EXPECTED_ERRORS, HandlerDeps, HttpUrlStr, Progress, host_of, is_http_url
from discovery.orchestrator.tasks import HandlerHelpers, HandlerResult, Task, TaskKind
from discovery.parse.chunking import chunk_document
from discovery.parse.links import merge_links
from discovery.parse.reconcile import reconcile


class Payload(BaseModel):
    url: HttpUrlStr
    depth: int = Field(default=0, ge=0)


def _merge(found: List[DirectoryEntities]) -> DirectoryEntities:
    companies: Dict[str, str] = {}
    for entities in found:
        for company in entities.companies:
            if is_http_url(company.url):
                companies.setdefault(company.url, company.name)
    return DirectoryEntities(
        companies=[{"name": name, "url": url} for url, name in companies.items()],
        directories=[url for url in merge_links(*(item.directories for item in found)) if is_http_url(url)],
        job_boards=[url for url in merge_links(*(item.job_boards for item in found)) if is_http_url(url)],
    )


async def handle(task: Task, payload: Payload, helpers: HandlerHelpers, *, deps: HandlerDeps) -> HandlerResult:
    progress = Progress("directory", task, helpers)
    progress.log(f"url: {payload.url}")
    progress.log(f"depth: {payload.depth}")
    limits = deps.settings.discovery
    try:
        if await deps.freshness.is_fresh(payload.url):
            deps.metrics.incr("fresh_skips")
            return await progress.skip("directory is fresh", url=payload.url)

        walk = await deps.snapshotter.snapshot(payload.url)
        progress.log(f"Captured {len(walk.snapshots)} snapshots ({walk.stop_reason})")
        document = reconcile(
            walk.snapshots,
            dedup=deps.settings.reconcile.dedup,
            probe_chars=deps.settings.reconcile.append_probe_chars,
        )
        digest = content_hash(document)
        ttl = deps.settings.freshness.ttl("directory")
        if await deps.freshness.assess(payload.url, digest) is Freshness.UNCHANGED:
            deps.metrics.incr("unchanged_skips")
            await deps.freshness.record_fetch(payload.url, digest, ttl)
            return await progress.skip("directory unchanged", url=payload.url)

        chunks = chunk_document(document, deps.settings.reconcile.chunk_chars)
        progress.log(f"Split directory into {len(chunks)} chunks")
        found: List[DirectoryEntities] = []
        for index, chunk in enumerate(chunks, start=1):
            found.append(
                progress.track(await deps.extractor.extract(chunk, DirectoryEntities, prompts.DIRECTORY_ENTITIES))
            )
            progress.log(f"Chunk {index}/{len(chunks)} extracted")
            await progress.checkpoint()
        merged = _merge(found)

        companies = merged.companies[: limits.organizations]
        for company in companies:
            progress.child(TaskKind.ORGANIZATION, {"url": company.url})

        boards = []
        for url in merged.job_boards[: limits.job_boards]:
            board = await deps.entities.upsert_job_board(url=url, name=host_of(url))
            boards.append(board["id"])
            progress.child(TaskKind.JOB_BOARD, {"careers_url": url})

        directories: List[str] = []
        if payload.depth < limits.max_depth:
            own = host_of(payload.url)
            candidates = [url for url in merged.directories if url != payload.url and host_of(url) != own]
            directories = candidates[: limits.directories]
            for url in directories:
                progress.child(TaskKind.DIRECTORY, {"url": url, "depth": payload.depth + 1})
        elif merged.directories:
            progress.log(f"Depth {payload.depth} reached the limit, {len(merged.directories)} directories not followed")

        progress.log(
            f"Queued {len(companies)} organizations, {len(boards)} job boards and {len(directories)} directories"
        )
        await deps.freshness.record_fetch(payload.url, digest, ttl)
        return await progress.succeed(
            {
                "companies_found": len(merged.companies),
                "organizations_queued": [company.url for company in companies],
                "job_board_ids": boards,
                "directories_queued": directories,
            }
        )
    except EXPECTED_ERRORS as exc:
        return await progress.fail(exc)
