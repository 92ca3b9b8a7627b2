"""Merge the snapshots of a paginated page into one canonical document."""
from __future__ import annotations

import hashlib
import re
from typing import List, Literal, Sequence

import structlog

from discovery.fetch.snapshot import ContentSnapshot

LOGGER = structlog.get_logger(__name__)

_BLOCK_SPLIT = re.compile(r"\n\s*\n")

DedupMode = Literal["block", "snapshot"]


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def split_blocks(text: str) -> List[str]:
    """Blank-line separated blocks, stripped, empties dropped."""
    return [block.strip() for block in _BLOCK_SPLIT.split(text) if block.strip()]


def is_append_style(snapshots: Sequence[ContentSnapshot], probe_chars: int = 2000) -> bool:
    """True when the last snapshot still contains the opening of the first one."""
    if len(snapshots) < 2:
        return False
    probe = snapshots[0].markdown[:probe_chars]
    return bool(probe) and probe in snapshots[-1].markdown


def reconcile(
    snapshots: Sequence[ContentSnapshot],
    *,
    dedup: DedupMode = "block",
    probe_chars: int = 2000,
) -> str:
    """Return the canonical text for a pagination walk.

    Append-style pages collapse to their final snapshot. Slice-style pages keep
    the first occurrence of each piece of content in capture order, where a
    piece is a blank-line separated block (``dedup="block"``) or a whole
    snapshot (``dedup="snapshot"``).
    """
    if not snapshots:
        return ""
    if len(snapshots) == 1:
        return snapshots[0].markdown
    if is_append_style(snapshots, probe_chars):
        LOGGER.info("reconcile_append_style", snapshots=len(snapshots))
        return snapshots[-1].markdown

    seen = set()
    kept: List[str] = []
    for snapshot in snapshots:
        pieces = split_blocks(snapshot.markdown) if dedup == "block" else [snapshot.markdown]
        for piece in pieces:
            digest = _digest(piece)
            if digest in seen:
                continue
            seen.add(digest)
            kept.append(piece)
    LOGGER.info("reconcile_slice_style", snapshots=len(snapshots), pieces=len(kept), dedup=dedup)
    return "\n\n".join(kept)
