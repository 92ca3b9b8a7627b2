"""Heading-aware, size-bounded chunking of markdown documents."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional

HEADING_RE = re.compile(r"^(#{1,6})\s+(.*)$", re.MULTILINE)


@dataclass
class Section:
    """A heading and the text under it; level 0 is the text before the first heading."""

    level: int
    heading: str
    content: str

    def render(self) -> str:
        if not self.heading:
            return self.content
        if not self.content:
            return self.heading
        return f"{self.heading}\n\n{self.content}"


def _windows(text: str, size: int) -> List[str]:
    return [text[start : start + size] for start in range(0, len(text), size)]


def _sections_for(level: int, heading: str, content: str, max_chars: int) -> List[Section]:
    section = Section(level=level, heading=heading, content=content)
    if len(section.render()) <= max_chars:
        return [section]
    # Repeat the heading on every window so each piece keeps its context.
    overhead = len(heading) + 2 if heading else 0
    return [Section(level=level, heading=heading, content=part) for part in _windows(content, max_chars - overhead)]


def split_by_headings(markdown: str, max_chars: int) -> List[Section]:
    """Split on markdown headings, windowing any section that does not fit ``max_chars``."""
    if max_chars < 64:
        raise ValueError("max_chars must be at least 64")
    text = markdown.strip()
    if not text:
        return []
    heading_limit = max_chars // 2
    matches = list(HEADING_RE.finditer(text))
    sections: List[Section] = []

    preamble = text[: matches[0].start()].strip() if matches else text
    if preamble:
        sections.extend(_sections_for(0, "", preamble, max_chars))

    for index, match in enumerate(matches):
        end: Optional[int] = matches[index + 1].start() if index + 1 < len(matches) else None
        heading = match.group(0).strip()[:heading_limit]
        content = text[match.end() : end].strip()
        sections.extend(_sections_for(len(match.group(1)), heading, content, max_chars))
    return sections


def pack_sections(sections: List[Section], max_chars: int) -> List[str]:
    """Greedily join rendered sections into chunks no longer than ``max_chars``."""
    chunks: List[str] = []
    current = ""
    for section in sections:
        rendered = section.render()
        if not rendered:
            continue
        candidate = f"{current}\n\n{rendered}" if current else rendered
        if len(candidate) <= max_chars:
            current = candidate
            continue
        if current:
            chunks.append(current)
        current = rendered
    if current:
        chunks.append(current)
    return chunks


def chunk_document(markdown: str, max_chars: int = 10000) -> List[str]:
    return pack_sections(split_by_headings(markdown, max_chars), max_chars)
