"""HTML to markdown conversion for snapshot text and extraction input."""
from __future__ import annotations

from typing import List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

_DROP_TAGS = ["script", "style", "noscript", "template", "svg", "iframe"]
_HEADINGS = {"h1", "h2", "h3", "h4", "h5", "h6"}
_BLOCK_TAGS = _HEADINGS | {
    "p",
    "ul",
    "ol",
    "pre",
    "table",
    "div",
    "section",
    "article",
    "main",
    "header",
    "footer",
    "nav",
    "aside",
    "figure",
    "form",
    "blockquote",
    "dl",
    "body",
}


def _squash(text: str) -> str:
    return " ".join(text.split())


def _inline(node, base_url: Optional[str]) -> str:
    if isinstance(node, Comment):
        return ""
    if isinstance(node, NavigableString):
        return str(node)
    if not isinstance(node, Tag):
        return ""
    inner = "".join(_inline(child, base_url) for child in node.children)
    if node.name == "a":
        text = _squash(inner)
        href = node.get("href")
        if not text or not href or href.startswith(("javascript:", "#")):
            return inner
        if base_url:
            href = urljoin(base_url, href)
        return f" [{text}]({href}) "
    if node.name in ("strong", "b"):
        text = _squash(inner)
        return f" **{text}** " if text else ""
    if node.name in ("em", "i"):
        text = _squash(inner)
        return f" *{text}* " if text else ""
    if node.name == "br":
        return " "
    if node.name == "img":
        return ""
    return inner


def _has_blocks(node: Tag) -> bool:
    return node.find(lambda tag: tag.name in _BLOCK_TAGS) is not None


def _render(node: Tag, blocks: List[str], base_url: Optional[str]) -> None:
    for child in node.children:
        if isinstance(child, Comment):
            continue
        if isinstance(child, NavigableString):
            text = _squash(str(child))
            if text:
                blocks.append(text)
            continue
        if not isinstance(child, Tag):
            continue
        name = child.name
        if name in _HEADINGS:
            text = _squash(_inline(child, base_url))
            if text:
                blocks.append(f"{'#' * int(name[1])} {text}")
        elif name in ("ul", "ol"):
            lines = []
            for index, item in enumerate(child.find_all("li", recursive=False), start=1):
                text = _squash(_inline(item, base_url))
                if text:
                    marker = f"{index}." if name == "ol" else "-"
                    lines.append(f"{marker} {text}")
            if lines:
                blocks.append("\n".join(lines))
        elif name == "pre":
            text = child.get_text().strip("\n")
            if text.strip():
                blocks.append(f"```\n{text}\n```")
        elif name == "table":
            rows = []
            for row in child.find_all("tr"):
                cells = [_squash(_inline(cell, base_url)) for cell in row.find_all(["th", "td"])]
                if any(cells):
                    rows.append("| " + " | ".join(cells) + " |")
            if rows:
                blocks.append("\n".join(rows))
        elif name in _BLOCK_TAGS and _has_blocks(child):
            _render(child, blocks, base_url)
        else:
            text = _squash(_inline(child, base_url))
            if text:
                blocks.append(text)


def html_to_markdown(html: str, *, base_url: Optional[str] = None) -> str:
    """Render the readable part of a page as markdown blocks separated by blank lines."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_DROP_TAGS):
        tag.decompose()
    root = soup.body or soup
    blocks: List[str] = []
    _render(root, blocks, base_url)
    return "\n\n".join(blocks)
