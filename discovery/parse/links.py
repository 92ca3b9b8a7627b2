"""Outbound link discovery."""
from __future__ import annotations

from typing import Iterable, List
from urllib.parse import urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup


def normalise_link(href: str, base_url: str) -> str:
    absolute, _fragment = urldefrag(urljoin(base_url, href.strip()))
    return absolute


def extract_links(html: str, base_url: str) -> List[str]:
    """Absolute http(s) links in document order, without duplicates or fragments."""
    soup = BeautifulSoup(html, "html.parser")
    seen = set()
    links: List[str] = []
    for anchor in soup.select("a[href]"):
        href = anchor.get("href", "")
        if not href or href.startswith(("mailto:", "tel:", "javascript:")):
            continue
        url = normalise_link(href, base_url)
        if urlparse(url).scheme not in ("http", "https") or url in seen:
            continue
        seen.add(url)
        links.append(url)
    return links


def merge_links(*groups: Iterable[str]) -> List[str]:
    """Union of several link lists, keeping first-seen order."""
    seen = set()
    merged: List[str] = []
    for group in groups:
        for url in group:
            if url not in seen:
                seen.add(url)
                merged.append(url)
    return merged
