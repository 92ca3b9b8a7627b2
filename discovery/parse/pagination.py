"""Heuristic selectors for "next page" and "load more" affordances."""
from __future__ import annotations

from typing import Iterable, List, Optional

PAGINATION_KEYWORDS = (
    "Load more",
    "Show more",
    "View more",
    "See more",
    "More",
    "Next",
    "Next page",
    "Older",
    "›",
    "»",
)

_ATTRIBUTE_SELECTORS = (
    "a[rel='next']",
    "[aria-label*='next' i]",
    "[aria-label*='load more' i]",
    "[class*='load-more' i]",
    "[class*='loadmore' i]",
    "[class*='pagination-next' i]",
    "[class*='next' i] > a",
    "[id*='load-more' i]",
    "[data-testid*='load-more' i]",
    "[data-testid*='pagination-next' i]",
)


def _quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def keyword_selectors(keywords: Iterable[str]) -> List[str]:
    selectors: List[str] = []
    for keyword in keywords:
        quoted = _quote(keyword)
        selectors.append(f"button:has-text({quoted})")
        selectors.append(f"a:has-text({quoted})")
        selectors.append(f"[role='button']:has-text({quoted})")
    return selectors


def build_pagination_selector(override: Optional[str] = None, *, keywords: Iterable[str] = PAGINATION_KEYWORDS) -> str:
    """Return one comma-joined selector list; an override replaces the heuristics."""
    if override:
        return override.strip()
    return ", ".join([*keyword_selectors(keywords), *_ATTRIBUTE_SELECTORS])
