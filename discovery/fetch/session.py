"""HTTP session used for page fetches and lightweight freshness probes."""
from __future__ import annotations

import contextlib
from pathlib import Path
from typing import AsyncIterator, Dict, Optional
from urllib.parse import unquote, urlparse

import httpx


class CrawlSession:
    """Thin wrapper over ``httpx.AsyncClient`` that also serves ``file://`` URLs from disk."""

    def __init__(self, client: Optional[httpx.AsyncClient]) -> None:
        self._client = client

    @property
    def client(self) -> Optional[httpx.AsyncClient]:
        return self._client

    async def fetch(self, url: str, *, headers: Optional[Dict[str, str]] = None, timeout: float = 30.0) -> httpx.Response:
        """Fetch a URL returning an httpx response."""
        parsed = urlparse(url)
        if parsed.scheme == "file":
            target = Path(unquote(parsed.netloc + parsed.path))
            if not target.is_absolute():
                target = Path.cwd() / target
            if not target.exists():
                return httpx.Response(404, text="", request=httpx.Request("GET", url))
            html = target.read_text(encoding="utf-8")
            return httpx.Response(200, text=html, request=httpx.Request("GET", url))
        if self._client is None:
            raise RuntimeError("No HTTP client available")
        return await self._client.get(url, headers=headers, timeout=timeout, follow_redirects=True)


@contextlib.asynccontextmanager
async def create_http_session(*, user_agent: str, timeout: float, max_connections: int = 4) -> AsyncIterator[CrawlSession]:
    """Yield a configured `CrawlSession` for the duration of the context."""
    headers = {"User-Agent": user_agent}
    limits = httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections)
    async with httpx.AsyncClient(headers=headers, limits=limits, timeout=timeout) as client:
        yield CrawlSession(client)
