"""Robots.txt helper utilities."""
from __future__ import annotations

import asyncio
from typing import Dict, Optional
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

import httpx
import structlog

LOGGER = structlog.get_logger(__name__)


class RobotsCache:
    """Caches robots.txt per host and answers allow checks for the crawler's user agent."""

    def __init__(self, *, user_agent: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self._user_agent = user_agent
        self._timeout = timeout
        self._client = client
        self._cache: Dict[str, RobotFileParser] = {}
        self._lock = asyncio.Lock()

    async def _load(self, robots_url: str) -> RobotFileParser:
        parser = RobotFileParser()
        try:
            if self._client is not None:
                response = await self._client.get(robots_url, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(robots_url)
        except httpx.HTTPError as exc:
            LOGGER.info("robots_unavailable", robots_url=robots_url, reason=str(exc))
            parser.parse([])
            return parser
        if response.status_code >= 400:
            parser.parse([])
        else:
            parser.parse(response.text.splitlines())
        return parser

    async def allowed(self, url: str) -> bool:
        """Return whether the supplied URL is permitted for the crawler."""
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            return True
        key = f"{parsed.scheme}://{parsed.netloc}"
        async with self._lock:
            if key not in self._cache:
                self._cache[key] = await self._load(f"{key}/robots.txt")
            parser = self._cache[key]
        return parser.can_fetch(self._user_agent, url)
