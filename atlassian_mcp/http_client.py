"""Authenticated HTTP client shared by all tool handlers."""

from __future__ import annotations

import asyncio
import logging

import httpx

from atlassian_mcp import __version__
from atlassian_mcp.config import Settings

logger = logging.getLogger(__name__)

MAX_RETRY_WAIT = 10
MAX_REDIRECTS = 5


class RetryTransport(httpx.AsyncBaseTransport):
    """Async transport that retries on 429 (rate-limited) responses."""

    def __init__(self, max_retries: int = 2, proxy: str | None = None):
        self._transport = httpx.AsyncHTTPTransport(proxy=proxy)
        self._max_retries = max_retries

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        for attempt in range(self._max_retries + 1):
            resp = await self._transport.handle_async_request(request)
            if resp.status_code == 429 and attempt < self._max_retries:
                wait = _retry_after(resp.headers.get("retry-after"))
                await resp.aclose()
                logger.info("Rate limited by Atlassian, retrying in %ss", wait)
                await asyncio.sleep(wait)
                continue
            return resp
        return resp  # unreachable but satisfies type checkers

    async def aclose(self) -> None:
        await self._transport.aclose()


def _retry_after(raw: str | None) -> int:
    try:
        return max(0, min(int(raw or 2), MAX_RETRY_WAIT))
    except ValueError:
        # HTTP-date form; not worth parsing for a capped wait
        return 2


def create_atlassian_client(settings: Settings) -> httpx.AsyncClient:
    """Create the basic-auth client with automatic 429 retry."""
    return httpx.AsyncClient(
        base_url=settings.base_url,
        auth=httpx.BasicAuth(settings.email, settings.api_token),
        headers={
            "Accept": "application/json",
            "User-Agent": f"mcp-atlassian-gateway/{__version__}",
        },
        timeout=settings.timeout,
        follow_redirects=True,
        max_redirects=MAX_REDIRECTS,
        transport=RetryTransport(proxy=settings.proxy),
    )


def web_url(client: httpx.AsyncClient, path: str) -> str:
    """Browser link for an API-relative path such as ``/wiki/spaces/X``."""
    if path.startswith(("http://", "https://")):
        return path
    return str(client.base_url).rstrip("/") + "/" + path.lstrip("/")
