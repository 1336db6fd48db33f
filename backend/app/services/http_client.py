"""Outbound HTTP fetch primitive shared by every upstream call.

Wraps one ``httpx.AsyncClient`` (timeouts, redirects, browser-like headers)
and turns every transport problem into :class:`UpstreamError`, so callers
deal with exactly one failure type.
"""

import asyncio
import json
import logging
from typing import Any, Optional

import httpx

from ..exceptions import UpstreamError

logger = logging.getLogger(__name__)

# Fallback ceiling when a caller builds a client without its own timeout.
REQUEST_TIMEOUT = 12.0


def build_client(
    *,
    timeout: float = REQUEST_TIMEOUT,
    user_agent: str,
    accept_language: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Create the shared async client used for the life of the application."""
    return httpx.AsyncClient(
        headers={
            "User-Agent": user_agent,
            "Accept-Language": accept_language,
        },
        timeout=timeout,
        follow_redirects=True,
        transport=transport,
    )


class Fetcher:
    """fetch(url) -> body text, or UpstreamError within a bounded time."""

    def __init__(self, client: httpx.AsyncClient, timeout: float = REQUEST_TIMEOUT) -> None:
        self.client = client
        self.timeout = timeout

    async def fetch_text(self, url: str, params: Optional[dict[str, Any]] = None) -> str:
        logger.debug("GET %s %s", url, params or "")
        try:
            # Hard ceiling on top of httpx's per-phase timeouts.
            resp = await asyncio.wait_for(
                self.client.get(url, params=params),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise UpstreamError(f"Timed out fetching {url}", url=url) from exc
        except httpx.TimeoutException as exc:
            raise UpstreamError(f"Timed out fetching {url}", url=url) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Request to {url} failed: {exc}", url=url) from exc

        if not resp.is_success:
            raise UpstreamError(
                f"HTTP {resp.status_code} from {url}",
                url=url,
                status_code=resp.status_code,
            )
        return resp.text

    async def fetch_json(self, url: str, params: Optional[dict[str, Any]] = None) -> Any:
        text = await self.fetch_text(url, params=params)
        try:
            return json.loads(text)
        except ValueError as exc:
            raise UpstreamError(f"Invalid JSON from {url}", url=url) from exc
