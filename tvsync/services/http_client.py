"""HTTP client service — managed httpx.AsyncClient with connection pooling."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from tvsync.errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0

# Headers to mimic a browser request; some panels reject unknown agents.
HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                  "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
    "Connection": "keep-alive",
}


@dataclass
class HttpResponse:
    status: int
    content: bytes
    url: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self, encoding: str = "utf-8") -> str:
        return self.content.decode(encoding, errors="replace")


class HttpClientService:
    """Manages a global httpx.AsyncClient with connection pooling.

    Every request carries an explicit timeout; a timeout or connection
    problem surfaces as :class:`TransportError`, never as a hang.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers=HEADERS,
                timeout=httpx.Timeout(self.timeout, connect=30.0),
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def get(
        self,
        url: str,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> HttpResponse:
        """GET *url* and return status plus body. Non-2xx statuses are returned, not raised."""
        client = await self.get_client()
        start_time = time.time()
        try:
            response = await client.get(
                url,
                params=params,
                headers=headers,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"Timed out fetching {_redact(url)}", url=url) from e
        except httpx.ConnectError as e:
            raise TransportError(f"Could not connect to {_redact(url)}: {e}", url=url) from e
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error fetching {_redact(url)}: {e}", url=url) from e
        elapsed = time.time() - start_time
        logger.debug(f"GET {_redact(url)} -> {response.status_code} ({len(response.content)} bytes in {elapsed:.1f}s)")
        return HttpResponse(status=response.status_code, content=response.content, url=str(response.url))

    async def close(self):
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
            logger.info("Global HTTP client closed")


def _redact(url: str) -> str:
    """Strip the query string so credentials never reach the logs."""
    return url.split("?", 1)[0]
