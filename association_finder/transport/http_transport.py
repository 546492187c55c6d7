#!/usr/bin/env python3

import logging
import asyncio
import aiohttp
from dataclasses import dataclass
from typing import Dict, Optional

from ..exceptions import TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransportResponse:
    """Result of one request after redirects were followed."""

    final_address: str
    status_code: int
    body: str = ''

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class HttpTransport:
    """Performs single GET requests over an already-authenticated aiohttp session.

    Pass ``session`` to reuse a session the host set up (cookies, headers);
    otherwise one is created on ``__aenter__`` and closed on ``__aexit__``.
    """

    def __init__(self, session: Optional[aiohttp.ClientSession] = None, max_connections: int = 50,
                 timeout_seconds: float = 10.0, headers: Optional[Dict[str, str]] = None,
                 cookies: Optional[Dict[str, str]] = None, read_body: bool = True):
        self.session = session
        self._owns_session = session is None
        self._max_connections = max_connections
        self._timeout_seconds = timeout_seconds
        self._headers = headers
        self._cookies = cookies
        self._read_body = read_body
        self._request_semaphore = asyncio.Semaphore(max_connections)

    async def __aenter__(self):
        """Async context manager entry"""
        if not self.session:
            conn = aiohttp.TCPConnector(
                limit=self._max_connections,
                ttl_dns_cache=300,
                limit_per_host=self._max_connections
            )
            timeout = aiohttp.ClientTimeout(total=self._timeout_seconds, connect=min(10, self._timeout_seconds))
            self.session = aiohttp.ClientSession(
                connector=conn,
                timeout=timeout,
                headers=self._headers,
                cookies=self._cookies
            )
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        await self.close()

    async def close(self):
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None

    async def request(self, address: str) -> TransportResponse:
        """Fetch ``address`` following redirects.

        Non-success statuses are returned, not raised; network, DNS and
        timeout failures raise TransportError.
        """
        if not self.session:
            raise RuntimeError("Session not initialized")

        try:
            async with self._request_semaphore:
                async with self.session.get(address, allow_redirects=True) as response:
                    body = await response.text(errors='replace') if self._read_body else ''
                    return TransportResponse(
                        final_address=str(response.url),
                        status_code=response.status,
                        body=body
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Request to {address} failed: {e!r}")
            raise TransportError(f"Request to {address} failed: {e!r}", address=address) from e
