"""
Shared aiohttp connection pooling for REST adapters.
"""
from __future__ import annotations

import os
from typing import Optional

import aiohttp

from logging_setup import StructuredLogger


class PooledHTTPAdapter:
    """
    Lazily creates one aiohttp session per adapter and reuses its TCP connections
    between requests.
    """

    provider = "http"
    logger: StructuredLogger

    def __init__(self, *, pool_size: Optional[int] = None, connect_timeout: Optional[float] = None):
        self._pool_size = pool_size or int(os.getenv("ADAPTER_CONNECTION_POOL_SIZE", "10"))
        self._connect_timeout = connect_timeout or float(os.getenv("ADAPTER_CONNECT_TIMEOUT", "3.0"))
        self._http_session: Optional[aiohttp.ClientSession] = None

    def _get_or_create_session(self) -> aiohttp.ClientSession:
        if self._http_session is None or self._http_session.closed:
            connector = aiohttp.TCPConnector(
                limit=self._pool_size,
                limit_per_host=self._pool_size,
                ttl_dns_cache=300,
                force_close=False,
            )
            # The overall deadline is the orchestrator's adapter timeout
            timeout = aiohttp.ClientTimeout(total=None, connect=self._connect_timeout)
            self._http_session = aiohttp.ClientSession(connector=connector, timeout=timeout)

            self.logger.info(
                "Connection pool created",
                provider=self.provider,
                pool_size=self._pool_size,
                connect_timeout_ms=int(self._connect_timeout * 1000),
            )
        return self._http_session

    async def aclose(self) -> None:
        """
        Best-effort cleanup of the HTTP session and connector.
        Safe to call multiple times.
        """
        if self._http_session is None:
            return
        try:
            await self._http_session.close()
            self.logger.info("Connection pool closed", provider=self.provider)
        except (aiohttp.ClientError, OSError, RuntimeError) as e:
            self.logger.warning(
                "Error closing HTTP session",
                provider=self.provider,
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            self._http_session = None
