"""Base API client: owns the HttpClient and the per-refresh call counter."""

from typing import Dict, Optional

import aiohttp

from livescan.services.http_client import HttpClient


class BaseAPIClient:
    """
    Base class for upstream API clients.

    The cycle counter is reset by the refresh that owns the client and read
    once at the end of that refresh. Every HTTP attempt counts, retries
    included, since each one consumes provider quota.
    """

    def __init__(
        self,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        rate_limit_per_sec: float = 5.0,
        timeout: float = 10.0,
        retry_attempts: int = 2,
        session: Optional[aiohttp.ClientSession] = None,
        api_name: str = "upstream",
    ):
        self.http = HttpClient(
            base_url=base_url,
            headers=headers,
            rate_limit_per_sec=rate_limit_per_sec,
            timeout=timeout,
            retry_attempts=retry_attempts,
            session=session,
            api_name=api_name,
        )
        self._cycle_start = 0

    def reset_cycle(self) -> None:
        self._cycle_start = self.http.request_count

    @property
    def calls_this_cycle(self) -> int:
        return self.http.request_count - self._cycle_start

    async def close(self) -> None:
        """Close the HTTP client session."""
        await self.http.close()
