import asyncio
from typing import Any, Dict, Optional

import aiohttp
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from livescan.core.error_handling import APIError
from livescan.core.logging import get_logger
from livescan.core.rate_limiter import RateLimiter

logger = get_logger(__name__)


class HttpError(APIError):
    """Transport-level failure. 5xx, timeouts and connection errors are retryable; 4xx is not."""


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, HttpError) and exc.retryable


class HttpClient:
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
        self.base_url = base_url.rstrip("/")
        self.headers = headers or {}
        self.timeout = timeout
        self.retry_attempts = max(retry_attempts, 1)
        self.api_name = api_name
        self.session = session
        self.rate_limiter = RateLimiter(rate_limit_per_sec)
        self.request_count = 0
        self._owns_session = session is None
        self._session_lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session and not self.session.closed:
            return self.session
        async with self._session_lock:
            if self.session and not self.session.closed:
                return self.session
            self.session = aiohttp.ClientSession(
                headers=self.headers,
                raise_for_status=False,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
            self._owns_session = True
            return self.session

    async def close(self) -> None:
        if self._owns_session and self.session and not self.session.closed:
            await self.session.close()

    async def _send(self, method: str, url: str, **kwargs: Any) -> Any:
        session = await self._get_session()
        self.request_count += 1
        resp = await session.request(method=method.upper(), url=url, headers=self.headers, **kwargs)
        try:
            if resp.status >= 500:
                logger.warning("Server error %s %s -> %s", method, url, resp.status)
                raise HttpError(
                    f"Server error {resp.status}",
                    api_name=self.api_name,
                    status_code=resp.status,
                    retryable=True,
                )
            if resp.status >= 400:
                text = await resp.text()
                logger.error("Client error %s %s -> %s | %s", method, url, resp.status, text[:200])
                raise HttpError(
                    f"Client error {resp.status}: {text[:200]}",
                    api_name=self.api_name,
                    status_code=resp.status,
                )
            return await resp.json()
        finally:
            resp.release()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"

        async for attempt in AsyncRetrying(
            retry=retry_if_exception(_is_retryable),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            stop=stop_after_attempt(self.retry_attempts),
            reraise=True,
        ):
            with attempt:
                async with self.rate_limiter.limit():
                    try:
                        return await asyncio.wait_for(self._send(method, url, **kwargs), timeout=self.timeout)
                    except asyncio.TimeoutError as exc:
                        logger.warning("Timeout %s %s after %.1fs", method, url, self.timeout)
                        raise HttpError(
                            f"Timeout after {self.timeout}s", api_name=self.api_name, retryable=True
                        ) from exc
                    except aiohttp.ClientError as exc:
                        logger.warning("Connection error %s %s: %s", method, url, exc)
                        raise HttpError(
                            f"Connection error: {exc}", api_name=self.api_name, retryable=True
                        ) from exc
        raise HttpError("Unreachable code", api_name=self.api_name)

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._request("GET", path, params=params)
