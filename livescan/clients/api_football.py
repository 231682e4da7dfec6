import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

import aiohttp

from livescan.clients.base import BaseAPIClient
from livescan.config.settings import Settings
from livescan.core.error_handling import APIError, ConfigurationError
from livescan.core.logging import get_logger

logger = get_logger(__name__)

Payload = List[Dict[str, Any]]


@dataclass
class BatchResult:
    """id -> provider `response` list. Ids whose request failed map to [] and are listed in `failed`."""

    payloads: Dict[int, Payload] = field(default_factory=dict)
    failed: Set[int] = field(default_factory=set)

    def __contains__(self, fixture_id: int) -> bool:
        return fixture_id in self.payloads

    def get(self, fixture_id: int) -> Optional[Payload]:
        return self.payloads.get(fixture_id)


def chunked(ids: Iterable[int], size: int) -> List[List[int]]:
    unique = list(dict.fromkeys(ids))
    size = max(size, 1)
    return [unique[i:i + size] for i in range(0, len(unique), size)]


class ApiFootballClient(BaseAPIClient):
    """API-Football v3 client (direct api-sports.io, `x-apisports-key` header)."""

    def __init__(self, settings: Settings, session: Optional[aiohttp.ClientSession] = None):
        self.settings = settings
        headers: Dict[str, str] = {}
        if settings.api_football_key:
            headers["x-apisports-key"] = settings.api_football_key

        super().__init__(
            base_url=str(settings.api_football_base_url),
            headers=headers,
            rate_limit_per_sec=settings.rate_limit_per_sec,
            timeout=settings.request_timeout_seconds,
            retry_attempts=settings.upstream_retry_attempts,
            session=session,
            api_name="api-football",
        )
        self._sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def _require_key(self) -> None:
        if not self.settings.api_football_key:
            raise ConfigurationError(
                "API_FOOTBALL_KEY is not configured",
                config_key="api_football_key",
            )

    async def _get_response(self, path: str, params: Optional[Dict[str, Any]] = None) -> Payload:
        self._require_key()
        data = await self.http.get(path, params=params)
        if not isinstance(data, dict):
            raise APIError(f"Unexpected payload type from {path}", api_name="api-football")
        # 공급자는 200 응답 바디에 errors 를 담아 보내기도 한다 (쿼터 초과, 토큰 오류 등)
        errors = data.get("errors")
        if errors:
            raise APIError(f"Provider reported errors on {path}: {errors}", api_name="api-football",
                           details={"errors": errors})
        response = data.get("response")
        return response if isinstance(response, list) else []

    # ---------------------------------------------------------------- single calls

    async def live_fixtures(self) -> Payload:
        return await self._get_response("fixtures", params={"live": "all"})

    async def fixture_statistics(self, fixture_id: int) -> Payload:
        return await self._get_response("fixtures/statistics", params={"fixture": fixture_id})

    async def fixture_events(self, fixture_id: int) -> Payload:
        return await self._get_response("fixtures/events", params={"fixture": fixture_id})

    async def live_odds(self, fixture_id: int) -> Payload:
        return await self._get_response("odds/live", params={"fixture": fixture_id})

    async def prematch_odds(self, fixture_id: int) -> Payload:
        return await self._get_response("odds", params={"fixture": fixture_id})

    # ---------------------------------------------------------------- batching

    async def fetch_batched(
        self,
        ids: Iterable[int],
        fetch: Callable[[int], Awaitable[Payload]],
        batch_size: int,
        delay_ms: int,
        label: str = "batch",
    ) -> BatchResult:
        """Fetch per-fixture payloads chunk by chunk.

        Requests inside a chunk run concurrently; chunks are separated by
        ``delay_ms``. A failed request degrades to an empty entry for its id.
        Configuration errors are not degraded: they abort the batch.
        """
        result = BatchResult()
        chunks = chunked(ids, batch_size)
        for index, chunk in enumerate(chunks):
            if index and delay_ms > 0:
                await self._sleep(delay_ms / 1000)
            outcomes = await asyncio.gather(*(fetch(fixture_id) for fixture_id in chunk), return_exceptions=True)
            chunk_failures = 0
            for fixture_id, outcome in zip(chunk, outcomes):
                if isinstance(outcome, ConfigurationError):
                    raise outcome
                if isinstance(outcome, Exception):
                    chunk_failures += 1
                    result.failed.add(fixture_id)
                    result.payloads[fixture_id] = []
                    logger.debug("%s fixture %s failed: %s", label, fixture_id, outcome)
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    result.payloads[fixture_id] = outcome
            if chunk_failures:
                logger.warning(
                    "%s chunk %d/%d: %d of %d fixture(s) failed",
                    label, index + 1, len(chunks), chunk_failures, len(chunk),
                )
        return result

    async def statistics_batch(self, ids: Iterable[int]) -> BatchResult:
        return await self.fetch_batched(
            ids, self.fixture_statistics,
            self.settings.stats_batch_size, self.settings.stats_batch_delay_ms, "statistics",
        )

    async def events_batch(self, ids: Iterable[int]) -> BatchResult:
        return await self.fetch_batched(
            ids, self.fixture_events,
            self.settings.stats_batch_size, self.settings.stats_batch_delay_ms, "events",
        )

    async def live_odds_batch(self, ids: Iterable[int]) -> BatchResult:
        return await self.fetch_batched(
            ids, self.live_odds,
            self.settings.odds_batch_size, self.settings.odds_batch_delay_ms, "odds/live",
        )

    async def prematch_odds_batch(self, ids: Iterable[int]) -> BatchResult:
        return await self.fetch_batched(
            ids, self.prematch_odds,
            self.settings.odds_batch_size, self.settings.odds_batch_delay_ms, "odds/prematch",
        )
