"""
리프레시 코디네이터

읽기 요청마다 호출되는 진입점. 스냅샷 나이에 따라:

    age < FRESH_TTL              -> 스냅샷 그대로 반환 (업스트림 호출 없음)
    age < STALE_TTL              -> 락을 잡으면 백그라운드 리프레시 시작, 스냅샷 즉시 반환
    스냅샷 없음 / STALE_TTL 초과 -> 락을 잡고 동기 리프레시. 못 잡으면 한 번 대기 후 재조회

리프레시는 항상 공유 락을 쥔 상태에서만 실행되므로 배포 전체에서 동시에
하나만 돈다. 사이클 호출 카운터도 그 리프레시만 리셋/조회한다.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from livescan.clients.api_football import ApiFootballClient, BatchResult
from livescan.config.constants import FixtureStatusConstants
from livescan.config.settings import Settings
from livescan.core.error_handling import (
    ConfigurationError,
    RefreshError,
    RefreshInProgressError,
    log_error_with_context,
)
from livescan.core.logging import get_logger
from livescan.models.event import DataQuality, Event, MatchStatus, Participant, Trend, Validation
from livescan.models.snapshot import CachedSnapshot, Coverage, RefreshMeta
from livescan.services.aggregator import combine, normalize_status
from livescan.services.cache import CacheStore
from livescan.services.data_validator import DataValidator, ReasonCode
from livescan.services.history_recorder import HistoryRecorder
from livescan.services.payload import as_dict, as_int, as_str, dig
from livescan.services.scoring_engine import ScoringEngine

logger = get_logger(__name__)


class RefreshStatus(str, Enum):
    FRESH = "FRESH"
    STALE_REFRESHING = "STALE_REFRESHING"
    REFRESHED = "REFRESHED"


@dataclass(frozen=True)
class RefreshOutcome:
    snapshot: CachedSnapshot
    status: RefreshStatus
    cache_age: float

    @property
    def events(self) -> List[Event]:
        return self.snapshot.events

    @property
    def meta(self) -> RefreshMeta:
        return self.snapshot.meta


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _fixture_id(fixture: Dict[str, Any]) -> Optional[int]:
    return as_int(dig(fixture, "fixture", "id"))


def _status_code(fixture: Dict[str, Any]) -> str:
    return (as_str(dig(fixture, "fixture", "status", "short")) or "").upper()


def _degraded_event(fixture: Dict[str, Any], fixture_id: int) -> Event:
    """Placeholder for a fixture whose payloads could not be merged."""
    status_code = _status_code(fixture)
    return Event(
        id=fixture_id,
        home=Participant(name=as_str(dig(fixture, "teams", "home", "name")) or ""),
        away=Participant(name=as_str(dig(fixture, "teams", "away", "name")) or ""),
        minute=as_int(dig(fixture, "fixture", "status", "elapsed")) or 0,
        status=normalize_status(status_code),
        status_code=status_code,
        validation=Validation(quality=DataQuality.INVALID, reasons=[ReasonCode.AGGREGATION_FAILED.value]),
        unscoreable=True,
    )


def _trend(previous: Optional[float], current: Optional[float]) -> Trend:
    if previous is None or current is None or previous == current:
        return Trend.STABLE
    return Trend.UP if current > previous else Trend.DOWN


def apply_market_trends(event: Event, previous: Optional[Event]) -> Event:
    """Fill price trends and previous lines by comparing with the same event in the last snapshot."""
    if previous is None or not event.odds.has_data or not previous.odds.has_data:
        return event
    odds, prev = event.odds, previous.odds

    handicap = odds.handicap.model_copy(update={
        "home_trend": _trend(prev.handicap.home, odds.handicap.home),
        "away_trend": _trend(prev.handicap.away, odds.handicap.away),
    })
    same_line = prev.over_under.line is not None and prev.over_under.line == odds.over_under.line
    over_under = odds.over_under.model_copy(update={
        "over_trend": _trend(prev.over_under.over, odds.over_under.over) if same_line else Trend.STABLE,
        "under_trend": _trend(prev.over_under.under, odds.over_under.under) if same_line else Trend.STABLE,
    })
    return event.model_copy(update={
        "odds": odds.model_copy(update={
            "handicap": handicap,
            "over_under": over_under,
            "previous_over": prev.over_under.over if same_line else None,
            "previous_handicap_line": prev.handicap.line,
        })
    })


class RefreshCoordinator:
    def __init__(
        self,
        cache: CacheStore,
        client: ApiFootballClient,
        settings: Settings,
        *,
        validator: Optional[DataValidator] = None,
        engine: Optional[ScoringEngine] = None,
        history: Optional[HistoryRecorder] = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.cache = cache
        self.client = client
        self.settings = settings
        self.validator = validator or DataValidator()
        self.engine = engine or ScoringEngine()
        self.history = history
        self._clock = clock
        self._sleep = sleep
        self._tasks: Set[asyncio.Task] = set()
        self.background_started = 0
        self.background_failures = 0

    # ==================== 읽기 진입점 ====================

    async def handle(self) -> RefreshOutcome:
        snapshot = await self.cache.read_snapshot()
        if snapshot is not None:
            age = snapshot.age_seconds(self._clock())
            if age < self.settings.fresh_ttl_seconds:
                return RefreshOutcome(snapshot, RefreshStatus.FRESH, age)
            if age < self.settings.stale_ttl_seconds:
                token = await self.cache.try_acquire_refresh_lock(self.settings.lock_ttl_seconds)
                if token is not None:
                    self._start_background_refresh(token, snapshot)
                else:
                    logger.info("Refresh already running elsewhere; serving stale snapshot (age %.1fs)", age)
                return RefreshOutcome(snapshot, RefreshStatus.STALE_REFRESHING, age)
        return await self._refresh_blocking(snapshot)

    async def _refresh_blocking(self, previous: Optional[CachedSnapshot]) -> RefreshOutcome:
        token = await self.cache.try_acquire_refresh_lock(self.settings.lock_ttl_seconds)
        if token is None:
            logger.info("Refresh lock held elsewhere; waiting %.1fs", self.settings.lock_wait_seconds)
            await self._sleep(self.settings.lock_wait_seconds)
            latest = await self.cache.read_snapshot()
            if latest is None:
                raise RefreshInProgressError("Refresh in progress and no snapshot available yet")
            age = latest.age_seconds(self._clock())
            status = RefreshStatus.FRESH if age < self.settings.stale_ttl_seconds else RefreshStatus.STALE_REFRESHING
            return RefreshOutcome(latest, status, age)

        try:
            snapshot = await self.refresh(previous)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error("Refresh failed: %s: %s", type(e).__name__, e)
            raise RefreshError(f"Failed to refresh data: {e}", details={"cause": type(e).__name__}) from e
        finally:
            await self.cache.release_refresh_lock(token)
        return RefreshOutcome(snapshot, RefreshStatus.REFRESHED, 0.0)

    # ==================== 백그라운드 리프레시 ====================

    def _start_background_refresh(self, token: str, previous: CachedSnapshot) -> None:
        task = asyncio.create_task(self._background_refresh(token, previous), name="livescan-background-refresh")
        self._tasks.add(task)
        self.background_started += 1
        task.add_done_callback(self._on_background_done)

    async def _background_refresh(self, token: str, previous: CachedSnapshot) -> CachedSnapshot:
        try:
            return await self.refresh(previous)
        finally:
            await self.cache.release_refresh_lock(token)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background refresh cancelled")
            return
        exc = task.exception()
        if exc is not None:
            self.background_failures += 1
            log_error_with_context(exc, {"trigger": "stale_read", "failures": self.background_failures})

    async def drain(self) -> None:
        """Wait for in-flight background refreshes (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ==================== 리프레시 절차 ====================

    async def refresh(self, previous: Optional[CachedSnapshot] = None) -> CachedSnapshot:
        """Run one refresh cycle and write the snapshot. Caller must hold the refresh lock."""
        started_at = self._clock()
        started = time.monotonic()
        self.client.reset_cycle()
        logger.info("Refresh started")

        fixtures = [f for f in await self.client.live_fixtures() if isinstance(f, dict) and _fixture_id(f)]
        finished = {_fixture_id(f): f for f in fixtures if _status_code(f) in FixtureStatusConstants.FINISHED_CODES}
        active = [f for f in fixtures if _fixture_id(f) not in finished]
        logger.info("Live fixtures: %d (%d finished)", len(active), len(finished))

        events, errors = await self._build_events(active, previous, started_at) if active else ([], [])

        coverage = Coverage(
            with_any_odds=sum(1 for e in events if e.odds.has_data),
            with_over_under=sum(1 for e in events if e.odds.over_under.line is not None),
            with_real_stats=sum(1 for e in events if e.stats.has_real_data),
        )
        if events:
            logger.info(
                "Odds coverage: any=%d/%d over_under=%d stats=%d",
                coverage.with_any_odds, len(events), coverage.with_over_under, coverage.with_real_stats,
            )

        calls = self.client.calls_this_cycle
        await self.cache.increment_api_calls(calls)

        pending_history, history_errors = await self._hand_off_finished(previous, {e.id for e in events}, finished)
        errors.extend(history_errors)

        meta = RefreshMeta(
            started_at=started_at,
            next_refresh=started_at + timedelta(seconds=self.settings.next_refresh_seconds),
            match_count=len(events),
            live_count=sum(1 for e in events if e.status_code in FixtureStatusConstants.IN_PLAY_CODES),
            api_calls_this_cycle=calls,
            duration_ms=int((time.monotonic() - started) * 1000),
            errors=errors,
            coverage=coverage if events else None,
        )
        snapshot = CachedSnapshot(events=events, meta=meta, stored_at=self._clock(), pending_history=pending_history)
        await self.cache.write_snapshot(snapshot)
        logger.info(
            "Refresh complete: %d matches, %d live, %d api calls, %dms",
            meta.match_count, meta.live_count, meta.api_calls_this_cycle, meta.duration_ms,
        )
        return snapshot

    async def _build_events(
        self,
        fixtures: List[Dict[str, Any]],
        previous: Optional[CachedSnapshot],
        started_at: datetime,
    ) -> Tuple[List[Event], List[str]]:
        """Per-fixture failures degrade that fixture to an unscoreable placeholder and are reported."""
        ids = [_fixture_id(f) for f in fixtures]
        detail_ids = [_fixture_id(f) for f in fixtures if _status_code(f) in FixtureStatusConstants.DETAIL_CODES]
        prematch_ids = ids[: self.settings.prematch_odds_cap]

        stats, timelines, live_odds, prematch = await asyncio.gather(
            self.client.statistics_batch(detail_ids),
            self.client.events_batch(detail_ids),
            self.client.live_odds_batch(ids),
            self.client.prematch_odds_batch(prematch_ids),
        )

        captured_at = started_at.isoformat()
        events: List[Event] = []
        errors: List[str] = []
        for fixture in fixtures:
            fixture_id = _fixture_id(fixture)
            stats_payload = stats.get(fixture_id)
            timeline_payload = timelines.get(fixture_id)
            live_payload = live_odds.get(fixture_id)
            prematch_payload = prematch.get(fixture_id)

            try:
                event = combine(
                    fixture,
                    stats_payload,
                    timeline_payload,
                    live_payload,
                    prematch_payload,
                    odds_failed=self._odds_failed(fixture_id, live_odds, prematch),
                    captured_at=captured_at,
                )
                validation = self.validator.validate(event, stats_payload, live_payload, timeline_payload)
            except Exception as e:
                logger.warning("Aggregation failed for fixture %s: %s: %s", fixture_id, type(e).__name__, e)
                errors.append(f"aggregate:{fixture_id}:{type(e).__name__}")
                events.append(_degraded_event(fixture, fixture_id))
                continue
            event = event.model_copy(update={"validation": validation})
            event = apply_market_trends(event, previous.find(fixture_id) if previous else None)
            events.append(event)
        return events, errors

    @staticmethod
    def _odds_failed(fixture_id: int, live_odds: BatchResult, prematch: BatchResult) -> bool:
        if fixture_id not in live_odds.failed:
            return False
        return fixture_id not in prematch or fixture_id in prematch.failed

    # ==================== 히스토리 ====================

    async def _hand_off_finished(
        self,
        previous: Optional[CachedSnapshot],
        live_ids: Set[int],
        finished: Dict[int, Dict[str, Any]],
    ) -> Tuple[List[Event], List[str]]:
        """Commit events that left the live set, plus earlier commits that failed.

        Returns (still pending, error strings). Failures are logged and reported, never raised.
        """
        if previous is None:
            return [], []
        candidates = {event.id: event for event in previous.pending_history}
        for event in previous.events:
            if event.id not in live_ids:
                candidates[event.id] = self._finalize(event, finished.get(event.id))

        pending: List[Event] = []
        errors: List[str] = []
        for event_id, event in candidates.items():
            if event_id in live_ids:
                continue
            if self.history is None:
                logger.info("Fixture %s left the live set (history disabled)", event_id)
                continue
            try:
                await self.history.commit(event, self.engine.score_event(event))
            except Exception as e:
                logger.error("History commit failed for fixture %s, retrying next cycle: %s", event_id, e)
                errors.append(f"history:{event_id}:{type(e).__name__}")
                pending.append(event)
        return pending, errors

    @staticmethod
    def _finalize(event: Event, fixture: Optional[Dict[str, Any]]) -> Event:
        if fixture is None:
            return event
        goals = as_dict(fixture.get("goals"))
        home_score = as_int(goals.get("home"))
        away_score = as_int(goals.get("away"))
        return event.model_copy(update={
            "status": MatchStatus.FINISHED,
            "status_code": _status_code(fixture),
            "minute": as_int(dig(fixture, "fixture", "status", "elapsed")) or event.minute,
            "home": event.home.model_copy(update={"score": home_score if home_score is not None else event.home.score}),
            "away": event.away.model_copy(update={"score": away_score if away_score is not None else event.away.score}),
        })
