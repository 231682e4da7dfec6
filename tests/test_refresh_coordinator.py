"""리프레시 코디네이터 테스트 (신선도 정책, 락, 백그라운드 리프레시, 히스토리 인계)"""

import asyncio

import pytest

from livescan.core.error_handling import ConfigurationError, RefreshError, RefreshInProgressError
from livescan.models.event import DataQuality, MatchStatus, Trend
from livescan.services.refresh_coordinator import RefreshStatus
from livescan.services.scoring_engine import Action
from tests.factories import (
    AWAY_ID,
    HOME_ID,
    RecordingHistory,
    make_coordinator,
    make_fixture,
    make_live_odds,
    make_statistics,
    make_timeline,
    provider_routes,
)


def _single_match_routes(over="1.85", fixture_status="2H"):
    fixture = make_fixture(fixture_id=1001, status=fixture_status, elapsed=80, home_goals=1, away_goals=1)
    return provider_routes(
        [fixture],
        statistics={1001: make_statistics(shots=(15, 10), on_target=(8, 4), possession=("55%", "45%"), xg=("2.00", "1.20"))},
        events={1001: make_timeline(
            (23, "Goal", "Normal Goal", HOME_ID, "Saka"),
            (61, "Goal", "Normal Goal", AWAY_ID, "Palmer"),
        )},
        live_odds={1001: make_live_odds(over_under=[("2.5", over, "1.95", True)], handicap=None, match_winner=None)},
    )


def test_empty_live_list_costs_one_call():
    coordinator, session, _ = make_coordinator(provider_routes([]))

    async def run():
        outcome = await coordinator.handle()
        return outcome, await coordinator.cache.get_api_calls_today()

    outcome, calls_today = asyncio.run(run())

    assert outcome.status is RefreshStatus.REFRESHED
    assert outcome.events == []
    assert outcome.meta.match_count == 0
    assert outcome.meta.api_calls_this_cycle == 1
    assert [path for path, _ in session.calls] == ["fixtures"]
    assert calls_today == 1


def test_full_refresh_builds_validated_events():
    coordinator, session, _ = make_coordinator(_single_match_routes())

    outcome = asyncio.run(coordinator.handle())

    event = outcome.events[0]
    assert outcome.meta.match_count == 1
    assert outcome.meta.live_count == 1
    assert outcome.meta.api_calls_this_cycle == 5
    assert outcome.meta.coverage.with_over_under == 1
    assert outcome.meta.coverage.with_real_stats == 1
    assert event.validation.quality is DataQuality.REAL
    assert event.odds.is_live

    result = coordinator.engine.score_event(event, data_age=outcome.cache_age)
    assert result.action is Action.BET
    assert result.data_mode == "STRICT_REAL_DATA"


def test_fresh_snapshot_makes_no_upstream_calls():
    coordinator, session, clock = make_coordinator(_single_match_routes())

    async def run():
        await coordinator.handle()
        calls_after_refresh = len(session.calls)
        clock.advance(14)
        outcomes = [await coordinator.handle() for _ in range(5)]
        return calls_after_refresh, outcomes

    calls_after_refresh, outcomes = asyncio.run(run())

    assert len(session.calls) == calls_after_refresh
    assert all(o.status is RefreshStatus.FRESH for o in outcomes)
    assert outcomes[0].cache_age == 14


def test_stale_snapshot_triggers_single_background_refresh():
    coordinator, session, clock = make_coordinator(_single_match_routes())

    async def run():
        first = await coordinator.handle()
        clock.advance(30)
        readers = await asyncio.gather(*(coordinator.handle() for _ in range(10)))
        await coordinator.drain()
        after = await coordinator.handle()
        return first, readers, after

    first, readers, after = asyncio.run(run())

    assert all(r.status is RefreshStatus.STALE_REFRESHING for r in readers)
    assert all(r.snapshot.stored_at == first.snapshot.stored_at for r in readers)
    assert coordinator.background_started == 1
    assert coordinator.background_failures == 0
    assert session.count("fixtures") == 2
    assert after.status is RefreshStatus.FRESH
    assert after.cache_age == 0


def test_expired_snapshot_refreshes_synchronously():
    coordinator, session, clock = make_coordinator(_single_match_routes())

    async def run():
        await coordinator.handle()
        clock.advance(61)
        return await coordinator.handle()

    outcome = asyncio.run(run())

    assert outcome.status is RefreshStatus.REFRESHED
    assert session.count("fixtures") == 2


def test_lock_held_elsewhere_without_snapshot_is_in_progress():
    coordinator, session, _ = make_coordinator(_single_match_routes())

    async def run():
        await coordinator.cache.try_acquire_refresh_lock(45)
        await coordinator.handle()

    with pytest.raises(RefreshInProgressError):
        asyncio.run(run())
    assert session.calls == []
    assert coordinator.waits == [coordinator.settings.lock_wait_seconds]


def test_lock_held_elsewhere_serves_existing_snapshot_after_wait():
    coordinator, session, clock = make_coordinator(_single_match_routes())

    async def run():
        await coordinator.handle()
        clock.advance(90)
        await coordinator.cache.try_acquire_refresh_lock(45)
        return await coordinator.handle()

    outcome = asyncio.run(run())

    assert outcome.status is RefreshStatus.STALE_REFRESHING
    assert outcome.cache_age == 90
    assert session.count("fixtures") == 1


def test_upstream_failure_surfaces_and_releases_lock():
    routes = {"fixtures": lambda params: (500, {"message": "down"})}
    coordinator, _, _ = make_coordinator(routes)

    async def run():
        with pytest.raises(RefreshError):
            await coordinator.handle()
        return await coordinator.cache.try_acquire_refresh_lock(45)

    assert asyncio.run(run()) is not None


def test_missing_api_key_is_configuration_error():
    coordinator, session, _ = make_coordinator(provider_routes([]), api_football_key=None)

    with pytest.raises(ConfigurationError):
        asyncio.run(coordinator.handle())
    assert session.calls == []


def test_background_failure_is_counted_and_stale_snapshot_kept():
    coordinator, session, clock = make_coordinator(_single_match_routes())

    async def run():
        first = await coordinator.handle()
        session.routes["fixtures"] = lambda params: (503, {"message": "down"})
        clock.advance(20)
        stale = await coordinator.handle()
        await coordinator.drain()
        kept = await coordinator.cache.read_snapshot()
        relock = await coordinator.cache.try_acquire_refresh_lock(45)
        return first, stale, kept, relock

    first, stale, kept, relock = asyncio.run(run())

    assert stale.status is RefreshStatus.STALE_REFRESHING
    assert coordinator.background_failures == 1
    assert kept.stored_at == first.snapshot.stored_at
    assert kept.meta.match_count == 1
    assert relock is not None


def test_detail_fetch_limited_to_in_play_and_prematch_capped():
    fixtures = [
        make_fixture(fixture_id=1, status="1H", elapsed=30),
        make_fixture(fixture_id=2, status="HT", elapsed=45),
        make_fixture(fixture_id=3, status="NS", elapsed=None),
    ]
    coordinator, session, _ = make_coordinator(provider_routes(fixtures), prematch_odds_cap=2)

    outcome = asyncio.run(coordinator.handle())

    assert session.count("fixtures/statistics") == 2
    assert session.count("fixtures/events") == 2
    assert session.count("odds/live") == 3
    assert session.count("odds") == 2
    assert outcome.meta.live_count == 1
    not_started = next(e for e in outcome.events if e.id == 3)
    assert "STATS_NOT_FETCHED" in not_started.validation.reasons
    assert not_started.unscoreable


def test_odds_trends_compare_with_previous_snapshot():
    coordinator, session, clock = make_coordinator(_single_match_routes(over="1.85"))

    async def run():
        await coordinator.handle()
        session.routes.update(_single_match_routes(over="1.70"))
        clock.advance(61)
        return await coordinator.handle()

    outcome = asyncio.run(run())

    odds = outcome.events[0].odds
    assert odds.over_under.over == 1.70
    assert odds.over_under.over_trend is Trend.DOWN
    assert odds.over_under.under_trend is Trend.STABLE
    assert odds.previous_over == 1.85


def test_finished_and_vanished_events_go_to_history_once():
    history = RecordingHistory()
    fixtures = [make_fixture(fixture_id=1, home_goals=1), make_fixture(fixture_id=2)]
    coordinator, session, clock = make_coordinator(provider_routes(fixtures), history=history)

    async def run():
        await coordinator.handle()
        finished = make_fixture(fixture_id=1, status="FT", elapsed=90, home_goals=2, away_goals=0)
        session.routes.update(provider_routes([finished]))
        clock.advance(61)
        second = await coordinator.handle()
        clock.advance(61)
        third = await coordinator.handle()
        return second, third

    second, third = asyncio.run(run())

    assert second.events == [] and third.events == []
    committed = {event.id: event for event, _ in history.committed}
    assert set(committed) == {1, 2}
    assert len(history.committed) == 2
    assert committed[1].status is MatchStatus.FINISHED
    assert (committed[1].home.score, committed[1].away.score) == (2, 0)
    assert committed[2].status is MatchStatus.SECOND_HALF


def test_history_failure_is_reported_not_raised():
    coordinator, session, clock = make_coordinator(provider_routes([make_fixture(fixture_id=1)]), history=RecordingHistory(fail=True))

    async def run():
        await coordinator.handle()
        session.routes.update(provider_routes([]))
        clock.advance(61)
        return await coordinator.handle()

    outcome = asyncio.run(run())

    assert outcome.status is RefreshStatus.REFRESHED
    assert outcome.meta.errors == ["history:1:RuntimeError"]


def test_failed_history_commit_is_retried_next_cycle():
    history = RecordingHistory(fail_times=1)
    coordinator, session, clock = make_coordinator(provider_routes([make_fixture(fixture_id=1, home_goals=1)]), history=history)

    async def run():
        await coordinator.handle()
        session.routes.update(provider_routes([]))
        clock.advance(61)
        second = await coordinator.handle()
        clock.advance(61)
        third = await coordinator.handle()
        clock.advance(61)
        fourth = await coordinator.handle()
        return second, third, fourth

    second, third, fourth = asyncio.run(run())

    assert second.meta.errors == ["history:1:RuntimeError"]
    assert [event.id for event in second.snapshot.pending_history] == [1]
    assert third.meta.errors == []
    assert third.snapshot.pending_history == []
    assert fourth.snapshot.pending_history == []
    assert [event.id for event, _ in history.committed] == [1]
    assert history.committed[0][0].home.score == 1


def test_pending_history_waits_while_fixture_is_live_again():
    history = RecordingHistory(fail_times=1)
    fixtures = [make_fixture(fixture_id=1)]
    coordinator, session, clock = make_coordinator(provider_routes(fixtures), history=history)

    async def run():
        await coordinator.handle()
        session.routes.update(provider_routes([]))
        clock.advance(61)
        await coordinator.handle()
        session.routes.update(provider_routes(fixtures))
        clock.advance(61)
        return await coordinator.handle()

    outcome = asyncio.run(run())

    assert [event.id for event in outcome.events] == [1]
    assert outcome.snapshot.pending_history == []
    assert history.committed == []


def test_integer_time_in_timeline_does_not_abort_refresh():
    fixture = make_fixture(fixture_id=1001, home_goals=1, away_goals=0)
    timeline = make_timeline((23, "Goal", "Normal Goal", HOME_ID, "Saka"))
    timeline.append({"time": 20, "team": 42, "player": "Rice", "type": "Card", "detail": "Yellow Card"})
    routes = provider_routes([fixture], statistics={1001: make_statistics()}, events={1001: timeline})
    coordinator, _, _ = make_coordinator(routes)

    outcome = asyncio.run(coordinator.handle())

    assert outcome.status is RefreshStatus.REFRESHED
    assert [event.id for event in outcome.events] == [1001]
    assert outcome.meta.errors == []
    assert outcome.events[0].stats.has_real_data


def test_one_bad_fixture_degrades_without_dropping_others(monkeypatch):
    import livescan.services.refresh_coordinator as module

    real_combine = module.combine

    def flaky_combine(fixture, *args, **kwargs):
        if fixture["fixture"]["id"] == 2:
            raise KeyError("boom")
        return real_combine(fixture, *args, **kwargs)

    monkeypatch.setattr(module, "combine", flaky_combine)
    fixtures = [make_fixture(fixture_id=1, home_goals=1), make_fixture(fixture_id=2, status="HT", elapsed=45)]
    coordinator, _, _ = make_coordinator(provider_routes(fixtures))

    outcome = asyncio.run(coordinator.handle())

    by_id = {event.id: event for event in outcome.events}
    assert set(by_id) == {1, 2}
    assert "AGGREGATION_FAILED" not in by_id[1].validation.reasons
    degraded = by_id[2]
    assert degraded.unscoreable
    assert degraded.status is MatchStatus.HALF_TIME
    assert (degraded.home.name, degraded.minute) == ("Arsenal", 45)
    assert degraded.validation.quality is DataQuality.INVALID
    assert degraded.validation.reasons == ["AGGREGATION_FAILED"]
    assert outcome.meta.errors == ["aggregate:2:KeyError"]
    assert coordinator.engine.score_event(degraded).action is Action.IGNORE
