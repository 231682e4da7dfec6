"""API 엔드포인트 테스트 (FastAPI TestClient)"""

import asyncio

from fastapi.testclient import TestClient

from livescan.api.server import create_app
from livescan.config.constants import RefreshConstants
from livescan.core.error_handling import ConfigurationError
from livescan.services.scoring_engine import ScoringEngine
from tests.factories import (
    AWAY_ID,
    HOME_ID,
    make_coordinator,
    make_fixture,
    make_live_odds,
    make_settings,
    make_statistics,
    make_timeline,
    provider_routes,
)


def _routes():
    scoreable = make_fixture(fixture_id=1001, status="2H", elapsed=80, home_goals=1, away_goals=1)
    no_stats = make_fixture(fixture_id=2002, status="2H", elapsed=50)
    return provider_routes(
        [scoreable, no_stats],
        statistics={1001: make_statistics(shots=(15, 10), on_target=(8, 4), possession=("55%", "45%"), xg=("2.00", "1.20"))},
        events={1001: make_timeline(
            (23, "Goal", "Normal Goal", HOME_ID, "Saka"),
            (61, "Goal", "Normal Goal", AWAY_ID, "Palmer"),
        )},
        live_odds={1001: make_live_odds(over_under=[("2.5", "1.85", "1.95", True)], handicap=None, match_winner=None)},
    )


def _client(coordinator):
    return TestClient(create_app(make_settings(), coordinator=coordinator))


def test_list_matches_refreshes_and_reports_fresh():
    coordinator, _, _ = make_coordinator(_routes())

    with _client(coordinator) as client:
        response = client.get("/api/matches")

    body = response.json()
    assert response.status_code == 200
    assert response.headers["cache-control"] == RefreshConstants.CACHE_CONTROL_FRESH
    assert body["success"] is True
    meta = body["data"]["meta"]
    assert meta["status"] == "FRESH"
    assert meta["total"] == 2
    assert meta["live"] == 2
    assert meta["cacheAge"] == 0
    assert meta["apiCallsToday"] == 9
    assert {"lastRefresh", "nextRefresh", "refreshDuration"} <= set(meta)
    assert {m["id"] for m in body["data"]["matches"]} == {1001, 2002}


def test_stale_snapshot_served_with_stale_headers():
    coordinator, session, clock = make_coordinator(_routes())
    asyncio.run(coordinator.refresh())
    clock.advance(30)

    with _client(coordinator) as client:
        response = client.get("/api/matches")

    assert response.status_code == 200
    assert response.json()["data"]["meta"]["status"] == "STALE_REFRESHING"
    assert response.json()["data"]["meta"]["cacheAge"] == 30
    assert response.headers["cache-control"] == RefreshConstants.CACHE_CONTROL_STALE
    # 백그라운드 리프레시는 앱 종료 시 drain 된다
    assert session.count("fixtures") == 2


def test_non_get_is_405_envelope():
    coordinator, _, _ = make_coordinator(_routes())

    with _client(coordinator) as client:
        response = client.post("/api/matches")

    assert response.status_code == 405
    assert response.json() == {"success": False, "error": {"code": "METHOD_NOT_ALLOWED", "message": "Method not allowed"}}


def test_refresh_failure_is_503():
    coordinator, _, _ = make_coordinator({"fixtures": lambda params: (500, {})})

    with _client(coordinator) as client:
        response = client.get("/api/matches")

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "REFRESH_FAILED"
    assert response.json()["success"] is False


def test_missing_key_is_500_configuration_error():
    coordinator, _, _ = make_coordinator(provider_routes([]), api_football_key=None)

    with _client(coordinator) as client:
        response = client.get("/api/matches")

    assert response.status_code == 500
    assert response.json()["error"]["code"] == ConfigurationError.code


class _BrokenCoordinator:
    engine = ScoringEngine()

    async def handle(self):
        raise ValueError("boom")

    async def drain(self):
        return None


def test_unexpected_error_is_500_internal():
    with _client(_BrokenCoordinator()) as client:
        response = client.get("/api/matches")

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "INTERNAL_ERROR"


def test_signals_exclude_unscoreable_and_filter_by_action():
    coordinator, _, _ = make_coordinator(_routes())

    with _client(coordinator) as client:
        everything = client.get("/api/matches/signals").json()["data"]
        bets = client.get("/api/matches/signals", params={"min_action": "BET"}).json()["data"]

    assert everything["count"] == 1
    assert everything["signals"][0]["event_id"] == 1001
    assert bets["signals"][0]["action"] == "BET"


def test_score_view_statuses():
    coordinator, _, _ = make_coordinator(_routes())

    with _client(coordinator) as client:
        scored = client.get("/api/matches/1001/score")
        unscoreable = client.get("/api/matches/2002/score")
        missing = client.get("/api/matches/9999/score")

    assert scored.status_code == 200
    assert scored.json()["data"]["total"] == 88
    assert unscoreable.status_code == 422
    assert unscoreable.json()["error"]["code"] == "UNSCOREABLE"
    assert missing.status_code == 404


def test_health_reports_store():
    coordinator, _, _ = make_coordinator(_routes())

    with _client(coordinator) as client:
        client.get("/api/matches")
        health = client.get("/health").json()

    assert health["status"] == "healthy"
    assert health["store"]["connected"] is True
    assert health["store"]["match_count"] == 2
