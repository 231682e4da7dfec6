"""
Live Matches API Router

- GET /api/matches                  : 캐시 스냅샷 (필요 시 리프레시)
- GET /api/matches/signals          : 스코어 기준 정렬된 시그널 (요청마다 계산)
- GET /api/matches/{event_id}/score : 단일 경기 ScoreResult
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from livescan.config.constants import RefreshConstants
from livescan.config.settings import get_settings
from livescan.core.error_handling import LiveScanError, RefreshError, RefreshInProgressError
from livescan.core.logging import get_logger
from livescan.services.refresh_coordinator import RefreshCoordinator, RefreshOutcome, RefreshStatus
from livescan.services.scoring_engine import Action, ScoringEngine

logger = get_logger(__name__)

router = APIRouter(prefix="/api/matches", tags=["Matches"])

# Rate Limiter 인스턴스
limiter = Limiter(key_func=get_remote_address)

_ERROR_STATUS = {
    RefreshError: 503,
    RefreshInProgressError: 503,
}


def _rate_limit() -> str:
    return get_settings().api_rate_limit


def error_response(status_code: int, code: str, message: str, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"code": code, "message": message}},
        headers=headers,
    )


def error_from_exception(exc: LiveScanError) -> JSONResponse:
    status_code = next((s for cls, s in _ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    return error_response(status_code, exc.code, exc.message)


def _coordinator(request: Request) -> RefreshCoordinator:
    return request.app.state.coordinator


async def _load(request: Request) -> RefreshOutcome:
    return await _coordinator(request).handle()


def build_meta(outcome: RefreshOutcome, api_calls_today: int) -> Dict[str, Any]:
    meta = outcome.meta
    # 방금 리프레시한 경우도 응답에서는 FRESH
    status = RefreshStatus.STALE_REFRESHING if outcome.status is RefreshStatus.STALE_REFRESHING else RefreshStatus.FRESH
    return {
        "total": meta.match_count,
        "live": meta.live_count,
        "lastRefresh": outcome.snapshot.stored_at.isoformat(),
        "nextRefresh": meta.next_refresh.isoformat(),
        "cacheAge": round(outcome.cache_age, 1),
        "apiCallsToday": api_calls_today,
        "status": status.value,
        "refreshDuration": meta.duration_ms,
        "apiCallsThisCycle": meta.api_calls_this_cycle,
        "errors": meta.errors,
        "coverage": meta.coverage.model_dump() if meta.coverage else None,
    }


def _cache_control(outcome: RefreshOutcome) -> str:
    if outcome.status is RefreshStatus.STALE_REFRESHING:
        return RefreshConstants.CACHE_CONTROL_STALE
    return RefreshConstants.CACHE_CONTROL_FRESH


# ============================================================================
# Endpoints
# ============================================================================

@router.get("")
@limiter.limit(_rate_limit)
async def list_matches(request: Request):
    """
    라이브 경기 목록

    스냅샷 나이에 따라 캐시 그대로 / 백그라운드 리프레시 / 동기 리프레시
    """
    coordinator = _coordinator(request)
    try:
        outcome = await coordinator.handle()
        api_calls_today = await coordinator.cache.get_api_calls_today()
    except LiveScanError as e:
        logger.error(f"매치 조회 실패: {e.code}: {e.message}")
        return error_from_exception(e)
    except Exception as e:
        logger.exception(f"매치 조회 중 예상치 못한 오류: {e}")
        return error_response(500, "INTERNAL_ERROR", "Internal server error")

    return JSONResponse(
        content={
            "success": True,
            "data": {
                "matches": [event.model_dump(mode="json") for event in outcome.events],
                "meta": build_meta(outcome, api_calls_today),
            },
        },
        headers={"Cache-Control": _cache_control(outcome)},
    )


@router.api_route("", methods=["POST", "PUT", "PATCH", "DELETE"], include_in_schema=False)
async def list_matches_method_not_allowed(request: Request):
    return error_response(405, "METHOD_NOT_ALLOWED", "Method not allowed", headers={"Allow": "GET"})


@router.get("/signals")
@limiter.limit(_rate_limit)
async def list_signals(request: Request, min_action: Optional[Action] = Query(None)):
    """
    스코어 시그널

    unscoreable 경기는 제외. min_action 이상 액션만 반환 (BET > PREPARE > WATCH > IGNORE)
    """
    try:
        outcome = await _load(request)
    except LiveScanError as e:
        return error_from_exception(e)

    engine: ScoringEngine = request.app.state.engine
    results = [
        engine.score_event(event, data_age=outcome.cache_age)
        for event in outcome.events
        if not event.unscoreable
    ]
    if min_action is not None:
        results = [r for r in results if r.action.rank >= min_action.rank]
    results.sort(key=lambda r: (r.total, r.confidence), reverse=True)

    return JSONResponse(
        content={
            "success": True,
            "data": {
                "signals": [r.to_dict() for r in results],
                "count": len(results),
                "cacheAge": round(outcome.cache_age, 1),
            },
        },
        headers={"Cache-Control": _cache_control(outcome)},
    )


@router.get("/{event_id}/score")
@limiter.limit(_rate_limit)
async def get_event_score(request: Request, event_id: int):
    """단일 경기 스코어 (요청 시점 계산)"""
    try:
        outcome = await _load(request)
    except LiveScanError as e:
        return error_from_exception(e)

    event = outcome.snapshot.find(event_id)
    if event is None:
        return error_response(404, "NOT_FOUND", f"Event {event_id} is not in the live set")
    if event.unscoreable:
        return error_response(422, "UNSCOREABLE", f"Event {event_id} has no real statistics")

    engine: ScoringEngine = request.app.state.engine
    result = engine.score_event(event, data_age=outcome.cache_age)
    return {"success": True, "data": result.to_dict()}
