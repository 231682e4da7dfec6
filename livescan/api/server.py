"""
Live Scanner API 서버

- /api/matches 라우터 (스냅샷 / 시그널 / 단일 경기 스코어)
- /health: 공유 스토어 연결 상태, 마지막 리프레시, 경기 수
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from livescan import __version__
from livescan.api.routes import matches
from livescan.clients.api_football import ApiFootballClient
from livescan.config.settings import Settings, get_settings
from livescan.core.error_handling import LiveScanError
from livescan.core.logging import get_logger
from livescan.services.cache import CacheStore, build_shared_store
from livescan.services.history_recorder import HistoryRecorder
from livescan.services.refresh_coordinator import RefreshCoordinator
from livescan.services.scoring_engine import ScoringEngine

logger = get_logger(__name__)


def build_coordinator(settings: Settings) -> RefreshCoordinator:
    """설정으로부터 스토어/클라이언트/히스토리를 조립"""
    cache = CacheStore(build_shared_store(settings), snapshot_ttl=settings.snapshot_ttl_seconds)
    history = HistoryRecorder.from_dsn(settings.history_dsn) if settings.history_dsn else None
    return RefreshCoordinator(
        cache,
        ApiFootballClient(settings),
        settings,
        engine=ScoringEngine(),
        history=history,
    )


async def close_coordinator(coordinator: RefreshCoordinator) -> None:
    await coordinator.drain()
    await coordinator.client.close()
    await coordinator.cache.store.close()
    if coordinator.history is not None:
        await coordinator.history.close()


def create_app(
    settings: Optional[Settings] = None,
    coordinator: Optional[RefreshCoordinator] = None,
) -> FastAPI:
    """
    Args:
        settings: None 이면 환경 변수에서 로드
        coordinator: 주입 시 수명 관리는 호출자 책임 (테스트)
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.coordinator is None
        if owned:
            app.state.coordinator = build_coordinator(settings)
            if app.state.coordinator.history is not None:
                await app.state.coordinator.history.init_schema()
        logger.info("Live scanner API 시작 (v%s)", __version__)
        try:
            yield
        finally:
            if owned:
                await close_coordinator(app.state.coordinator)
            else:
                await app.state.coordinator.drain()
            logger.info("Live scanner API 종료")

    app = FastAPI(
        title="Live Match Scanner API",
        description="라이브 경기 집계, 검증, 스코어링",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.coordinator = coordinator
    app.state.engine = coordinator.engine if coordinator is not None else ScoringEngine()

    # Rate Limiting 설정
    app.state.limiter = matches.limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(LiveScanError)
    async def livescan_error_handler(request: Request, exc: LiveScanError):
        return matches.error_from_exception(exc)

    @app.get("/health")
    async def health_check(request: Request):
        """공유 스토어 상태 확인"""
        cache: CacheStore = request.app.state.coordinator.cache
        store = await cache.health()
        return {
            "status": "healthy" if store["connected"] else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": __version__,
            "store": store,
        }

    app.include_router(matches.router)
    return app
