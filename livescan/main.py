"""
Live Match Scanner 실행기

사용법:
    python -m livescan.main --serve            # API 서버
    python -m livescan.main --refresh-once     # 리프레시 1회 실행 후 메타 출력
    python -m livescan.main --init-db          # 히스토리 테이블 생성
"""

import argparse
import asyncio
import json
import sys

import uvicorn

from livescan.api.server import build_coordinator, close_coordinator, create_app
from livescan.config.settings import get_settings
from livescan.core.error_handling import LiveScanError
from livescan.core.logging import get_logger, setup_logging
from livescan.services.history_recorder import HistoryRecorder

logger = get_logger(__name__)


async def refresh_once() -> int:
    settings = get_settings()
    coordinator = build_coordinator(settings)
    try:
        previous = await coordinator.cache.read_snapshot()
        token = await coordinator.cache.try_acquire_refresh_lock(settings.lock_ttl_seconds)
        if token is None:
            logger.warning("다른 워커가 리프레시 중입니다")
            return 1
        try:
            snapshot = await coordinator.refresh(previous)
        finally:
            await coordinator.cache.release_refresh_lock(token)
    except LiveScanError as e:
        logger.error(f"리프레시 실패: {e.code}: {e.message}")
        return 1
    finally:
        await close_coordinator(coordinator)

    print(json.dumps(snapshot.meta.model_dump(mode="json"), indent=2, ensure_ascii=False))
    return 0


async def init_db() -> int:
    settings = get_settings()
    if not settings.history_dsn:
        logger.error("HISTORY_DSN 이 설정되지 않았습니다")
        return 1
    recorder = HistoryRecorder.from_dsn(settings.history_dsn)
    try:
        await recorder.init_schema()
    finally:
        await recorder.close()
    logger.info("히스토리 테이블 생성 완료")
    return 0


def main(argv=None) -> int:
    """메인 함수"""
    parser = argparse.ArgumentParser(description="라이브 경기 스캐너")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--serve", action="store_true", help="API 서버 실행")
    group.add_argument("--refresh-once", action="store_true", help="리프레시 1회 실행")
    group.add_argument("--init-db", action="store_true", help="히스토리 테이블 생성")
    parser.add_argument("--host", default="0.0.0.0", help="서버 호스트")
    parser.add_argument("--port", type=int, default=8000, help="서버 포트")

    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level)

    if args.serve:
        uvicorn.run(create_app(settings), host=args.host, port=args.port, log_level=settings.log_level.lower())
        return 0
    if args.refresh_once:
        return asyncio.run(refresh_once())
    return asyncio.run(init_db())


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
