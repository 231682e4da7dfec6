"""
표준 에러 핸들링 모듈

- 커스텀 예외 계층 (코드 + 상세정보, 응답 바디로 직렬화 가능)
- 컴포넌트 로컬 오류를 데이터 품질 신호로 바꾸는 데코레이터
- 컨텍스트 포함 에러 로깅
"""

import functools
import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


# ==================== 커스텀 예외 클래스 ====================

class LiveScanError(Exception):
    """라이브 스캐너 기본 예외"""

    code = "UNKNOWN"

    def __init__(self, message: str, code: Optional[str] = None, details: dict = None):
        self.message = message
        self.code = code or self.code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp,
        }


class APIError(LiveScanError):
    """외부 API 예외 (non-2xx 응답 또는 응답 바디의 errors 필드)"""

    code = "API_ERROR"

    def __init__(
        self,
        message: str,
        api_name: str = "unknown",
        status_code: Optional[int] = None,
        retryable: bool = False,
        details: dict = None,
    ):
        super().__init__(message, details=details)
        self.api_name = api_name
        self.status_code = status_code
        self.retryable = retryable
        self.details["api_name"] = api_name
        self.details["status_code"] = status_code


class ConfigurationError(LiveScanError):
    """설정 관련 예외. 재시도하지 않으며 빈 데이터로 진행하지 않는다."""

    code = "CONFIGURATION_ERROR"

    def __init__(self, message: str, config_key: str = None, details: dict = None):
        super().__init__(message, details=details)
        self.config_key = config_key
        self.details["config_key"] = config_key


class RefreshError(LiveScanError):
    """리프레시 전체 실패 (라이브 경기 목록 자체를 가져오지 못함 등)"""

    code = "REFRESH_FAILED"


class RefreshInProgressError(LiveScanError):
    """다른 워커가 리프레시 중이고 대기 후에도 서빙할 스냅샷이 없음"""

    code = "REFRESH_IN_PROGRESS"


class StoreError(LiveScanError):
    """공유 스토어(Redis 등) 접근 실패"""

    code = "STORE_ERROR"


# ==================== 에러 핸들링 데코레이터 ====================

def _log_failure(name: str, exc: Exception, log_level: str) -> None:
    log_func = getattr(logger, log_level, logger.error)
    log_func(f"[{name}] 오류 발생: {type(exc).__name__}: {exc}")
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"[{name}] 스택 트레이스:\n{traceback.format_exc()}")


def async_error_handler(
    func_name: str = None,
    default_return: Any = None,
    reraise: bool = True,
    log_level: str = "error",
    exceptions: tuple = (Exception,)
):
    """
    비동기 함수용 표준 에러 핸들링 데코레이터

    Args:
        func_name: 로깅에 사용할 함수 이름 (None이면 실제 함수명 사용)
        default_return: 예외 발생 시 반환할 기본값
        reraise: 예외를 다시 발생시킬지 여부
        log_level: 로깅 레벨 ("error", "warning", "info")
        exceptions: 처리할 예외 튜플

    Usage:
        @async_error_handler(func_name="history", default_return=False, reraise=False)
        async def commit(...):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            name = func_name or func.__name__
            try:
                return await func(*args, **kwargs)
            except exceptions as e:
                _log_failure(name, e, log_level)
                if reraise:
                    raise
                return default_return
        return wrapper
    return decorator


def sync_error_handler(
    func_name: str = None,
    default_return: Any = None,
    reraise: bool = True,
    log_level: str = "error",
    exceptions: tuple = (Exception,)
):
    """
    동기 함수용 표준 에러 핸들링 데코레이터

    Usage:
        @sync_error_handler(func_name="odds.ou", default_return=None, reraise=False)
        def parse_market(...):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            name = func_name or func.__name__
            try:
                return func(*args, **kwargs)
            except exceptions as e:
                _log_failure(name, e, log_level)
                if reraise:
                    raise
                return default_return
        return wrapper
    return decorator


# ==================== 유틸리티 함수 ====================

def log_error_with_context(
    exception: BaseException,
    context: dict = None,
    level: str = "error"
):
    """컨텍스트와 함께 에러 로깅"""
    log_func = getattr(logger, level, logger.error)

    error_info = {
        "error_type": type(exception).__name__,
        "error_message": str(exception),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if context:
        error_info["context"] = context

    if isinstance(exception, LiveScanError):
        error_info["error_code"] = exception.code
        error_info["details"] = exception.details

    log_func(f"에러 발생: {error_info}")
