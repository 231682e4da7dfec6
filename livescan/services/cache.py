"""
공유 스토어 / 스냅샷 캐시

여러 워커가 함께 쓰는 상태는 스냅샷과 리프레시 락 두 가지뿐이며, 모두
주입된 SharedStore 에 저장합니다. 프로세스 내 싱글톤에 의존하지 않습니다.

- SharedStore: get / set / incr / try_acquire_lock / release_lock 인터페이스
- InMemoryStore: 단일 프로세스(개발/테스트)용 구현
- RedisStore: redis.asyncio 구현. 락은 SET NX EX, 해제는 토큰 비교 후 삭제
- CacheStore: 스냅샷(JSON 한 키로 원자적 교체), 락, 일일 API 호출 카운터
"""

import asyncio
import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import redis.asyncio as redis
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from livescan.config.constants import RefreshConstants
from livescan.config.settings import Settings
from livescan.core.error_handling import StoreError, async_error_handler
from livescan.core.logging import get_logger
from livescan.models.snapshot import CachedSnapshot

logger = get_logger(__name__)

# 토큰이 일치할 때만 삭제 (만료 후 다른 워커가 잡은 락을 지우지 않도록)
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class SharedStore(ABC):
    """모든 워커가 접근하는 키-값 스토어"""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int = 0) -> None:
        ...

    @abstractmethod
    async def incr(self, key: str, amount: int = 1, ttl: int = 0) -> int:
        ...

    @abstractmethod
    async def try_acquire_lock(self, name: str, ttl: int) -> Optional[str]:
        """Non-blocking. Returns an owner token when acquired, None when held elsewhere."""

    @abstractmethod
    async def release_lock(self, name: str, token: str) -> bool:
        ...

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None

    def stats(self) -> Dict[str, Any]:
        return {"type": type(self).__name__}


class InMemoryStore(SharedStore):
    """인메모리 스토어 (단일 프로세스 전용)"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._data: Dict[str, Dict[str, Any]] = {}
        self._clock = clock
        self._lock = asyncio.Lock()

    def _live_entry(self, key: str) -> Optional[Dict[str, Any]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry["expires_at"] is not None and self._clock() >= entry["expires_at"]:
            del self._data[key]
            return None
        return entry

    def _put(self, key: str, value: str, ttl: int) -> None:
        self._data[key] = {
            "value": value,
            "expires_at": self._clock() + ttl if ttl > 0 else None,
        }

    async def get(self, key: str) -> Optional[str]:
        entry = self._live_entry(key)
        return entry["value"] if entry else None

    async def set(self, key: str, value: str, ttl: int = 0) -> None:
        self._put(key, value, ttl)

    async def incr(self, key: str, amount: int = 1, ttl: int = 0) -> int:
        async with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                self._put(key, str(amount), ttl)
                return amount
            value = int(entry["value"]) + amount
            entry["value"] = str(value)
            return value

    async def try_acquire_lock(self, name: str, ttl: int) -> Optional[str]:
        async with self._lock:
            if self._live_entry(name) is not None:
                return None
            token = uuid.uuid4().hex
            self._put(name, token, ttl)
            return token

    async def release_lock(self, name: str, token: str) -> bool:
        async with self._lock:
            entry = self._live_entry(name)
            if entry is None or entry["value"] != token:
                return False
            del self._data[name]
            return True

    def stats(self) -> Dict[str, Any]:
        return {"type": "in_memory", "size": len(self._data)}


class RedisStore(SharedStore):
    """Redis 스토어. 연결 오류는 StoreError 로 올린다 (인메모리로 조용히 폴백하지 않음)."""

    def __init__(self, redis_url: str, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self._client = client or redis.from_url(redis_url, encoding="utf-8", decode_responses=True)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client.get(key)
        except RedisError as e:
            raise StoreError(f"Redis get failed: {e}", details={"key": key}) from e

    async def set(self, key: str, value: str, ttl: int = 0) -> None:
        try:
            if ttl > 0:
                await self._client.set(key, value, ex=ttl)
            else:
                await self._client.set(key, value)
        except RedisError as e:
            raise StoreError(f"Redis set failed: {e}", details={"key": key}) from e

    async def incr(self, key: str, amount: int = 1, ttl: int = 0) -> int:
        try:
            value = await self._client.incrby(key, amount)
            if ttl > 0 and value == amount:
                await self._client.expire(key, ttl)
            return int(value)
        except RedisError as e:
            raise StoreError(f"Redis incr failed: {e}", details={"key": key}) from e

    async def try_acquire_lock(self, name: str, ttl: int) -> Optional[str]:
        token = uuid.uuid4().hex
        try:
            acquired = await self._client.set(name, token, nx=True, ex=ttl)
        except RedisError as e:
            raise StoreError(f"Redis lock failed: {e}", details={"lock": name}) from e
        return token if acquired else None

    async def release_lock(self, name: str, token: str) -> bool:
        try:
            return bool(await self._client.eval(_RELEASE_SCRIPT, 1, name, token))
        except RedisError as e:
            raise StoreError(f"Redis unlock failed: {e}", details={"lock": name}) from e

    @async_error_handler(func_name="redis.ping", default_return=False, reraise=False, log_level="warning", exceptions=(RedisError,))
    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()

    def stats(self) -> Dict[str, Any]:
        return {"type": "redis", "url": self.redis_url}


def build_shared_store(settings: Settings) -> SharedStore:
    if settings.redis_url:
        return RedisStore(settings.redis_url)
    logger.warning("REDIS_URL not set: using process-local store (single worker only)")
    return InMemoryStore()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheStore:
    """스냅샷/락/호출 카운터를 SharedStore 위에 올린 캐시 계층"""

    def __init__(
        self,
        store: SharedStore,
        snapshot_ttl: int = 300,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.snapshot_ttl = snapshot_ttl
        self._clock = clock

    # ---------- snapshot ----------

    async def read_snapshot(self) -> Optional[CachedSnapshot]:
        raw = await self.store.get(RefreshConstants.SNAPSHOT_KEY)
        if raw is None:
            return None
        try:
            return CachedSnapshot.model_validate_json(raw)
        except PydanticValidationError as e:
            logger.warning("Discarding unreadable snapshot: %s", e.errors()[:1])
            return None

    async def write_snapshot(self, snapshot: CachedSnapshot) -> None:
        # 스냅샷 전체를 한 키에 쓰므로 읽는 쪽은 부분 기록을 볼 수 없다
        await self.store.set(RefreshConstants.SNAPSHOT_KEY, snapshot.model_dump_json(), ttl=self.snapshot_ttl)

    # ---------- lock ----------

    async def try_acquire_refresh_lock(self, ttl: int) -> Optional[str]:
        return await self.store.try_acquire_lock(RefreshConstants.LOCK_NAME, ttl)

    async def release_refresh_lock(self, token: str) -> bool:
        released = await self.store.release_lock(RefreshConstants.LOCK_NAME, token)
        if not released:
            logger.warning("Refresh lock already expired or taken over before release")
        return released

    # ---------- daily api calls ----------

    def _api_calls_key(self) -> str:
        return f"{RefreshConstants.API_CALLS_KEY_PREFIX}:{self._clock().strftime('%Y-%m-%d')}"

    async def increment_api_calls(self, count: int = 1) -> int:
        if count <= 0:
            return await self.get_api_calls_today()
        return await self.store.incr(self._api_calls_key(), count, ttl=RefreshConstants.API_CALLS_TTL_SECONDS)

    async def get_api_calls_today(self) -> int:
        raw = await self.store.get(self._api_calls_key())
        return int(raw) if raw else 0

    # ---------- health ----------

    async def health(self) -> Dict[str, Any]:
        connected = await self.store.ping()
        snapshot = await self.read_snapshot() if connected else None
        return {
            "store": self.store.stats(),
            "connected": connected,
            "last_refresh": snapshot.stored_at.isoformat() if snapshot else None,
            "match_count": snapshot.meta.match_count if snapshot else 0,
            "api_calls_today": await self.get_api_calls_today() if connected else None,
        }
