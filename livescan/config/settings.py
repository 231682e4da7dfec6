from functools import lru_cache
from typing import Optional

from pydantic import HttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # API-Football (api-sports.io direct)
    api_football_key: Optional[str] = None
    api_football_base_url: HttpUrl = "https://v3.football.api-sports.io"

    # 공유 스토어 (미설정 시 프로세스 로컬 인메모리 스토어)
    redis_url: Optional[str] = None

    # 히스토리 기록용 DB (미설정 시 로그만 남김)
    history_dsn: Optional[str] = None

    rate_limit_per_sec: float = 5.0
    request_timeout_seconds: float = 10.0
    upstream_retry_attempts: int = 2

    # 캐시 신선도 정책
    fresh_ttl_seconds: float = 15.0
    stale_ttl_seconds: float = 60.0
    lock_ttl_seconds: int = 45
    lock_wait_seconds: float = 2.0
    snapshot_ttl_seconds: int = 300
    next_refresh_seconds: int = 60

    # 배치 정책
    stats_batch_size: int = 10
    stats_batch_delay_ms: int = 30
    odds_batch_size: int = 8
    odds_batch_delay_ms: int = 50
    prematch_odds_cap: int = 20

    log_level: str = "INFO"
    api_rate_limit: str = "120/minute"


@lru_cache
def get_settings() -> Settings:
    return Settings()
