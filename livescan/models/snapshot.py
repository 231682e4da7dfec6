"""Refresh-cycle metadata and the cached snapshot that readers are served from."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from livescan.models.event import Event


class Coverage(BaseModel):
    model_config = ConfigDict(frozen=True)

    with_any_odds: int = 0
    with_over_under: int = 0
    with_real_stats: int = 0


class RefreshMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    started_at: datetime
    next_refresh: datetime
    match_count: int = 0
    live_count: int = 0
    api_calls_this_cycle: int = 0
    duration_ms: int = 0
    errors: List[str] = Field(default_factory=list)
    coverage: Optional[Coverage] = None


class CachedSnapshot(BaseModel):
    """Replaced wholesale on every successful refresh; never patched in place."""

    model_config = ConfigDict(frozen=True)

    events: List[Event] = Field(default_factory=list)
    meta: RefreshMeta
    stored_at: datetime
    # 히스토리 커밋에 실패해 다음 사이클에 재시도할 종료 경기
    pending_history: List[Event] = Field(default_factory=list)

    def age_seconds(self, now: datetime) -> float:
        return max((now - self.stored_at).total_seconds(), 0.0)

    def find(self, event_id: int) -> Optional[Event]:
        for event in self.events:
            if event.id == event_id:
                return event
        return None
