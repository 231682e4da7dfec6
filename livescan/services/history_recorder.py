"""Hands finished events to the match_history table, once per fixture id."""

from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from livescan.core.logging import get_logger
from livescan.db.models import MatchHistory
from livescan.db.session import build_engine, build_sessionmaker, get_session, init_db
from livescan.models.event import Event
from livescan.services.scoring_engine import ScoreResult

logger = get_logger(__name__)


class HistoryRecorder:
    """Idempotent by event id: committing the same fixture twice is a no-op."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], engine: Optional[AsyncEngine] = None):
        self._factory = session_factory
        self._engine = engine

    @classmethod
    def from_dsn(cls, dsn: str) -> "HistoryRecorder":
        engine = build_engine(dsn)
        return cls(build_sessionmaker(engine), engine)

    async def init_schema(self) -> None:
        if self._engine is not None:
            await init_db(self._engine)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()

    async def commit(self, event: Event, result: Optional[ScoreResult]) -> bool:
        """Returns True when a row was written, False when the id was already recorded."""
        async with get_session(self._factory) as session:
            if await session.get(MatchHistory, event.id) is not None:
                logger.debug("fixture %s already in history", event.id)
                return False

            session.add(MatchHistory(
                id=event.id,
                competition_id=event.competition_id,
                competition_name=event.competition_name,
                home_team=event.home.name,
                away_team=event.away.name,
                score_home=event.home.score,
                score_away=event.away.score,
                final_minute=event.minute,
                final_status=event.status.value,
                kill_score=event.kill_score,
                total_score=result.total if result else None,
                confidence=result.confidence if result else None,
                action=result.action.value if result else None,
                data_quality=event.validation.quality.value,
                over_line=event.odds.over_under.line,
                over_price=event.odds.over_under.over,
                event_payload=event.model_dump(mode="json"),
                score_payload=result.to_dict() if result else None,
            ))
            try:
                await session.commit()
            except IntegrityError:
                # 다른 워커가 같은 id 를 먼저 기록
                await session.rollback()
                return False

        logger.info("history: fixture %s committed (%s)", event.id, result.action.value if result else "unscored")
        return True
