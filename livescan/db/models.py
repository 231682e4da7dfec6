from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from livescan.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MatchHistory(Base):
    """Finished match with its last score result. One row per provider fixture id."""

    __tablename__ = "match_history"

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=False
    )  # fixture id from provider
    committed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )

    competition_id: Mapped[Optional[int]] = mapped_column(Integer)
    competition_name: Mapped[str] = mapped_column(String(128), default="")
    home_team: Mapped[str] = mapped_column(String(128), nullable=False)
    away_team: Mapped[str] = mapped_column(String(128), nullable=False)
    score_home: Mapped[Optional[int]] = mapped_column(Integer)
    score_away: Mapped[Optional[int]] = mapped_column(Integer)
    final_minute: Mapped[int] = mapped_column(Integer, default=0)
    final_status: Mapped[str] = mapped_column(String(32))

    kill_score: Mapped[int] = mapped_column(Integer, default=0)
    total_score: Mapped[Optional[int]] = mapped_column(Integer)
    confidence: Mapped[Optional[int]] = mapped_column(Integer)
    action: Mapped[Optional[str]] = mapped_column(String(16))
    data_quality: Mapped[Optional[str]] = mapped_column(String(16))
    over_line: Mapped[Optional[float]] = mapped_column(Float)
    over_price: Mapped[Optional[float]] = mapped_column(Float)

    event_payload: Mapped[dict] = mapped_column(JSON)
    score_payload: Mapped[Optional[dict]] = mapped_column(JSON)
