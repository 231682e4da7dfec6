import asyncio

from sqlalchemy import func, select

from livescan.db.models import MatchHistory
from livescan.db.session import get_session
from livescan.services.aggregator import combine
from livescan.services.history_recorder import HistoryRecorder
from livescan.services.scoring_engine import ScoringEngine
from tests.factories import make_fixture, make_live_odds, make_statistics


def _event():
    live = make_live_odds(over_under=[("2.5", "1.85", "1.95", True)])
    return combine(make_fixture(fixture_id=321, status="FT", home_goals=2, away_goals=1), make_statistics(), [], live, None)


def test_commit_is_idempotent_by_event_id():
    recorder = HistoryRecorder.from_dsn("sqlite+aiosqlite:///:memory:")
    event = _event()
    result = ScoringEngine().score_event(event)

    async def run():
        await recorder.init_schema()
        try:
            first = await recorder.commit(event, result)
            second = await recorder.commit(event, result)
            async with get_session(recorder._factory) as session:
                rows = await session.scalar(select(func.count()).select_from(MatchHistory))
                row = await session.get(MatchHistory, 321)
            return first, second, rows, row
        finally:
            await recorder.close()

    first, second, rows, row = asyncio.run(run())

    assert first is True
    assert second is False
    assert rows == 1
    assert (row.score_home, row.score_away) == (2, 1)
    assert row.final_status == "finished"
    assert row.action == result.action.value
    assert row.over_line == 2.5
    assert row.event_payload["id"] == 321
    assert row.score_payload["total"] == result.total


def test_commit_without_score_result():
    recorder = HistoryRecorder.from_dsn("sqlite+aiosqlite:///:memory:")
    event = combine(make_fixture(fixture_id=9), None, None, None, None)

    async def run():
        await recorder.init_schema()
        try:
            written = await recorder.commit(event, None)
            async with get_session(recorder._factory) as session:
                return written, await session.get(MatchHistory, 9)
        finally:
            await recorder.close()

    written, row = asyncio.run(run())

    assert written
    assert row.total_score is None
    assert row.data_quality == "INVALID"
