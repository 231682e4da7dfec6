"""
데이터 품질 검증 모듈

경기 하나에 대해 4개 소스(fixture / statistics / odds / timeline)를 각각
실데이터 여부로 분류하고, 누락 사유 코드를 누적합니다.

품질 판정:
    실데이터 소스 >= 3  -> REAL
    실데이터 소스 >= 1  -> PARTIAL
    그 외               -> INVALID

사용 예시:
    validator = DataValidator()
    validation = validator.validate(event, stats_payload, live_odds_payload, timeline_payload)
    print(validation.quality, validation.reasons)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from livescan.config.constants import FixtureStatusConstants, ValidationConstants
from livescan.core.logging import get_logger
from livescan.models.event import DataQuality, Event, FetchStatus, MatchStatus, Validation
from livescan.services.payload import as_int, dicts, dig, pick_team_blocks

logger = get_logger(__name__)

Payload = List[Dict[str, Any]]


class ReasonCode(str, Enum):
    """누락/이상 사유 코드 (소스 접두어 + 사유)"""
    # fixture
    FIXTURE_MISSING_ID = "FIXTURE_MISSING_ID"
    FIXTURE_UNKNOWN_STATUS = "FIXTURE_UNKNOWN_STATUS"
    FIXTURE_MISSING_TEAM_IDS = "FIXTURE_MISSING_TEAM_IDS"
    FIXTURE_MISSING_GOALS = "FIXTURE_MISSING_GOALS"
    FIXTURE_MISSING_ELAPSED = "FIXTURE_MISSING_ELAPSED"  # 진행 중인데 경과 시간 없음
    FIXTURE_MISSING_LEAGUE = "FIXTURE_MISSING_LEAGUE"
    # statistics
    STATS_NOT_FETCHED = "STATS_NOT_FETCHED"
    STATS_EMPTY = "STATS_EMPTY"
    STATS_MISSING_HOME = "STATS_MISSING_HOME"
    STATS_MISSING_AWAY = "STATS_MISSING_AWAY"
    STATS_MISSING_SHOTS = "STATS_MISSING_SHOTS"
    STATS_MISSING_SHOTS_ON_TARGET = "STATS_MISSING_SHOTS_ON_TARGET"
    STATS_MISSING_POSSESSION = "STATS_MISSING_POSSESSION"
    STATS_MISSING_CORNERS = "STATS_MISSING_CORNERS"
    # odds
    ODDS_NOT_FETCHED = "ODDS_NOT_FETCHED"
    ODDS_FETCH_ERROR = "ODDS_FETCH_ERROR"
    ODDS_EMPTY = "ODDS_EMPTY"
    ODDS_PREMATCH_FALLBACK = "ODDS_PREMATCH_FALLBACK"  # 라이브 배당 없음, 프리매치 사용
    ODDS_SUSPENDED = "ODDS_SUSPENDED"
    ODDS_MISSING_1X2 = "ODDS_MISSING_1X2"
    ODDS_MISSING_OVER_UNDER = "ODDS_MISSING_OVER_UNDER"
    ODDS_MISSING_ASIAN_HANDICAP = "ODDS_MISSING_ASIAN_HANDICAP"
    # timeline
    TIMELINE_NOT_FETCHED = "TIMELINE_NOT_FETCHED"
    TIMELINE_EMPTY = "TIMELINE_EMPTY"
    # 병합 실패 (경기 단위로 격리)
    AGGREGATION_FAILED = "AGGREGATION_FAILED"


@dataclass
class SourceCheck:
    """소스 하나의 검증 결과"""
    real: bool
    reasons: List[ReasonCode] = field(default_factory=list)


_MARKET_REASONS = {
    "1X2": ReasonCode.ODDS_MISSING_1X2,
    "OVER_UNDER": ReasonCode.ODDS_MISSING_OVER_UNDER,
    "ASIAN_HANDICAP": ReasonCode.ODDS_MISSING_ASIAN_HANDICAP,
}


def classify_quality(real_count: int) -> DataQuality:
    if real_count >= ValidationConstants.REAL_SOURCES_REQUIRED:
        return DataQuality.REAL
    if real_count >= ValidationConstants.PARTIAL_SOURCES_REQUIRED:
        return DataQuality.PARTIAL
    return DataQuality.INVALID


def _stat_present(block: Dict[str, Any], stat_type: str) -> bool:
    for item in dicts(block.get("statistics")):
        if item.get("type") == stat_type:
            value = item.get("value")
            return value is not None and value != ""
    return False


class DataValidator:
    """경기 단위 데이터 품질 검증기. 상태를 갖지 않는다."""

    # ========== 소스별 검증 ==========

    def check_fixture(self, event: Event) -> SourceCheck:
        reasons: List[ReasonCode] = []
        core_missing = False

        if not event.id:
            reasons.append(ReasonCode.FIXTURE_MISSING_ID)
            core_missing = True
        if event.status is MatchStatus.UNKNOWN:
            reasons.append(ReasonCode.FIXTURE_UNKNOWN_STATUS)
            core_missing = True
        if event.home.id is None or event.away.id is None:
            reasons.append(ReasonCode.FIXTURE_MISSING_TEAM_IDS)
            core_missing = True

        in_play = event.status_code in FixtureStatusConstants.DETAIL_CODES
        if in_play and (event.home.score is None or event.away.score is None):
            reasons.append(ReasonCode.FIXTURE_MISSING_GOALS)
            core_missing = True
        if event.status_code in FixtureStatusConstants.IN_PLAY_CODES and not event.minute:
            reasons.append(ReasonCode.FIXTURE_MISSING_ELAPSED)
        if event.competition_id is None:
            reasons.append(ReasonCode.FIXTURE_MISSING_LEAGUE)

        return SourceCheck(real=not core_missing, reasons=reasons)

    def check_statistics(
        self, stats: Optional[Payload], home_id: Optional[int] = None, away_id: Optional[int] = None
    ) -> SourceCheck:
        """Blocks are paired with sides by team id, the same way the aggregator reads them."""
        if stats is None:
            return SourceCheck(real=False, reasons=[ReasonCode.STATS_NOT_FETCHED])
        blocks = dicts(stats)
        if not blocks:
            return SourceCheck(real=False, reasons=[ReasonCode.STATS_EMPTY])
        if len(blocks) < 2:
            only_away = away_id is not None and as_int(dig(blocks[0], "team", "id")) == away_id
            missing_side = ReasonCode.STATS_MISSING_HOME if only_away else ReasonCode.STATS_MISSING_AWAY
            return SourceCheck(real=False, reasons=[missing_side])

        reasons: List[ReasonCode] = []
        home, away = pick_team_blocks(blocks, home_id, away_id)
        if not dicts(home.get("statistics")):
            reasons.append(ReasonCode.STATS_MISSING_HOME)
        if not dicts(away.get("statistics")):
            reasons.append(ReasonCode.STATS_MISSING_AWAY)

        missing = set()
        for stat_type, suffix in ValidationConstants.CRITICAL_STATS:
            if not (_stat_present(home, stat_type) and _stat_present(away, stat_type)):
                missing.add(stat_type)
                reasons.append(ReasonCode(f"STATS_MISSING_{suffix}"))

        # 슈팅/점유율이 양 팀 모두 있어야 실데이터
        real = (
            ValidationConstants.STAT_TOTAL_SHOTS not in missing
            and ValidationConstants.STAT_POSSESSION not in missing
        )
        return SourceCheck(real=real, reasons=reasons)

    def check_odds(self, event: Event, live_odds: Optional[Payload]) -> SourceCheck:
        odds = event.odds
        if odds.fetch_status is FetchStatus.NOT_FETCHED:
            return SourceCheck(real=False, reasons=[ReasonCode.ODDS_NOT_FETCHED])
        if odds.fetch_status is FetchStatus.ERROR:
            return SourceCheck(real=False, reasons=[ReasonCode.ODDS_FETCH_ERROR])

        markets = odds.markets
        if odds.fetch_status is FetchStatus.EMPTY or not markets:
            return SourceCheck(real=False, reasons=[ReasonCode.ODDS_EMPTY])

        reasons = [reason for market, reason in _MARKET_REASONS.items() if market not in markets]
        if not odds.is_live and live_odds is not None:
            reasons.insert(0, ReasonCode.ODDS_PREMATCH_FALLBACK)
        if odds.is_stopped or odds.is_blocked:
            reasons.append(ReasonCode.ODDS_SUSPENDED)
        return SourceCheck(real=True, reasons=reasons)

    def check_timeline(self, event: Event, timeline: Optional[Payload]) -> SourceCheck:
        if timeline is None:
            return SourceCheck(real=False, reasons=[ReasonCode.TIMELINE_NOT_FETCHED])
        if dicts(timeline):
            return SourceCheck(real=True)
        # 킥오프 직후에는 이벤트가 없는 것이 정상
        if event.status is MatchStatus.NOT_STARTED or event.minute < ValidationConstants.TIMELINE_GRACE_MINUTE:
            return SourceCheck(real=True)
        return SourceCheck(real=False, reasons=[ReasonCode.TIMELINE_EMPTY])

    # ========== 메인 검증 로직 ==========

    def validate(
        self,
        event: Event,
        stats: Optional[Payload],
        live_odds: Optional[Payload],
        timeline: Optional[Payload],
    ) -> Validation:
        fixture_check = self.check_fixture(event)
        stats_check = self.check_statistics(stats, event.home.id, event.away.id)
        odds_check = self.check_odds(event, live_odds)
        timeline_check = self.check_timeline(event, timeline)

        checks = (fixture_check, stats_check, odds_check, timeline_check)
        real_count = sum(check.real for check in checks)
        reasons = [reason.value for check in checks for reason in check.reasons]

        validation = Validation(
            fixture_real=fixture_check.real,
            stats_real=stats_check.real,
            odds_real=odds_check.real,
            timeline_real=timeline_check.real,
            odds_markets=event.odds.markets,
            odds_source=event.odds.source,
            quality=classify_quality(real_count),
            reasons=reasons,
        )
        if validation.quality is DataQuality.INVALID:
            logger.debug("fixture %s invalid: %s", event.id, ", ".join(reasons))
        return validation
