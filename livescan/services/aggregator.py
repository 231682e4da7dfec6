"""
경기 데이터 병합 (Aggregator)

한 경기의 fixture / statistics / events / live odds / prematch odds 응답을
하나의 Event 로 병합합니다. I/O 와 전역 상태가 없는 순수 함수이며,
같은 입력이면 항상 같은 Event 를 만듭니다 (captured_at 도 호출자가 넘김).

파생 필드:
- 시나리오 태그 (critical_time, strong_behind, deadlock, ...)
- 경량 킬 스코어 (0-100): 수집 시점 태깅용. 액션 판단은 ScoringEngine 이 담당
"""

import math
from typing import Any, Dict, List, Optional, Tuple

from livescan.config.constants import (
    LEAGUE_DISPLAY_NAMES,
    ImbalanceConstants,
    KillScoreConstants,
    ScenarioConstants,
)
from livescan.core.logging import get_logger
from livescan.models.event import (
    CardSummary,
    Event,
    EventStats,
    FetchStatus,
    Imbalance,
    MatchStatus,
    OddsBlock,
    Participant,
    SidePair,
    TimelineEntry,
    TimelineKind,
)
from livescan.services.odds_parser import parse_live_odds, parse_prematch_odds
from livescan.services.payload import as_dict, as_int, as_str, dicts, dig, pick_team_blocks

logger = get_logger(__name__)

Payload = List[Dict[str, Any]]

STATUS_MAP: Dict[str, MatchStatus] = {
    "TBD": MatchStatus.NOT_STARTED,
    "NS": MatchStatus.NOT_STARTED,
    "1H": MatchStatus.FIRST_HALF,
    "HT": MatchStatus.HALF_TIME,
    "2H": MatchStatus.SECOND_HALF,
    "ET": MatchStatus.EXTRA_TIME,
    "BT": MatchStatus.BREAK,
    "P": MatchStatus.PENALTIES,
    "LIVE": MatchStatus.LIVE,
    "SUSP": MatchStatus.SUSPENDED,
    "INT": MatchStatus.SUSPENDED,
    "FT": MatchStatus.FINISHED,
    "AET": MatchStatus.FINISHED,
    "PEN": MatchStatus.FINISHED,
}

# API-Football statistics type -> EventStats 필드
STAT_FIELDS: Dict[str, str] = {
    "Total Shots": "shots",
    "Shots on Goal": "shots_on_target",
    "Shots off Goal": "shots_off_target",
    "Shots insidebox": "shots_inside_box",
    "Ball Possession": "possession",
    "Corner Kicks": "corners",
    "expected_goals": "xg",
    "Fouls": "fouls",
    "Yellow Cards": "yellow_cards",
    "Red Cards": "red_cards",
    "Offsides": "offsides",
    "Goalkeeper Saves": "saves",
}
FLOAT_STAT_FIELDS = frozenset({"possession", "xg"})

VAR_CANCEL_MARKERS = ("cancelled", "disallowed", "no goal")


def normalize_status(code: Optional[str]) -> MatchStatus:
    return STATUS_MAP.get((code or "").upper(), MatchStatus.UNKNOWN)


def _stat_value(raw: Any, as_float: bool) -> Optional[float]:
    """"65%" -> 65.0, "1.85" -> 1.85, None/"" -> None."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, str):
        raw = raw.strip().rstrip("%")
        if not raw:
            return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return value if as_float else int(value)


# ==================== statistics ====================

def _team_block_values(block: Dict[str, Any]) -> Dict[str, Optional[float]]:
    values: Dict[str, Optional[float]] = {}
    for item in dicts(block.get("statistics")):
        field = STAT_FIELDS.get(as_str(item.get("type")) or "")
        if field:
            values[field] = _stat_value(item.get("value"), field in FLOAT_STAT_FIELDS)
    return values


def compute_imbalance(stats: EventStats) -> Imbalance:
    def diff(pair: SidePair) -> float:
        return (pair.home or 0) - (pair.away or 0)

    shots_diff = diff(stats.shots)
    sot_diff = diff(stats.shots_on_target)
    xg_diff = round(diff(stats.xg), 2)
    corners_diff = diff(stats.corners)
    possession_diff = diff(stats.possession)

    score = (
        abs(shots_diff) * ImbalanceConstants.SHOTS_WEIGHT
        + abs(sot_diff) * ImbalanceConstants.SHOTS_ON_TARGET_WEIGHT
        + abs(xg_diff) * ImbalanceConstants.XG_WEIGHT
        + abs(corners_diff) * ImbalanceConstants.CORNERS_WEIGHT
        + abs(possession_diff) * ImbalanceConstants.POSSESSION_WEIGHT
    )

    attacking_side = "balanced"
    if shots_diff >= ImbalanceConstants.ATTACKING_SHOTS_DIFF or xg_diff >= ImbalanceConstants.ATTACKING_XG_DIFF:
        attacking_side = "home"
    elif shots_diff <= -ImbalanceConstants.ATTACKING_SHOTS_DIFF or xg_diff <= -ImbalanceConstants.ATTACKING_XG_DIFF:
        attacking_side = "away"

    return Imbalance(
        shots_diff=int(shots_diff),
        shots_on_target_diff=int(sot_diff),
        xg_diff=xg_diff,
        corners_diff=int(corners_diff),
        possession_diff=possession_diff,
        score=round(min(score, ImbalanceConstants.MAX_SCORE), 1),
        attacking_side=attacking_side,
    )


def parse_statistics(
    stats: Optional[Payload], home_id: Optional[int] = None, away_id: Optional[int] = None
) -> EventStats:
    """Two team blocks are required.

    The block counts as real data only when both sides report shots and
    possession; partial values are kept either way.
    """
    blocks = dicts(stats)
    if len(blocks) < 2:
        return EventStats(has_real_data=False)
    home_block, away_block = pick_team_blocks(blocks, home_id, away_id)
    home_values = _team_block_values(home_block)
    away_values = _team_block_values(away_block)
    if not home_values and not away_values:
        return EventStats(has_real_data=False)

    fields = {
        field: {"home": home_values.get(field), "away": away_values.get(field)}
        for field in STAT_FIELDS.values()
    }
    has_real_data = all(
        values.get(field) is not None
        for values in (home_values, away_values)
        for field in ("shots", "possession")
    )
    block = EventStats(has_real_data=has_real_data, **fields)
    return block.model_copy(update={"imbalance": compute_imbalance(block)})


# ==================== timeline ====================

def _timeline_kind(event_type: str) -> TimelineKind:
    event_type = event_type.casefold()
    if event_type == "goal":
        return TimelineKind.GOAL
    if event_type == "card":
        return TimelineKind.CARD
    if event_type == "subst":
        return TimelineKind.SUBSTITUTION
    if event_type == "var":
        return TimelineKind.VAR
    return TimelineKind.OTHER


def parse_timeline(
    timeline: Optional[Payload], home_id: Optional[int], away_id: Optional[int]
) -> Tuple[List[TimelineEntry], CardSummary, SidePair, bool]:
    """Returns (entries, card totals, substitutions per side, var_cancelled)."""
    entries: List[TimelineEntry] = []
    yellow = {"home": 0, "away": 0}
    red = {"home": 0, "away": 0}
    subs = {"home": 0, "away": 0}
    red_players: List[str] = []
    var_cancelled = False

    for raw in dicts(timeline):
        team_id = as_int(dig(raw, "team", "id"))
        side = "home" if team_id is not None and team_id == home_id else "away" if team_id is not None and team_id == away_id else None
        detail = as_str(raw.get("detail")) or ""
        kind = _timeline_kind(as_str(raw.get("type")) or "")
        player = as_str(dig(raw, "player", "name"))
        time_info = as_dict(raw.get("time"))

        entries.append(TimelineEntry(
            minute=as_int(time_info.get("elapsed")),
            extra_minute=as_int(time_info.get("extra")),
            kind=kind,
            detail=detail,
            side=side,
            team_id=team_id,
            player=player,
            assist=as_str(dig(raw, "assist", "name")),
        ))

        lowered = detail.casefold()
        if kind is TimelineKind.CARD and side:
            if "red" in lowered or "second yellow" in lowered:
                red[side] += 1
                if player:
                    red_players.append(player)
            elif "yellow" in lowered:
                yellow[side] += 1
        elif kind is TimelineKind.SUBSTITUTION and side:
            subs[side] += 1
        elif kind is TimelineKind.VAR and any(marker in lowered for marker in VAR_CANCEL_MARKERS):
            var_cancelled = True

    cards = CardSummary(
        yellow=SidePair[int](**yellow),
        red=SidePair[int](**red),
        red_card_players=red_players,
    )
    return entries, cards, SidePair[int](**subs), var_cancelled


# ==================== odds precedence ====================

def resolve_odds(
    live_odds: Optional[Payload],
    prematch_odds: Optional[Payload],
    *,
    odds_failed: bool = False,
    captured_at: Optional[str] = None,
) -> OddsBlock:
    """라이브 배당 우선, 없으면 프리매치. initial_* 는 프리매치에서만 채운다."""
    live = parse_live_odds(live_odds, captured_at)
    prematch = parse_prematch_odds(prematch_odds, captured_at)
    initial = {
        "initial_handicap": prematch.handicap.line if prematch else None,
        "initial_over_under": prematch.over_under.line if prematch else None,
    }

    if live is not None:
        return live.model_copy(update=initial)
    if prematch is not None:
        return prematch.model_copy(update=initial)

    if live_odds is None and prematch_odds is None:
        return OddsBlock(fetch_status=FetchStatus.NOT_FETCHED, no_data_reason="odds not fetched")
    if odds_failed:
        return OddsBlock(fetch_status=FetchStatus.ERROR, no_data_reason="odds request failed", captured_at=captured_at)
    return OddsBlock(
        fetch_status=FetchStatus.EMPTY,
        no_data_reason="no live or prematch odds",
        captured_at=captured_at,
    )


# ==================== derived fields ====================

def scenario_tags(
    minute: int,
    home_score: Optional[int],
    away_score: Optional[int],
    handicap_line: Optional[float],
    red_cards: SidePair,
    has_stats: bool,
) -> List[str]:
    """Score-derived tags are skipped while either score is unknown."""
    tags: List[str] = []
    known = home_score is not None and away_score is not None
    diff = home_score - away_score if known else None

    if minute >= ScenarioConstants.CRITICAL_TIME_MINUTE:
        tags.append("critical_time")

    home_red = red_cards.home or 0
    away_red = red_cards.away or 0
    if home_red or away_red:
        tags.append("red_card")
        if home_red:
            tags.append("home_red")
        if away_red:
            tags.append("away_red")

    # 핸디캡 부호로 정배 추정: 음수면 홈, 양수면 원정이 정배
    if known and handicap_line is not None and minute >= ScenarioConstants.STRONG_BEHIND_MINUTE:
        if (handicap_line < 0 and diff < 0) or (handicap_line > 0 and diff > 0):
            tags.append("strong_behind")

    if known and diff == 0:
        tags.append("balanced")
        if home_score == 0 and minute >= ScenarioConstants.DEADLOCK_MINUTE:
            tags.append("deadlock")

    if known and abs(diff) >= ScenarioConstants.LARGE_LEAD_DIFF:
        tags.append("large_lead")

    if not has_stats:
        tags.append("no_stats")

    return tags


def basic_kill_score(minute: int, home_score: Optional[int], away_score: Optional[int], stats: EventStats) -> int:
    """시간 가중 + 점수차 가중 + 통계 볼륨 가중, 0-100 으로 제한. 점수 미상이면 점수차 가중은 없음."""
    c = KillScoreConstants
    score = c.BASE

    if minute >= c.TIME_VERY_LATE_MINUTE:
        score += c.TIME_VERY_LATE_POINTS
    elif minute >= c.TIME_LATE_MINUTE:
        score += c.TIME_LATE_POINTS
    elif minute >= c.TIME_MID_MINUTE:
        score += c.TIME_MID_POINTS

    if home_score is not None and away_score is not None:
        diff = abs(home_score - away_score)
        if diff == 0:
            score += c.DRAW_POINTS
        elif diff == 1:
            score += c.ONE_GOAL_POINTS
        elif diff == 2:
            score += c.TWO_GOAL_POINTS
        else:
            score += c.BLOWOUT_PENALTY

    if stats.has_real_data:
        shots = stats.shots.total or 0
        xg = stats.xg.total or 0.0
        if shots >= c.SHOTS_HIGH:
            score += c.SHOTS_HIGH_POINTS
        elif shots >= c.SHOTS_MID:
            score += c.SHOTS_MID_POINTS
        if xg >= c.XG_HIGH:
            score += c.XG_HIGH_POINTS
        elif xg >= c.XG_MID:
            score += c.XG_MID_POINTS

    return int(max(0, min(100, score)))


# ==================== combine ====================

def combine(
    fixture: Dict[str, Any],
    stats: Optional[Payload],
    timeline: Optional[Payload],
    live_odds: Optional[Payload],
    prematch_odds: Optional[Payload],
    *,
    odds_failed: bool = False,
    captured_at: Optional[str] = None,
) -> Event:
    """Merge one fixture with its per-fixture payloads into an Event.

    ``None`` payloads mean "not fetched"; an empty list means "fetched, nothing
    returned". Malformed fields resolve to ``None``/defaults and never raise.
    The returned Event carries a default Validation; the validator fills it.
    """
    info = as_dict(dig(fixture, "fixture"))
    league = as_dict(dig(fixture, "league"))
    goals = as_dict(dig(fixture, "goals"))
    status_info = as_dict(info.get("status"))

    home_team = as_dict(dig(fixture, "teams", "home"))
    away_team = as_dict(dig(fixture, "teams", "away"))
    home_id = as_int(home_team.get("id"))
    away_id = as_int(away_team.get("id"))
    home_score = as_int(goals.get("home"))
    away_score = as_int(goals.get("away"))
    minute = as_int(status_info.get("elapsed")) or 0
    status_code = as_str(status_info.get("short")) or ""
    league_id = as_int(league.get("id"))

    event_stats = parse_statistics(stats, home_id, away_id)
    entries, cards, substitutions, var_cancelled = parse_timeline(timeline, home_id, away_id)
    odds = resolve_odds(live_odds, prematch_odds, odds_failed=odds_failed, captured_at=captured_at)

    # 통계 블록의 카드 수가 없으면 타임라인 집계를 사용
    red = event_stats.red_cards if event_stats.red_cards.total else cards.red

    return Event(
        id=as_int(info.get("id")) or 0,
        competition_id=league_id,
        competition_name=LEAGUE_DISPLAY_NAMES.get(league_id, as_str(league.get("name")) or ""),
        competition_country=as_str(league.get("country")),
        home=Participant(id=home_id, name=as_str(home_team.get("name")) or "", score=home_score, logo=as_str(home_team.get("logo"))),
        away=Participant(id=away_id, name=as_str(away_team.get("name")) or "", score=away_score, logo=as_str(away_team.get("logo"))),
        minute=minute,
        status=normalize_status(status_code),
        status_code=status_code,
        kickoff=as_str(info.get("date")),
        stats=event_stats,
        odds=odds,
        timeline=entries,
        cards=cards,
        substitutions=substitutions,
        var_cancelled=var_cancelled,
        scenario_tags=scenario_tags(minute, home_score, away_score, odds.handicap.line, red, event_stats.has_real_data),
        kill_score=basic_kill_score(minute, home_score, away_score, event_stats),
        unscoreable=not event_stats.has_real_data or home_score is None or away_score is None,
    )
