"""
배당 파싱

API-Football 의 라이브(/odds/live) / 프리매치(/odds) 응답을 OddsBlock 으로 변환합니다.
공급자 마켓 ID 가 종종 바뀌므로 원본 마켓을 먼저 (id, name, values) 형태의
중간 표현으로 만든 뒤, 마켓별 우선순위 규칙으로 찾습니다:

    1. id 와 name 이 모두 일치
    2. id 만 일치 (규칙에 적힌 id 순서대로)
    3. name 만 일치 (규칙에 적힌 name 순서대로)

마켓 하나의 파싱 실패는 해당 마켓만 None 으로 남기고 나머지는 계속 진행합니다.
"""

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from livescan.core.error_handling import sync_error_handler
from livescan.core.logging import get_logger
from livescan.services.payload import as_dict, as_str, dicts
from livescan.models.event import (
    BothTeamsScoreOdds,
    FetchStatus,
    HandicapOdds,
    MatchWinnerOdds,
    OddsBlock,
    OverUnderLine,
    OverUnderOdds,
)

logger = get_logger(__name__)

_PARSE_ERRORS = (ValueError, TypeError, KeyError, AttributeError, IndexError)
_NUMBER = re.compile(r"[-+]?\d+(?:\.\d+)?")

# 프리매치 대소 라인 선호 순서
PREMATCH_TARGET_LINES: Tuple[float, ...] = (2.5, 2.25, 2.75, 3.0, 2.0, 3.5, 1.5, 3.25, 3.75)

SOURCE_LIVE = "LIVE"
SOURCE_PREMATCH = "PREMATCH"


class MarketKind(str, Enum):
    ASIAN_HANDICAP = "ASIAN_HANDICAP"
    OVER_UNDER = "OVER_UNDER"
    MATCH_WINNER = "1X2"
    BOTH_TEAMS_SCORE = "BTTS"


@dataclass(frozen=True)
class OddsValue:
    label: str
    odd: Optional[float]
    handicap: Optional[str] = None
    main: bool = False
    suspended: bool = False


@dataclass(frozen=True)
class RawMarket:
    market_id: Optional[int]
    name: str
    values: Tuple[OddsValue, ...]


@dataclass(frozen=True)
class MarketRule:
    kind: MarketKind
    ids: Tuple[int, ...]
    names: Tuple[str, ...]


LIVE_RULES: Dict[MarketKind, MarketRule] = {
    MarketKind.ASIAN_HANDICAP: MarketRule(MarketKind.ASIAN_HANDICAP, (33, 8), ("Asian Handicap",)),
    MarketKind.OVER_UNDER: MarketRule(
        MarketKind.OVER_UNDER,
        (36, 25, 5),
        ("Over/Under Line", "Over/Under", "Goals Over/Under", "Match Goals", "Totals"),
    ),
    MarketKind.MATCH_WINNER: MarketRule(
        MarketKind.MATCH_WINNER, (59, 1), ("Match Winner", "Fulltime Result", "1X2")
    ),
    MarketKind.BOTH_TEAMS_SCORE: MarketRule(MarketKind.BOTH_TEAMS_SCORE, (69,), ("Both Teams Score",)),
}

PREMATCH_RULES: Dict[MarketKind, MarketRule] = {
    MarketKind.ASIAN_HANDICAP: MarketRule(MarketKind.ASIAN_HANDICAP, (8, 33), ("Asian Handicap",)),
    MarketKind.OVER_UNDER: MarketRule(
        MarketKind.OVER_UNDER,
        (5, 36),
        ("Goals Over/Under", "Over/Under", "Over/Under Line", "Match Goals"),
    ),
    MarketKind.MATCH_WINNER: MarketRule(
        MarketKind.MATCH_WINNER, (1,), ("Match Winner", "Fulltime Result", "1X2")
    ),
    MarketKind.BOTH_TEAMS_SCORE: MarketRule(MarketKind.BOTH_TEAMS_SCORE, (26,), ("Both Teams Score",)),
}


# ==================== 중간 표현 ====================

def to_price(raw: Any) -> Optional[float]:
    """Decimal price or None. Zero, negative and non-numeric prices are treated as missing."""
    if raw is None or raw == "":
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def to_line(raw: Any) -> Optional[float]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    match = _NUMBER.search(str(raw))
    return float(match.group(0)) if match else None


def _market_id(raw: Any) -> Optional[int]:
    try:
        return int(raw)
    except (TypeError, ValueError, OverflowError):
        return None


def to_raw_markets(markets: Optional[Iterable[Dict[str, Any]]]) -> List[RawMarket]:
    result: List[RawMarket] = []
    for market in dicts(markets):
        values = tuple(
            OddsValue(
                label=str(v.get("value", "")),
                odd=to_price(v.get("odd")),
                handicap=str(v["handicap"]) if v.get("handicap") not in (None, "") else None,
                main=v.get("main") is True,
                suspended=v.get("suspended") is True,
            )
            for v in dicts(market.get("values"))
        )
        result.append(RawMarket(_market_id(market.get("id")), str(market.get("name") or ""), values))
    return result


def resolve_market(markets: Sequence[RawMarket], rule: MarketRule) -> Optional[RawMarket]:
    names = {name.casefold() for name in rule.names}
    for market in markets:
        if market.market_id in rule.ids and market.name.casefold() in names:
            return market
    for market_id in rule.ids:
        for market in markets:
            if market.market_id == market_id:
                return market
    for name in rule.names:
        for market in markets:
            if market.name.casefold() == name.casefold():
                return market
    return None


def _find(values: Iterable[OddsValue], *labels: str) -> Optional[OddsValue]:
    wanted = {label.casefold() for label in labels}
    for value in values:
        if value.label.casefold() in wanted:
            return value
    return None


def _find_containing(values: Iterable[OddsValue], needle: str) -> Optional[OddsValue]:
    needle = needle.casefold()
    for value in values:
        if needle in value.label.casefold():
            return value
    return None


# ==================== 마켓별 파서 ====================

@sync_error_handler(func_name="odds.1x2", reraise=False, log_level="warning", exceptions=_PARSE_ERRORS)
def parse_match_winner(market: Optional[RawMarket]) -> Optional[MatchWinnerOdds]:
    if market is None or len(market.values) < 3:
        return None
    home = _find(market.values, "Home", "1")
    draw = _find(market.values, "Draw", "X")
    away = _find(market.values, "Away", "2")
    if not (home and draw and away):
        return None
    return MatchWinnerOdds(home=home.odd, draw=draw.odd, away=away.odd)


@sync_error_handler(func_name="odds.btts", reraise=False, log_level="warning", exceptions=_PARSE_ERRORS)
def parse_both_teams_score(market: Optional[RawMarket]) -> Optional[BothTeamsScoreOdds]:
    if market is None:
        return None
    yes = _find(market.values, "Yes")
    no = _find(market.values, "No")
    if not (yes or no):
        return None
    return BothTeamsScoreOdds(yes=yes.odd if yes else None, no=no.odd if no else None)


@sync_error_handler(func_name="odds.ah.live", reraise=False, log_level="warning", exceptions=_PARSE_ERRORS)
def parse_live_handicap(market: Optional[RawMarket]) -> Optional[HandicapOdds]:
    if market is None or len(market.values) < 2:
        return None
    home = next((v for v in market.values if v.label == "Home" and v.main), None)
    away = next((v for v in market.values if v.label == "Away" and v.main), None)
    home = home or _find(market.values, "Home") or _find_containing(market.values, "Home")
    away = away or _find(market.values, "Away") or _find_containing(market.values, "Away")
    if not (home and away):
        return None
    line = to_line(home.handicap) if home.handicap is not None else to_line(home.label)
    return HandicapOdds(line=line, home=home.odd, away=away.odd)


@sync_error_handler(func_name="odds.ou.live", reraise=False, log_level="warning", exceptions=_PARSE_ERRORS)
def parse_live_over_under(market: Optional[RawMarket]) -> Optional[OverUnderOdds]:
    """Main-marked line, else the first line in payload order. Keeps every line when more than one."""
    if market is None or not market.values:
        return None
    lines: List[OverUnderLine] = []
    seen = set()
    for value in market.values:
        line = to_line(value.handicap)
        if line is None or line in seen:
            continue
        seen.add(line)
        over = next((v for v in market.values if v.label.casefold() == "over" and to_line(v.handicap) == line), None)
        under = next((v for v in market.values if v.label.casefold() == "under" and to_line(v.handicap) == line), None)
        if over is None and under is None:
            continue
        lines.append(OverUnderLine(
            line=line,
            over=over.odd if over else None,
            under=under.odd if under else None,
            is_main=bool((over and over.main) or (under and under.main)),
        ))
    if not lines:
        return None
    main = next((line for line in lines if line.is_main), lines[0])
    return OverUnderOdds(
        line=main.line,
        over=main.over,
        under=main.under,
        all_lines=lines if len(lines) > 1 else None,
    )


@sync_error_handler(func_name="odds.ah.prematch", reraise=False, log_level="warning", exceptions=_PARSE_ERRORS)
def parse_prematch_handicap(market: Optional[RawMarket]) -> Optional[HandicapOdds]:
    if market is None:
        return None
    home = _find_containing(market.values, "Home")
    away = _find_containing(market.values, "Away")
    if not (home and away):
        return None
    return HandicapOdds(line=to_line(home.label), home=home.odd, away=away.odd)


@sync_error_handler(func_name="odds.ou.prematch", reraise=False, log_level="warning", exceptions=_PARSE_ERRORS)
def parse_prematch_over_under(market: Optional[RawMarket]) -> Optional[OverUnderOdds]:
    """Labels look like "Over 2.5" / "Under 2.5"; the first target line with both sides wins."""
    if market is None:
        return None
    sides: Dict[Tuple[str, float], OddsValue] = {}
    for value in market.values:
        label = value.label.strip().casefold()
        side = "over" if label.startswith("over") else "under" if label.startswith("under") else None
        line = to_line(value.label)
        if side and line is not None:
            sides.setdefault((side, line), value)
    for target in PREMATCH_TARGET_LINES:
        over = sides.get(("over", target))
        under = sides.get(("under", target))
        if over and under:
            return OverUnderOdds(line=target, over=over.odd, under=under.odd)
    return None


# ==================== 공급자 응답 → OddsBlock ====================

def _assemble(
    handicap: Optional[HandicapOdds],
    over_under: Optional[OverUnderOdds],
    match_winner: Optional[MatchWinnerOdds],
    both_teams_score: Optional[BothTeamsScoreOdds],
    **meta: Any,
) -> Optional[OddsBlock]:
    block = OddsBlock(
        handicap=handicap or HandicapOdds(),
        over_under=over_under or OverUnderOdds(),
        match_winner=match_winner,
        both_teams_score=both_teams_score,
        fetch_status=FetchStatus.SUCCESS,
        **meta,
    )
    return block if block.has_data else None


def parse_live_odds(payload: Optional[List[Dict[str, Any]]], captured_at: Optional[str] = None) -> Optional[OddsBlock]:
    """Parse an /odds/live response. Returns None when no market resolves to a line or price."""
    entries = dicts(payload)
    if not entries:
        return None
    data = entries[0]
    markets = to_raw_markets(data.get("odds"))
    if not markets:
        return None
    status = as_dict(data.get("status"))
    return _assemble(
        parse_live_handicap(resolve_market(markets, LIVE_RULES[MarketKind.ASIAN_HANDICAP])),
        parse_live_over_under(resolve_market(markets, LIVE_RULES[MarketKind.OVER_UNDER])),
        parse_match_winner(resolve_market(markets, LIVE_RULES[MarketKind.MATCH_WINNER])),
        parse_both_teams_score(resolve_market(markets, LIVE_RULES[MarketKind.BOTH_TEAMS_SCORE])),
        is_live=True,
        source=SOURCE_LIVE,
        bookmaker="API-Football",
        captured_at=captured_at,
        is_stopped=status.get("stopped") is True,
        is_blocked=status.get("blocked") is True,
    )


def parse_prematch_odds(payload: Optional[List[Dict[str, Any]]], captured_at: Optional[str] = None) -> Optional[OddsBlock]:
    """Parse an /odds response using the first bookmaker listed."""
    entries = dicts(payload)
    bookmakers = dicts(entries[0].get("bookmakers")) if entries else []
    if not bookmakers:
        return None
    bookmaker = bookmakers[0]
    markets = to_raw_markets(bookmaker.get("bets"))
    if not markets:
        return None
    return _assemble(
        parse_prematch_handicap(resolve_market(markets, PREMATCH_RULES[MarketKind.ASIAN_HANDICAP])),
        parse_prematch_over_under(resolve_market(markets, PREMATCH_RULES[MarketKind.OVER_UNDER])),
        parse_match_winner(resolve_market(markets, PREMATCH_RULES[MarketKind.MATCH_WINNER])),
        parse_both_teams_score(resolve_market(markets, PREMATCH_RULES[MarketKind.BOTH_TEAMS_SCORE])),
        is_live=False,
        source=SOURCE_PREMATCH,
        bookmaker=as_str(bookmaker.get("name")),
        captured_at=captured_at,
    )
