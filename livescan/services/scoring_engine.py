"""
라이브 경기 스코어링 엔진

5개 컴포넌트 합산 점수(0-100)와 이와 독립적인 신뢰도(0-100)를 계산하고,
(점수, 신뢰도)를 액션으로 매핑합니다.

컴포넌트:
1. Base    (0-20)  - 점수 상태 + 총 득점 + 시간 압박
2. Edge    (0-30)  - 슈팅량 + xG + xG 부채 + 유효슈팅 비율
3. Timing  (0-20)  - 65분부터 상승, 79-86분 최대, 90분 이후 감소하는 사다리꼴
4. Market  (0-20)  - 배당 존재와 움직임. 시장 데이터가 없으면 정확히 0
5. Quality (±10)   - 데이터 완전성 가점, 결측/이상치 감점

신뢰도:
1. 데이터 완전성     (0-35)
2. 신선도/안정성     (0-20)
3. 교차 소스 일관성  (0-25)
4. 시장 확인         (0-20)

ScoreResult 는 요청마다 최신 Event 로부터 다시 계산하며 저장하지 않습니다.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from livescan.config.constants import (
    ActionThresholds,
    BaseScoreConstants,
    ConfidenceConstants,
    EdgeScoreConstants,
    MarketScoreConstants,
    QualityScoreConstants,
    TimingScoreConstants,
)
from livescan.core.logging import get_logger
from livescan.models.event import Event, FetchStatus

logger = get_logger(__name__)

DATA_MODE_STRICT = "STRICT_REAL_DATA"
DATA_MODE_UNSCOREABLE = "UNSCOREABLE"


class Action(str, Enum):
    BET = "BET"
    PREPARE = "PREPARE"
    WATCH = "WATCH"
    IGNORE = "IGNORE"

    @property
    def rank(self) -> int:
        return _ACTION_RANK[self]


_ACTION_RANK = {Action.IGNORE: 0, Action.WATCH: 1, Action.PREPARE: 2, Action.BET: 3}


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _bucket(value: float, buckets) -> int:
    """buckets: ((threshold, points), ...) 내림차순. value >= threshold 인 첫 항목."""
    for threshold, points in buckets:
        if value >= threshold:
            return points
    return 0


def _price_bucket(price: float, buckets) -> int:
    """buckets: ((ceiling, points), ...) 오름차순. price < ceiling 인 첫 항목."""
    for ceiling, points in buckets:
        if price < ceiling:
            return points
    return 0


@dataclass(frozen=True)
class MarketContext:
    """스코어링에 쓰는 시장 정보. 성공적으로 파싱된 배당이 있을 때만 만들어진다."""

    is_live: bool
    over_under_line: Optional[float] = None
    over: Optional[float] = None
    under: Optional[float] = None
    handicap_line: Optional[float] = None
    handicap_home: Optional[float] = None
    handicap_away: Optional[float] = None
    home_win: Optional[float] = None
    draw: Optional[float] = None
    away_win: Optional[float] = None
    previous_over: Optional[float] = None
    previous_handicap_line: Optional[float] = None
    suspended: bool = False

    @classmethod
    def from_event(cls, event: Event) -> Optional["MarketContext"]:
        odds = event.odds
        if odds.fetch_status is not FetchStatus.SUCCESS or not odds.has_data:
            return None
        winner = odds.match_winner
        return cls(
            is_live=odds.is_live,
            over_under_line=odds.over_under.line,
            over=odds.over_under.over,
            under=odds.over_under.under,
            handicap_line=odds.handicap.line,
            handicap_home=odds.handicap.home,
            handicap_away=odds.handicap.away,
            home_win=winner.home if winner else None,
            draw=winner.draw if winner else None,
            away_win=winner.away if winner else None,
            previous_over=odds.previous_over,
            previous_handicap_line=odds.previous_handicap_line,
            suspended=odds.is_stopped or odds.is_blocked,
        )


@dataclass
class ComponentScore:
    name: str
    score: float
    max_score: float
    min_score: float = 0.0
    details: List[str] = field(default_factory=list)


@dataclass
class ConfidenceBreakdown:
    data_completeness: float = 0.0
    freshness_stability: float = 0.0
    cross_source_consistency: float = 0.0
    market_confirmation: float = 0.0

    @property
    def total(self) -> int:
        raw = (
            self.data_completeness
            + self.freshness_stability
            + self.cross_source_consistency
            + self.market_confirmation
        )
        return int(round(_clamp(raw, 0, 100)))


@dataclass
class ScoreResult:
    """스코어 계산 결과 (요청 단위, 비저장)"""

    event_id: int
    total: int  # 0-100
    confidence: int  # 0-100
    action: Action
    base: ComponentScore
    edge: ComponentScore
    timing: ComponentScore
    market: ComponentScore
    quality: ComponentScore
    market_data_available: bool
    confidence_breakdown: ConfidenceBreakdown
    alerts: List[str] = field(default_factory=list)
    data_mode: str = DATA_MODE_STRICT

    @property
    def odds_factor(self) -> Dict[str, Any]:
        return {"data_available": self.market_data_available, "score": self.market.score}

    @property
    def components(self) -> List[ComponentScore]:
        return [self.base, self.edge, self.timing, self.market, self.quality]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["action"] = self.action.value
        data["odds_factor"] = self.odds_factor
        return data


@dataclass(frozen=True)
class _Signals:
    """컴포넌트들이 공유하는 경기 지표"""

    minute: int
    goal_diff: Optional[int]
    total_goals: Optional[int]
    has_stats: bool
    has_timeline: bool
    shots: int
    shots_on_target: int
    xg: Optional[float]
    possession_sum: Optional[float]
    red_cards: int

    @classmethod
    def from_event(cls, event: Event) -> "_Signals":
        stats = event.stats
        possession = None
        if stats.possession.home is not None and stats.possession.away is not None:
            possession = stats.possession.home + stats.possession.away
        red = (stats.red_cards.total or 0) or (event.cards.red.total or 0)
        return cls(
            minute=event.minute,
            goal_diff=abs(event.goal_diff) if event.goal_diff is not None else None,
            total_goals=event.total_goals,
            has_stats=stats.has_real_data,
            has_timeline=bool(event.timeline),
            shots=int(stats.shots.total or 0),
            shots_on_target=int(stats.shots_on_target.total or 0),
            xg=stats.xg.total,
            possession_sum=possession,
            red_cards=int(red),
        )

    @property
    def xg_debt(self) -> Optional[float]:
        if self.xg is None or self.total_goals is None:
            return None
        return self.xg - self.total_goals

    def anomalies(self) -> List[str]:
        found = []
        if self.has_stats and self.minute > QualityScoreConstants.ZERO_SHOTS_MINUTE and self.shots == 0:
            found.append(f"zero shots at {self.minute}'")
        if (
            self.has_stats
            and self.xg is not None
            and self.shots > QualityScoreConstants.LOW_XG_SHOTS
            and self.xg < QualityScoreConstants.LOW_XG_VALUE
        ):
            found.append(f"xG {self.xg:.2f} on {self.shots} shots")
        return found


class ScoringEngine:
    """
    5-컴포넌트 스코어링 엔진

    상태를 갖지 않으므로 여러 요청에서 같은 인스턴스를 공유해도 된다.
    """

    def score(
        self,
        event: Event,
        market_context: Optional[MarketContext] = None,
        *,
        data_age: float = 0.0,
    ) -> ScoreResult:
        """
        Args:
            event: 최신 스냅샷의 Event
            market_context: 시장 정보. None 이면 Market 컴포넌트는 0, data_available=False
            data_age: 스냅샷 나이 (초). 신선도 신뢰도에 사용
        """
        signals = _Signals.from_event(event)

        base = self._base(signals)
        edge = self._edge(signals)
        timing = self._timing(signals)
        market = self._market(signals, market_context)
        quality = self._quality(signals, market_context)

        raw_total = base.score + edge.score + timing.score + market.score + quality.score
        total = int(round(_clamp(raw_total, 0, 100)))

        breakdown = self._confidence(signals, market_context, data_age)
        confidence = breakdown.total

        unscoreable = event.unscoreable or not signals.has_stats or signals.total_goals is None
        data_mode = DATA_MODE_UNSCOREABLE if unscoreable else DATA_MODE_STRICT
        action = Action.IGNORE if unscoreable else self.map_action(total, confidence)

        return ScoreResult(
            event_id=event.id,
            total=total,
            confidence=confidence,
            action=action,
            base=base,
            edge=edge,
            timing=timing,
            market=market,
            quality=quality,
            market_data_available=market_context is not None,
            confidence_breakdown=breakdown,
            alerts=self._alerts(signals, market_context, unscoreable),
            data_mode=data_mode,
        )

    def score_event(self, event: Event, *, data_age: float = 0.0) -> ScoreResult:
        """Score with the market context derived from the event's own odds block."""
        return self.score(event, MarketContext.from_event(event), data_age=data_age)

    @staticmethod
    def map_action(score: int, confidence: int) -> Action:
        t = ActionThresholds
        if score >= t.BET_SCORE and confidence >= t.BET_CONFIDENCE:
            return Action.BET
        if score >= t.PREPARE_SCORE and confidence >= t.PREPARE_CONFIDENCE:
            return Action.PREPARE
        if score >= t.WATCH_SCORE:
            return Action.WATCH
        return Action.IGNORE

    # ========== 컴포넌트 ==========

    def _base(self, s: _Signals) -> ComponentScore:
        c = BaseScoreConstants
        if s.goal_diff is None:
            return ComponentScore("base", 0, c.MAX, details=["score unknown"])
        details = []

        if s.goal_diff == 0:
            closeness = c.DRAW_POINTS
        elif s.goal_diff == 1:
            closeness = c.ONE_GOAL_POINTS
        elif s.goal_diff == 2:
            closeness = c.TWO_GOAL_POINTS
        else:
            closeness = 0
        details.append(f"goal diff {s.goal_diff}: +{closeness}")

        if s.total_goals == 0:
            goals = c.GOALS_NONE_POINTS
        elif s.total_goals <= c.GOALS_OPEN_MAX:
            goals = c.GOALS_OPEN_POINTS
        elif s.total_goals <= c.GOALS_HIGH_MAX:
            goals = c.GOALS_HIGH_POINTS
        else:
            goals = c.GOALS_EXTREME_POINTS
        details.append(f"{s.total_goals} goals: +{goals}")

        pressure = 0
        if s.minute >= c.TIME_PRESSURE_HIGH_MINUTE and s.goal_diff <= c.TIME_PRESSURE_MAX_DIFF:
            pressure = c.TIME_PRESSURE_HIGH_POINTS
        elif s.minute >= c.TIME_PRESSURE_MID_MINUTE and s.goal_diff <= c.TIME_PRESSURE_MAX_DIFF:
            pressure = c.TIME_PRESSURE_MID_POINTS
        elif s.minute >= c.TIME_PRESSURE_LOW_MINUTE:
            pressure = c.TIME_PRESSURE_LOW_POINTS
        if pressure:
            details.append(f"time pressure at {s.minute}': +{pressure}")

        return ComponentScore("base", _clamp(closeness + goals + pressure, 0, c.MAX), c.MAX, details=details)

    def _edge(self, s: _Signals) -> ComponentScore:
        c = EdgeScoreConstants
        if not s.has_stats:
            return ComponentScore("edge", 0, c.MAX, details=["no statistics"])

        details = []
        shots = _bucket(s.shots, c.SHOTS_BUCKETS)
        details.append(f"{s.shots} shots: +{shots}")

        xg_points = 0
        debt = 0
        if s.xg is not None:
            xg_points = _bucket(s.xg, c.XG_BUCKETS)
            details.append(f"xG {s.xg:.2f}: +{xg_points}")
            if s.xg_debt is not None and s.xg_debt >= c.XG_DEBT_THRESHOLD:
                debt = c.XG_DEBT_POINTS
                details.append(f"xG debt {s.xg_debt:.2f}: +{debt}")

        accuracy = 0
        if s.shots >= c.ACCURACY_MIN_SHOTS:
            ratio = s.shots_on_target / s.shots
            accuracy = _bucket(ratio, c.ACCURACY_BUCKETS)
            details.append(f"accuracy {ratio:.0%}: +{accuracy}")

        return ComponentScore("edge", _clamp(shots + xg_points + debt + accuracy, 0, c.MAX), c.MAX, details=details)

    def _timing(self, s: _Signals) -> ComponentScore:
        c = TimingScoreConstants
        minute = s.minute
        if minute < c.START_MINUTE:
            value = 0.0
        elif minute < c.PEAK_START_MINUTE:
            value = c.MAX * (minute - c.START_MINUTE) / (c.PEAK_START_MINUTE - c.START_MINUTE)
        elif minute <= c.PEAK_END_MINUTE:
            value = c.MAX
        elif minute < c.TAPER_END_MINUTE:
            progress = (minute - c.PEAK_END_MINUTE) / (c.TAPER_END_MINUTE - c.PEAK_END_MINUTE)
            value = c.MAX - (c.MAX - c.FLOOR) * progress
        else:
            value = c.FLOOR
        value = round(_clamp(value, 0, c.MAX), 1)
        return ComponentScore("timing", value, c.MAX, details=[f"minute {minute}: {value}"])

    def _market(self, s: _Signals, ctx: Optional[MarketContext]) -> ComponentScore:
        c = MarketScoreConstants
        if ctx is None:
            return ComponentScore("market", 0, c.MAX, details=["no market data"])

        details = []
        points = 0.0
        if ctx.over_under_line is not None and (ctx.over is not None or ctx.under is not None):
            points += c.OVER_UNDER_PRESENT_POINTS
            details.append(f"O/U {ctx.over_under_line}: +{c.OVER_UNDER_PRESENT_POINTS}")
        if ctx.handicap_line is not None or ctx.home_win is not None:
            points += c.OTHER_MARKET_PRESENT_POINTS

        if ctx.over is not None:
            level = _price_bucket(ctx.over, c.OVER_PRICE_BUCKETS)
            if level:
                points += level
                details.append(f"over @{ctx.over:.2f}: +{level}")

            if ctx.previous_over is not None and ctx.previous_over > ctx.over:
                drop = min(c.OVER_DROP_MAX_POINTS, (ctx.previous_over - ctx.over) / c.OVER_DROP_UNIT)
                points += drop
                details.append(f"over drift {ctx.previous_over:.2f}->{ctx.over:.2f}: +{drop:.1f}")

        if ctx.handicap_line is not None and ctx.previous_handicap_line is not None:
            tightened = abs(ctx.previous_handicap_line) - abs(ctx.handicap_line)
            if tightened > 0:
                move = min(
                    c.AH_TIGHTEN_MAX_POINTS,
                    tightened / c.AH_TIGHTEN_UNIT * c.AH_TIGHTEN_POINTS_PER_UNIT,
                )
                points += move
                details.append(f"AH line {ctx.previous_handicap_line}->{ctx.handicap_line}: +{move:.1f}")

        if s.has_stats and ctx.over is not None and ctx.over < c.CONSISTENCY_OVER_PRICE:
            if s.xg_debt is not None and s.xg_debt > c.CONSISTENCY_XG_MARGIN:
                points += c.CONSISTENCY_XG_POINTS
                details.append(f"xG agrees with market: +{c.CONSISTENCY_XG_POINTS}")
            elif s.shots > c.CONSISTENCY_SHOTS:
                points += c.CONSISTENCY_SHOTS_POINTS
                details.append(f"shot volume agrees with market: +{c.CONSISTENCY_SHOTS_POINTS}")

        return ComponentScore("market", round(_clamp(points, 0, c.MAX), 1), c.MAX, details=details)

    def _quality(self, s: _Signals, ctx: Optional[MarketContext]) -> ComponentScore:
        c = QualityScoreConstants
        details = []
        points = 0

        if s.has_stats and s.has_timeline:
            points += c.STATS_AND_TIMELINE_POINTS
            details.append(f"stats + timeline: +{c.STATS_AND_TIMELINE_POINTS}")
        elif s.has_stats or s.has_timeline:
            points += c.SINGLE_SOURCE_POINTS
            details.append(f"single detail source: +{c.SINGLE_SOURCE_POINTS}")

        if ctx is not None:
            points += c.ODDS_POINTS
            if ctx.is_live:
                points += c.LIVE_ODDS_POINTS
            details.append("live odds" if ctx.is_live else "prematch odds")

        if not s.has_stats:
            points += c.MISSING_STATS_PENALTY
            details.append(f"missing statistics: {c.MISSING_STATS_PENALTY}")
        else:
            if s.minute > c.ZERO_SHOTS_MINUTE and s.shots == 0:
                points += c.ZERO_SHOTS_PENALTY
                details.append(f"zero shots at {s.minute}': {c.ZERO_SHOTS_PENALTY}")
            if s.xg is not None and s.shots > c.LOW_XG_SHOTS and s.xg < c.LOW_XG_VALUE:
                points += c.LOW_XG_PENALTY
                details.append(f"implausible xG: {c.LOW_XG_PENALTY}")

        return ComponentScore("quality", _clamp(points, c.MIN, c.MAX), c.MAX, min_score=c.MIN, details=details)

    # ========== 신뢰도 ==========

    def _confidence(self, s: _Signals, ctx: Optional[MarketContext], data_age: float) -> ConfidenceBreakdown:
        c = ConfidenceConstants

        completeness = 0
        if s.has_stats:
            completeness += c.COMPLETENESS_STATS
            if s.xg is not None and s.xg > 0:
                completeness += c.COMPLETENESS_XG
        if s.has_timeline:
            completeness += c.COMPLETENESS_TIMELINE
        if ctx is not None:
            completeness += c.COMPLETENESS_ODDS

        freshness = 0
        for ceiling, points in c.FRESHNESS_BUCKETS:
            if data_age < ceiling:
                freshness = points
                break
        if s.anomalies():
            freshness -= c.FRESHNESS_ANOMALY_PENALTY

        consistency = 0
        if s.has_stats:
            consistency = c.CONSISTENCY_BASE
            if s.shots > 0 and s.xg is not None:
                per_shot = s.xg / s.shots
                if c.XG_PER_SHOT_MIN <= per_shot <= c.XG_PER_SHOT_MAX:
                    consistency += c.XG_PER_SHOT_POINTS
                else:
                    consistency += c.XG_PER_SHOT_PENALTY
            if s.possession_sum is not None and abs(s.possession_sum - 100) <= c.POSSESSION_SUM_TOLERANCE:
                consistency += c.POSSESSION_POINTS

        confirmation = 0
        if ctx is not None:
            confirmation += c.MARKET_CONTEXT_POINTS
            if ctx.is_live:
                confirmation += c.MARKET_LIVE_POINTS
            if ctx.over is not None and s.xg_debt is not None and s.xg_debt > 1:
                if ctx.over < c.MARKET_STRONG_OVER_PRICE:
                    confirmation += c.MARKET_STRONG_POINTS
                elif ctx.over < c.MARKET_WEAK_OVER_PRICE:
                    confirmation += c.MARKET_WEAK_POINTS

        return ConfidenceBreakdown(
            data_completeness=_clamp(completeness, 0, c.COMPLETENESS_MAX),
            freshness_stability=_clamp(freshness, 0, c.FRESHNESS_MAX),
            cross_source_consistency=_clamp(consistency, 0, c.CONSISTENCY_MAX),
            market_confirmation=_clamp(confirmation, 0, c.MARKET_MAX),
        )

    def _alerts(self, s: _Signals, ctx: Optional[MarketContext], unscoreable: bool) -> List[str]:
        alerts = []
        if unscoreable and not s.has_stats:
            alerts.append("statistics unavailable: event is unscoreable")
        if unscoreable and s.total_goals is None:
            alerts.append("score unavailable: event is unscoreable")
        if s.xg_debt is not None and s.xg_debt >= EdgeScoreConstants.XG_DEBT_THRESHOLD:
            alerts.append(f"xG debt {s.xg_debt:.1f} goals")
        if s.red_cards:
            alerts.append("red card shown")
        if s.minute >= TimingScoreConstants.PEAK_START_MINUTE and s.goal_diff is not None and s.goal_diff <= 1:
            alerts.append(f"late window at {s.minute}' with {s.goal_diff}-goal margin")
        if ctx is None:
            alerts.append("no market data")
        else:
            if ctx.suspended:
                alerts.append("market suspended")
            if ctx.previous_over is not None and ctx.over is not None and ctx.previous_over > ctx.over:
                alerts.append(f"over price falling {ctx.previous_over:.2f} -> {ctx.over:.2f}")
        alerts.extend(f"data anomaly: {anomaly}" for anomaly in s.anomalies())
        return alerts
