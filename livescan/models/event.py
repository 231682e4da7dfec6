"""Canonical live-event record produced by the aggregator."""

from enum import Enum
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

N = TypeVar("N")


class MatchStatus(str, Enum):
    NOT_STARTED = "not_started"
    FIRST_HALF = "first_half"
    HALF_TIME = "half_time"
    SECOND_HALF = "second_half"
    EXTRA_TIME = "extra_time"
    BREAK = "break"
    PENALTIES = "penalties"
    LIVE = "live"
    SUSPENDED = "suspended"
    FINISHED = "finished"
    UNKNOWN = "unknown"


class FetchStatus(str, Enum):
    SUCCESS = "SUCCESS"
    EMPTY = "EMPTY"
    ERROR = "ERROR"
    NOT_FETCHED = "NOT_FETCHED"


class DataQuality(str, Enum):
    REAL = "REAL"
    PARTIAL = "PARTIAL"
    INVALID = "INVALID"


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class TimelineKind(str, Enum):
    GOAL = "goal"
    CARD = "card"
    SUBSTITUTION = "substitution"
    VAR = "var"
    OTHER = "other"


class _Model(BaseModel):
    model_config = ConfigDict(frozen=True)


class SidePair(_Model, Generic[N]):
    home: Optional[N] = None
    away: Optional[N] = None

    @property
    def total(self) -> Optional[N]:
        if self.home is None and self.away is None:
            return None
        return (self.home or 0) + (self.away or 0)


class Participant(_Model):
    id: Optional[int] = None
    name: str = ""
    score: Optional[int] = None
    logo: Optional[str] = None


class Imbalance(_Model):
    shots_diff: int = 0
    shots_on_target_diff: int = 0
    xg_diff: float = 0.0
    corners_diff: int = 0
    possession_diff: float = 0.0
    score: float = 0.0
    attacking_side: str = "balanced"


class EventStats(_Model):
    has_real_data: bool = False
    shots: SidePair[int] = SidePair[int]()
    shots_on_target: SidePair[int] = SidePair[int]()
    shots_off_target: SidePair[int] = SidePair[int]()
    shots_inside_box: SidePair[int] = SidePair[int]()
    possession: SidePair[float] = SidePair[float]()
    corners: SidePair[int] = SidePair[int]()
    xg: SidePair[float] = SidePair[float]()
    fouls: SidePair[int] = SidePair[int]()
    yellow_cards: SidePair[int] = SidePair[int]()
    red_cards: SidePair[int] = SidePair[int]()
    offsides: SidePair[int] = SidePair[int]()
    saves: SidePair[int] = SidePair[int]()
    imbalance: Optional[Imbalance] = None


class HandicapOdds(_Model):
    line: Optional[float] = None
    home: Optional[float] = None
    away: Optional[float] = None
    home_trend: Trend = Trend.STABLE
    away_trend: Trend = Trend.STABLE


class OverUnderLine(_Model):
    line: float
    over: Optional[float] = None
    under: Optional[float] = None
    is_main: bool = False


class OverUnderOdds(_Model):
    line: Optional[float] = None
    over: Optional[float] = None
    under: Optional[float] = None
    over_trend: Trend = Trend.STABLE
    under_trend: Trend = Trend.STABLE
    all_lines: Optional[List[OverUnderLine]] = None


class MatchWinnerOdds(_Model):
    home: Optional[float] = None
    draw: Optional[float] = None
    away: Optional[float] = None


class BothTeamsScoreOdds(_Model):
    yes: Optional[float] = None
    no: Optional[float] = None


class OddsBlock(_Model):
    handicap: HandicapOdds = HandicapOdds()
    over_under: OverUnderOdds = OverUnderOdds()
    match_winner: Optional[MatchWinnerOdds] = None
    both_teams_score: Optional[BothTeamsScoreOdds] = None
    fetch_status: FetchStatus = FetchStatus.NOT_FETCHED
    is_live: bool = False
    source: Optional[str] = None
    bookmaker: Optional[str] = None
    captured_at: Optional[str] = None
    is_stopped: bool = False
    is_blocked: bool = False
    no_data_reason: Optional[str] = None
    initial_handicap: Optional[float] = None
    initial_over_under: Optional[float] = None
    previous_over: Optional[float] = None
    previous_handicap_line: Optional[float] = None

    @property
    def has_data(self) -> bool:
        return (
            self.handicap.line is not None
            or self.over_under.line is not None
            or (self.match_winner is not None and self.match_winner.home is not None)
        )

    @property
    def markets(self) -> List[str]:
        found = []
        if self.match_winner is not None and self.match_winner.home is not None:
            found.append("1X2")
        if self.over_under.line is not None and (self.over_under.over is not None or self.over_under.under is not None):
            found.append("OVER_UNDER")
        if self.handicap.line is not None and (self.handicap.home is not None or self.handicap.away is not None):
            found.append("ASIAN_HANDICAP")
        return found


class TimelineEntry(_Model):
    minute: Optional[int] = None
    extra_minute: Optional[int] = None
    kind: TimelineKind = TimelineKind.OTHER
    detail: str = ""
    side: Optional[str] = None
    team_id: Optional[int] = None
    player: Optional[str] = None
    assist: Optional[str] = None


class CardSummary(_Model):
    yellow: SidePair[int] = SidePair[int](home=0, away=0)
    red: SidePair[int] = SidePair[int](home=0, away=0)
    red_card_players: List[str] = Field(default_factory=list)


class Validation(_Model):
    fixture_real: bool = False
    stats_real: bool = False
    odds_real: bool = False
    timeline_real: bool = False
    odds_markets: List[str] = Field(default_factory=list)
    odds_source: Optional[str] = None
    quality: DataQuality = DataQuality.INVALID
    reasons: List[str] = Field(default_factory=list)


class Event(_Model):
    id: int
    competition_id: Optional[int] = None
    competition_name: str = ""
    competition_country: Optional[str] = None
    home: Participant
    away: Participant
    minute: int = 0
    status: MatchStatus = MatchStatus.UNKNOWN
    status_code: str = ""
    kickoff: Optional[str] = None
    stats: EventStats = EventStats()
    odds: OddsBlock = OddsBlock()
    timeline: List[TimelineEntry] = Field(default_factory=list)
    cards: CardSummary = CardSummary()
    substitutions: SidePair[int] = SidePair[int](home=0, away=0)
    var_cancelled: bool = False
    scenario_tags: List[str] = Field(default_factory=list)
    kill_score: int = 0
    validation: Validation = Validation()
    unscoreable: bool = True

    @property
    def has_score(self) -> bool:
        return self.home.score is not None and self.away.score is not None

    @property
    def goal_diff(self) -> Optional[int]:
        """None while either score is unknown."""
        return self.home.score - self.away.score if self.has_score else None

    @property
    def total_goals(self) -> Optional[int]:
        return self.home.score + self.away.score if self.has_score else None
