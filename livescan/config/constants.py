"""
라이브 스캐너 상수 정의

스코어링/검증/캐시 정책에서 사용하는 임계값을 한 곳에서 관리합니다.
알고리즘 구조를 건드리지 않고 값만 조정할 수 있도록 인라인 리터럴 대신
여기의 이름 있는 상수를 사용합니다.

사용법:
    from livescan.config.constants import BaseScoreConstants

    if minute >= BaseScoreConstants.TIME_PRESSURE_HIGH_MINUTE:
        score += BaseScoreConstants.TIME_PRESSURE_HIGH_POINTS
"""

from typing import Final, FrozenSet, Tuple


class RefreshConstants:
    """캐시/락 키와 응답 캐시 헤더"""

    SNAPSHOT_KEY: Final[str] = "livescan:snapshot"
    LOCK_NAME: Final[str] = "livescan:refresh-lock"
    API_CALLS_KEY_PREFIX: Final[str] = "livescan:metrics:calls"
    API_CALLS_TTL_SECONDS: Final[int] = 86400

    # 중간 캐시(CDN)용 Cache-Control 힌트
    CACHE_CONTROL_FRESH: Final[str] = "s-maxage=10, stale-while-revalidate=30"
    CACHE_CONTROL_STALE: Final[str] = "s-maxage=5, stale-while-revalidate=60"


class FixtureStatusConstants:
    """API-Football 상태 코드 분류"""

    # 통계/타임라인을 조회할 상태
    DETAIL_CODES: Final[FrozenSet[str]] = frozenset({"1H", "HT", "2H", "ET", "BT", "P", "LIVE"})
    # live 카운트 대상 (하프타임/브레이크 제외)
    IN_PLAY_CODES: Final[FrozenSet[str]] = frozenset({"1H", "2H", "ET", "P", "LIVE"})
    FINISHED_CODES: Final[FrozenSet[str]] = frozenset({"FT", "AET", "PEN"})


class KillScoreConstants:
    """수집 시점 경량 킬 스코어 (0-100)"""

    BASE: Final[int] = 30

    # 시간 가중치
    TIME_VERY_LATE_MINUTE: Final[int] = 85
    TIME_VERY_LATE_POINTS: Final[int] = 15
    TIME_LATE_MINUTE: Final[int] = 75
    TIME_LATE_POINTS: Final[int] = 10
    TIME_MID_MINUTE: Final[int] = 60
    TIME_MID_POINTS: Final[int] = 5

    # 점수차 가중치
    DRAW_POINTS: Final[int] = 18
    ONE_GOAL_POINTS: Final[int] = 12
    TWO_GOAL_POINTS: Final[int] = 5
    BLOWOUT_PENALTY: Final[int] = -10

    # 통계 볼륨 가중치 (실데이터일 때만)
    SHOTS_HIGH: Final[int] = 25
    SHOTS_HIGH_POINTS: Final[int] = 10
    SHOTS_MID: Final[int] = 18
    SHOTS_MID_POINTS: Final[int] = 6
    XG_HIGH: Final[float] = 3.0
    XG_HIGH_POINTS: Final[int] = 10
    XG_MID: Final[float] = 2.0
    XG_MID_POINTS: Final[int] = 5


class ScenarioConstants:
    """시나리오 태그 조건"""

    CRITICAL_TIME_MINUTE: Final[int] = 75
    STRONG_BEHIND_MINUTE: Final[int] = 70
    DEADLOCK_MINUTE: Final[int] = 60
    LARGE_LEAD_DIFF: Final[int] = 3


class ImbalanceConstants:
    """양 팀 통계 불균형 지표"""

    SHOTS_WEIGHT: Final[float] = 3.0
    SHOTS_ON_TARGET_WEIGHT: Final[float] = 5.0
    XG_WEIGHT: Final[float] = 25.0
    CORNERS_WEIGHT: Final[float] = 2.0
    POSSESSION_WEIGHT: Final[float] = 0.5
    MAX_SCORE: Final[float] = 100.0

    # 공격 우위 판정
    ATTACKING_SHOTS_DIFF: Final[int] = 5
    ATTACKING_XG_DIFF: Final[float] = 0.5


class ValidationConstants:
    """데이터 품질 검증"""

    # REAL 판정에 필요한 실데이터 소스 수 (4개 중)
    REAL_SOURCES_REQUIRED: Final[int] = 3
    PARTIAL_SOURCES_REQUIRED: Final[int] = 1

    # 킥오프 직후에는 타임라인이 비어 있어도 정상으로 간주
    TIMELINE_GRACE_MINUTE: Final[int] = 15

    # 통계 블록의 핵심 지표 (API-Football 표기)
    STAT_TOTAL_SHOTS: Final[str] = "Total Shots"
    STAT_SHOTS_ON_GOAL: Final[str] = "Shots on Goal"
    STAT_POSSESSION: Final[str] = "Ball Possession"
    STAT_CORNERS: Final[str] = "Corner Kicks"
    CRITICAL_STATS: Final[Tuple[Tuple[str, str], ...]] = (
        (STAT_TOTAL_SHOTS, "SHOTS"),
        (STAT_SHOTS_ON_GOAL, "SHOTS_ON_TARGET"),
        (STAT_POSSESSION, "POSSESSION"),
        (STAT_CORNERS, "CORNERS"),
    )


class BaseScoreConstants:
    """Base 컴포넌트 (0-20): 점수 상태 + 총 득점 + 시간 압박"""

    MAX: Final[int] = 20

    DRAW_POINTS: Final[int] = 8
    ONE_GOAL_POINTS: Final[int] = 6
    TWO_GOAL_POINTS: Final[int] = 2

    GOALS_NONE_POINTS: Final[int] = 3
    GOALS_OPEN_MAX: Final[int] = 3          # 1-3골: 오픈 게임
    GOALS_OPEN_POINTS: Final[int] = 6
    GOALS_HIGH_MAX: Final[int] = 4
    GOALS_HIGH_POINTS: Final[int] = 3
    GOALS_EXTREME_POINTS: Final[int] = 1

    TIME_PRESSURE_HIGH_MINUTE: Final[int] = 80
    TIME_PRESSURE_HIGH_POINTS: Final[int] = 6
    TIME_PRESSURE_MID_MINUTE: Final[int] = 75
    TIME_PRESSURE_MID_POINTS: Final[int] = 4
    TIME_PRESSURE_LOW_MINUTE: Final[int] = 70
    TIME_PRESSURE_LOW_POINTS: Final[int] = 2
    TIME_PRESSURE_MAX_DIFF: Final[int] = 1


class EdgeScoreConstants:
    """Edge 컴포넌트 (0-30): 슈팅량 + xG + xG 부채 + 유효슈팅 비율"""

    MAX: Final[int] = 30

    SHOTS_BUCKETS: Final[Tuple[Tuple[int, int], ...]] = ((25, 10), (18, 7), (12, 4), (6, 2))
    XG_BUCKETS: Final[Tuple[Tuple[float, int], ...]] = ((3.0, 10), (2.0, 5), (1.2, 3))

    XG_DEBT_THRESHOLD: Final[float] = 1.5
    XG_DEBT_POINTS: Final[int] = 4

    # 유효슈팅 비율 (슈팅이 최소 개수 이상일 때만)
    ACCURACY_MIN_SHOTS: Final[int] = 5
    ACCURACY_BUCKETS: Final[Tuple[Tuple[float, int], ...]] = ((0.45, 6), (0.35, 4), (0.25, 2))


class TimingScoreConstants:
    """Timing 컴포넌트 (0-20): 65분 이전 0, 82분 전후 최대, 90+ 감소"""

    MAX: Final[float] = 20.0
    START_MINUTE: Final[int] = 65
    PEAK_START_MINUTE: Final[int] = 79
    PEAK_END_MINUTE: Final[int] = 86
    TAPER_END_MINUTE: Final[int] = 96
    FLOOR: Final[float] = 8.0


class MarketScoreConstants:
    """Market 컴포넌트 (0-20): 배당 존재 여부와 움직임 방향"""

    MAX: Final[int] = 20

    OVER_UNDER_PRESENT_POINTS: Final[int] = 6
    OTHER_MARKET_PRESENT_POINTS: Final[int] = 2

    # 오버 배당 수준 (낮을수록 시장이 추가 득점을 기대)
    OVER_PRICE_BUCKETS: Final[Tuple[Tuple[float, int], ...]] = ((1.5, 6), (1.65, 4), (1.8, 3), (2.0, 2))

    # 오버 배당 하락폭 0.03당 1점
    OVER_DROP_UNIT: Final[float] = 0.03
    OVER_DROP_MAX_POINTS: Final[int] = 6

    # 핸디캡 라인 축소 0.25당 2점
    AH_TIGHTEN_UNIT: Final[float] = 0.25
    AH_TIGHTEN_POINTS_PER_UNIT: Final[int] = 2
    AH_TIGHTEN_MAX_POINTS: Final[int] = 4

    # 통계-시장 일치
    CONSISTENCY_XG_MARGIN: Final[float] = 1.0
    CONSISTENCY_OVER_PRICE: Final[float] = 2.0
    CONSISTENCY_XG_POINTS: Final[int] = 4
    CONSISTENCY_SHOTS: Final[int] = 20
    CONSISTENCY_SHOTS_POINTS: Final[int] = 2


class QualityScoreConstants:
    """Quality 컴포넌트 (-10 ~ +10)"""

    MIN: Final[int] = -10
    MAX: Final[int] = 10

    STATS_AND_TIMELINE_POINTS: Final[int] = 5
    SINGLE_SOURCE_POINTS: Final[int] = 2
    ODDS_POINTS: Final[int] = 3
    LIVE_ODDS_POINTS: Final[int] = 2

    MISSING_STATS_PENALTY: Final[int] = -5
    ZERO_SHOTS_MINUTE: Final[int] = 20
    ZERO_SHOTS_PENALTY: Final[int] = -5
    LOW_XG_SHOTS: Final[int] = 15
    LOW_XG_VALUE: Final[float] = 0.3
    LOW_XG_PENALTY: Final[int] = -3


class ConfidenceConstants:
    """신뢰도 (0-100): 점수와 독립적인 4개 컴포넌트"""

    # 데이터 완전성 (0-35)
    COMPLETENESS_MAX: Final[int] = 35
    COMPLETENESS_STATS: Final[int] = 15
    COMPLETENESS_TIMELINE: Final[int] = 10
    COMPLETENESS_XG: Final[int] = 5
    COMPLETENESS_ODDS: Final[int] = 5

    # 신선도/안정성 (0-20)
    FRESHNESS_MAX: Final[int] = 20
    FRESHNESS_BUCKETS: Final[Tuple[Tuple[float, int], ...]] = ((15.0, 20), (60.0, 12), (120.0, 6))
    FRESHNESS_ANOMALY_PENALTY: Final[int] = 5

    # 교차 소스 일관성 (0-25)
    CONSISTENCY_MAX: Final[int] = 25
    CONSISTENCY_BASE: Final[int] = 10
    XG_PER_SHOT_MIN: Final[float] = 0.05
    XG_PER_SHOT_MAX: Final[float] = 0.20
    XG_PER_SHOT_POINTS: Final[int] = 10
    XG_PER_SHOT_PENALTY: Final[int] = -5
    POSSESSION_SUM_TOLERANCE: Final[float] = 2.0
    POSSESSION_POINTS: Final[int] = 5

    # 시장 확인 (0-20)
    MARKET_MAX: Final[int] = 20
    MARKET_CONTEXT_POINTS: Final[int] = 5
    MARKET_LIVE_POINTS: Final[int] = 5
    MARKET_STRONG_OVER_PRICE: Final[float] = 1.8
    MARKET_STRONG_POINTS: Final[int] = 10
    MARKET_WEAK_OVER_PRICE: Final[float] = 2.0
    MARKET_WEAK_POINTS: Final[int] = 5


class ActionThresholds:
    """(점수, 신뢰도) → 액션 매핑. 위에서부터 첫 매칭"""

    BET_SCORE: Final[int] = 85
    BET_CONFIDENCE: Final[int] = 70
    PREPARE_SCORE: Final[int] = 80
    PREPARE_CONFIDENCE: Final[int] = 55
    WATCH_SCORE: Final[int] = 70


# 리그 ID → 표시 이름 (없으면 공급자 이름 사용)
LEAGUE_DISPLAY_NAMES: Final[dict] = {
    39: "EPL",
    140: "La Liga",
    135: "Serie A",
    78: "Bundesliga",
    61: "Ligue 1",
    2: "UCL",
    3: "UEL",
    4: "UEFA Super Cup",
    848: "UECL",
    94: "Primeira Liga",
    88: "Eredivisie",
    144: "Jupiler Pro",
    203: "Super Lig",
    235: "RPL",
    179: "Scottish Prem",
    262: "Liga MX",
    128: "Liga Profesional",
    71: "Brasileirao A",
    72: "Brasileirao B",
    253: "MLS",
    292: "K League 1",
    17: "World Cup",
}
