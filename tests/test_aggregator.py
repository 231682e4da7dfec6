"""경기 병합(Aggregator) 테스트"""

from livescan.models.event import FetchStatus, MatchStatus, SidePair, TimelineKind
from livescan.services.aggregator import (
    basic_kill_score,
    combine,
    normalize_status,
    parse_statistics,
    parse_timeline,
    resolve_odds,
    scenario_tags,
)
from tests.factories import (
    AWAY_ID,
    HOME_ID,
    make_fixture,
    make_live_odds,
    make_prematch_odds,
    make_statistics,
    make_timeline,
)


def test_normalize_status():
    assert normalize_status("2H") is MatchStatus.SECOND_HALF
    assert normalize_status("ht") is MatchStatus.HALF_TIME
    assert normalize_status("FT") is MatchStatus.FINISHED
    assert normalize_status("WHAT") is MatchStatus.UNKNOWN
    assert normalize_status(None) is MatchStatus.UNKNOWN


def test_statistics_parsed_by_team_id():
    # 블록 순서가 바뀌어도 팀 id 로 매칭
    stats = list(reversed(make_statistics()))

    block = parse_statistics(stats, HOME_ID, AWAY_ID)

    assert block.has_real_data
    assert (block.shots.home, block.shots.away) == (14, 6)
    assert block.possession.home == 58.0
    assert block.xg.total == 2.5
    assert block.imbalance.attacking_side == "home"
    assert block.imbalance.shots_diff == 8


def test_statistics_without_possession_is_not_real():
    stats = make_statistics(possession=(None, None))

    block = parse_statistics(stats, HOME_ID, AWAY_ID)

    assert not block.has_real_data
    assert block.shots.home == 14


def test_statistics_need_two_blocks():
    assert not parse_statistics(None).has_real_data
    assert not parse_statistics([]).has_real_data
    assert not parse_statistics(make_statistics()[:1]).has_real_data


def test_timeline_summaries():
    timeline = make_timeline(
        (12, "Goal", "Normal Goal", HOME_ID, "Saka"),
        (30, "Card", "Yellow Card", AWAY_ID, "Caicedo"),
        (55, "Card", "Second Yellow card", AWAY_ID, "Caicedo"),
        (60, "subst", "Substitution 1", HOME_ID, "Trossard"),
        (71, "Var", "Goal cancelled", AWAY_ID, "Palmer"),
    )

    entries, cards, subs, var_cancelled = parse_timeline(timeline, HOME_ID, AWAY_ID)

    assert [e.kind for e in entries] == [
        TimelineKind.GOAL, TimelineKind.CARD, TimelineKind.CARD, TimelineKind.SUBSTITUTION, TimelineKind.VAR,
    ]
    assert entries[0].side == "home"
    assert cards.yellow.away == 1
    assert cards.red.away == 1
    assert cards.red_card_players == ["Caicedo"]
    assert subs.home == 1
    assert var_cancelled


def test_live_odds_take_precedence_and_keep_prematch_initial_lines():
    live = make_live_odds(over_under=[("3.5", "1.80", "2.00", True)])
    prematch = make_prematch_odds(over_lines={"2.5": ("1.90", "1.90")})

    odds = resolve_odds(live, prematch, captured_at="t0")

    assert odds.is_live
    assert odds.over_under.line == 3.5
    assert odds.initial_over_under == 2.5
    assert odds.initial_handicap == -0.25


def test_prematch_fallback_when_live_empty():
    prematch = make_prematch_odds(over_lines={"2.5": ("1.90", "1.90")})

    odds = resolve_odds([], prematch)

    assert odds.fetch_status is FetchStatus.SUCCESS
    assert not odds.is_live
    assert odds.over_under.line == 2.5


def test_odds_fetch_status_without_data():
    assert resolve_odds(None, None).fetch_status is FetchStatus.NOT_FETCHED
    assert resolve_odds([], None).fetch_status is FetchStatus.EMPTY
    assert resolve_odds([], [], odds_failed=True).fetch_status is FetchStatus.ERROR


def test_scenario_tags():
    no_reds = SidePair[int](home=0, away=0)

    assert scenario_tags(80, 0, 0, None, no_reds, True) == ["critical_time", "balanced", "deadlock"]
    # 홈 정배(-1.0)가 지고 있음
    assert "strong_behind" in scenario_tags(72, 0, 1, -1.0, no_reds, True)
    assert "strong_behind" not in scenario_tags(60, 0, 1, -1.0, no_reds, True)
    tags = scenario_tags(40, 4, 0, None, SidePair[int](home=0, away=1), False)
    assert {"red_card", "away_red", "large_lead", "no_stats"} <= set(tags)


def test_kill_score_bounds():
    stats = parse_statistics(make_statistics(shots=(20, 10), xg=("2.40", "0.80")), HOME_ID, AWAY_ID)

    high = basic_kill_score(88, 1, 1, stats)
    low = basic_kill_score(10, 5, 0, parse_statistics(None))

    assert high == 30 + 15 + 18 + 10 + 10
    assert low == 20
    assert 0 <= low <= high <= 100


def test_combine_is_pure_and_complete():
    fixture = make_fixture(fixture_id=77, status="2H", elapsed=81, home_goals=1, away_goals=1)
    stats = make_statistics()
    timeline = make_timeline((12, "Goal", "Normal Goal", HOME_ID, "Saka"))
    live = make_live_odds(over_under=[("2.5", "1.70", "2.10", True)])

    first = combine(fixture, stats, timeline, live, None, captured_at="t0")
    second = combine(fixture, stats, timeline, live, None, captured_at="t0")

    assert first == second
    assert first.id == 77
    assert first.competition_name == "EPL"
    assert first.status is MatchStatus.SECOND_HALF
    assert first.minute == 81
    assert first.stats.has_real_data and not first.unscoreable
    assert first.odds.over_under.line == 2.5
    assert "critical_time" in first.scenario_tags
    assert len(first.timeline) == 1


def test_combine_without_stats_marks_unscoreable():
    event = combine(make_fixture(league_id=9999), None, None, None, None)

    assert event.unscoreable
    assert event.competition_name == "Premier League"
    assert event.odds.fetch_status is FetchStatus.NOT_FETCHED
    assert "no_stats" in event.scenario_tags


def test_combine_tolerates_malformed_fixture():
    fixture = {"fixture": {"id": "12", "status": {}}, "teams": None, "goals": {"home": "x"}}

    event = combine(fixture, [], [], [], [])

    assert event.id == 12
    assert event.status is MatchStatus.UNKNOWN
    assert event.home.score is None


def test_timeline_tolerates_wrongly_shaped_fields():
    timeline = make_timeline((12, "Goal", "Normal Goal", HOME_ID, "Saka"))
    timeline += [
        {"time": 20, "team": {"id": AWAY_ID}, "player": "Palmer", "type": "Card", "detail": "Yellow Card"},
        {"time": {"elapsed": "x"}, "team": 42, "player": {"name": "Rice"}, "type": "subst", "detail": None},
        "not-an-entry",
    ]

    entries, cards, subs, _ = parse_timeline(timeline, HOME_ID, AWAY_ID)

    assert len(entries) == 3
    assert entries[1].minute is None and entries[1].player is None
    assert entries[1].side == "away"
    assert entries[2].team_id is None and entries[2].side is None
    assert entries[2].player == "Rice"
    assert cards.yellow.away == 1
    assert subs.home == 0 and subs.away == 0


def test_statistics_tolerate_wrongly_shaped_blocks():
    stats = make_statistics()
    stats[0]["team"] = 42
    stats[1]["statistics"] = "n/a"

    block = parse_statistics(stats, HOME_ID, AWAY_ID)

    assert not block.has_real_data
    assert block.shots.home == 14
    assert block.shots.away is None
    assert not parse_statistics({"response": []}, HOME_ID, AWAY_ID).has_real_data


def test_combine_tolerates_non_dict_sections():
    fixture = make_fixture(fixture_id=5)
    fixture["teams"] = "x"
    fixture["goals"] = 5
    fixture["league"] = ["EPL"]

    event = combine(fixture, make_statistics(), 7, {"odds": 1}, "n/a")

    assert event.id == 5
    assert event.home.name == "" and event.home.score is None
    assert event.competition_id is None
    assert event.timeline == []
    assert event.unscoreable


def test_unknown_score_skips_score_derived_tags_and_points():
    stats = make_statistics()
    unknown = combine(make_fixture(elapsed=80, home_goals=None, away_goals=0), stats, [], None, None)
    known = combine(make_fixture(elapsed=80, home_goals=0, away_goals=0), stats, [], None, None)

    assert unknown.stats.has_real_data
    assert unknown.unscoreable and not known.unscoreable
    assert unknown.goal_diff is None and unknown.total_goals is None
    assert "balanced" not in unknown.scenario_tags
    assert "deadlock" not in unknown.scenario_tags
    assert {"balanced", "deadlock"} <= set(known.scenario_tags)
    assert known.kill_score - unknown.kill_score == 18


def test_scenario_tags_with_unknown_score():
    no_reds = SidePair[int](home=0, away=0)

    assert scenario_tags(80, None, 0, -1.0, no_reds, True) == ["critical_time"]
    assert scenario_tags(80, 3, None, None, no_reds, True) == ["critical_time"]
