"""
공급자 페이로드 형태 가드

API-Football 응답 필드는 타입이 어긋나는 경우가 있습니다 (dict 자리에 문자열,
리스트 자리에 숫자 등). 형태가 다른 필드는 누락으로 읽고, 예외를 던지지 않습니다.
"""

from typing import Any, Dict, List, Optional, Tuple


def as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def dicts(value: Any) -> List[Dict[str, Any]]:
    """List items that are dicts; anything else in the list is dropped."""
    return [item for item in as_list(value) if isinstance(item, dict)]


def dig(value: Any, *keys: str) -> Any:
    """dig(fixture, "fixture", "status", "short") -> value or None on any wrong shape."""
    for key in keys:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def as_int(raw: Any) -> Optional[int]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return int(float(raw))
    except (TypeError, ValueError, OverflowError):
        return None


def as_str(raw: Any) -> Optional[str]:
    if raw is None or isinstance(raw, (dict, list)):
        return None
    return str(raw)


def pick_team_blocks(
    blocks: List[Dict[str, Any]], home_id: Optional[int], away_id: Optional[int]
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Pair /fixtures/statistics blocks with sides by team id, falling back to payload order.

    ``blocks`` must hold at least two dicts.
    """
    by_team = {as_int(dig(block, "team", "id")): block for block in blocks}
    if home_id is not None and away_id is not None and home_id in by_team and away_id in by_team:
        return by_team[home_id], by_team[away_id]
    return blocks[0], blocks[1]
