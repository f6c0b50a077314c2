"""
Scoreboard records linked to generated matches.

The engine creates exactly one scoreboard per generated match and otherwise
only resets team names when bracket progression changes a match's
participants. Live scoring belongs to the scoring surface.
"""
from typing import Any, Dict, List, Optional

from sqlmodel import Session

from poolplay.models.scoreboard import Scoreboard
from poolplay.models.team import Team

MAX_TITLE_LENGTH = 30
MAX_TEAM_NAME_LENGTH = 10

SCORING_DEFAULTS: Dict[str, Any] = {
    "set_targets": [25, 25, 15],
    "win_by": 2,
    "caps": [27, 27, 17],
}


def _positive_int(value: Any, fallback: int) -> int:
    try:
        parsed = round(float(value))
    except (TypeError, ValueError, OverflowError):
        return fallback
    return parsed if parsed > 0 else fallback


def _scoring_array(value: Any, fallback: List[int]) -> List[int]:
    if not isinstance(value, list) or len(value) != 3:
        return list(fallback)
    return [_positive_int(entry, fallback[index]) for index, entry in enumerate(value)]


def normalize_scoring(raw: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Best-of-3 scoring config with defaults for anything missing or malformed."""
    scoring = raw if isinstance(raw, dict) else {}
    return {
        "set_targets": _scoring_array(scoring.get("set_targets"), SCORING_DEFAULTS["set_targets"]),
        "win_by": _positive_int(scoring.get("win_by"), SCORING_DEFAULTS["win_by"]),
        "caps": _scoring_array(scoring.get("caps"), SCORING_DEFAULTS["caps"]),
    }


def scoreboard_team_name(team: Optional[Team], fallback: str) -> str:
    if team is None:
        return fallback
    name = (team.short_name or team.name or "").strip()[:MAX_TEAM_NAME_LENGTH]
    return name or fallback


def create_match_scoreboard(
    session: Session,
    tournament_id: int,
    title: str,
    team_a: Optional[Team],
    team_b: Optional[Team],
    scoring: Optional[Dict[str, Any]] = None,
) -> Scoreboard:
    """Create and flush a scoreboard so its id can be linked to a match. Caller commits."""
    scoreboard = Scoreboard(
        tournament_id=tournament_id,
        title=(title.strip() or "Match")[:MAX_TITLE_LENGTH],
        team_a_name=scoreboard_team_name(team_a, "Team A"),
        team_b_name=scoreboard_team_name(team_b, "Team B"),
        sets=[],
        scoring=normalize_scoring(scoring),
    )
    session.add(scoreboard)
    session.flush()
    return scoreboard


def reset_scoreboard(scoreboard: Scoreboard, team_a: Optional[Team], team_b: Optional[Team]) -> None:
    """Point a scoreboard at new participants and clear its completed sets."""
    scoreboard.team_a_name = scoreboard_team_name(team_a, "Team A")
    scoreboard.team_b_name = scoreboard_team_name(team_b, "Team B")
    scoreboard.sets = []
