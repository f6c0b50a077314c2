"""
Standings Aggregator

Ranked team records computed on demand from finalized matches:
- A scope is one non-playoff phase ("phase1", "phase2", "crossover") or
  "cumulative" (the union of every non-playoff phase of the format)
- Only matches with status "final" and a stored result count; winner and
  loser are read from the result, never re-derived
- Every team appears, including teams with no finalized matches

Ranking is an explicit total order:
    matches won desc, set differential desc, point differential desc,
    manual override position (exact ties only), team id asc
Ranks are 1-based and strictly increasing; tied teams never share a rank.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlmodel import Session

from poolplay.errors import InvalidInput, PrereqNotMet
from poolplay.models.match import Match
from poolplay.models.pool import Pool
from poolplay.models.scoreboard import Scoreboard
from poolplay.models.team import Team
from poolplay.models.tournament import Tournament
from poolplay.services.format_registry import (
    CUMULATIVE_SCOPE,
    STAGE_POOL_PLAY,
    FormatDefinition,
    get_format,
)
from poolplay.services.tournament_state import (
    is_finalized,
    list_teams,
    pool_team_ids,
    require_tournament,
    stage_pools,
    tournament_matches,
)
from poolplay.utils.tournament_lock import tournament_lock

logger = logging.getLogger(__name__)

REQUIRED_SET_WINS = 2
MAX_BEST_OF_THREE_SETS = 3

PLACEMENTS_FROM_STANDINGS = "standings"
PLACEMENTS_FROM_OVERRIDES = "overrides"


@dataclass
class StandingsEntry:
    team_id: int
    name: str
    short_name: Optional[str] = None
    matches_played: int = 0
    matches_won: int = 0
    matches_lost: int = 0
    sets_won: int = 0
    sets_lost: int = 0
    points_for: int = 0
    points_against: int = 0
    rank: int = 0

    @property
    def set_diff(self) -> int:
        return self.sets_won - self.sets_lost

    @property
    def point_diff(self) -> int:
        return self.points_for - self.points_against

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "team_id": self.team_id,
            "name": self.name,
            "short_name": self.short_name,
            "matches_played": self.matches_played,
            "matches_won": self.matches_won,
            "matches_lost": self.matches_lost,
            "sets_won": self.sets_won,
            "sets_lost": self.sets_lost,
            "sets_played": self.sets_won + self.sets_lost,
            "set_diff": self.set_diff,
            "points_for": self.points_for,
            "points_against": self.points_against,
            "point_diff": self.point_diff,
        }


# ============================================================================
# Match snapshots
# ============================================================================


def _set_score(raw: Any, set_no: int) -> Dict[str, int]:
    if not isinstance(raw, dict):
        raise InvalidInput(f"Set {set_no} is not a score pair", field="sets")
    try:
        a, b = int(raw.get("a")), int(raw.get("b"))
    except (TypeError, ValueError):
        raise InvalidInput(f"Set {set_no} has non-numeric scores", field="sets")
    if a < 0 or b < 0:
        raise InvalidInput(f"Set {set_no} has negative scores", field="sets")
    return {"set_no": set_no, "a": a, "b": b}


def compute_match_snapshot(match: Match, scoreboard: Optional[Scoreboard]) -> Dict[str, Any]:
    """
    Derive the best-of-3 result of a match from its scoreboard's completed sets.

    Raises:
        InvalidInput: missing teams or scoreboard, tied sets, or a set history
            that is not a completed best-of-3 outcome
    """
    if match.team_a_id is None or match.team_b_id is None:
        raise InvalidInput("Match is missing team assignments", field="team_a_id")
    if scoreboard is None:
        raise InvalidInput("Match does not have a linked scoreboard", field="scoreboard_id")

    raw_sets = scoreboard.sets if isinstance(scoreboard.sets, list) else []
    if len(raw_sets) < REQUIRED_SET_WINS or len(raw_sets) > MAX_BEST_OF_THREE_SETS:
        raise InvalidInput("Scoreboard must contain 2 or 3 completed sets for a best-of-3 match", field="sets")

    set_scores = [_set_score(raw, index + 1) for index, raw in enumerate(raw_sets)]
    sets_won_a = sets_won_b = points_a = points_b = 0
    for set_score in set_scores:
        if set_score["a"] == set_score["b"]:
            raise InvalidInput(f"Set {set_score['set_no']} ended in a tie and cannot be finalized", field="sets")
        if REQUIRED_SET_WINS in (sets_won_a, sets_won_b):
            raise InvalidInput(
                f"Set {set_score['set_no']} was played after the match was already decided", field="sets"
            )
        points_a += set_score["a"]
        points_b += set_score["b"]
        if set_score["a"] > set_score["b"]:
            sets_won_a += 1
        else:
            sets_won_b += 1

    if (sets_won_a == REQUIRED_SET_WINS) == (sets_won_b == REQUIRED_SET_WINS):
        raise InvalidInput("Scoreboard does not represent a completed best-of-3 outcome", field="sets")

    a_won = sets_won_a > sets_won_b
    return {
        "winner_team_id": match.team_a_id if a_won else match.team_b_id,
        "loser_team_id": match.team_b_id if a_won else match.team_a_id,
        "sets_won_a": sets_won_a,
        "sets_won_b": sets_won_b,
        "sets_played": len(set_scores),
        "points_for_a": points_a,
        "points_against_a": points_b,
        "points_for_b": points_b,
        "points_against_b": points_a,
        "set_scores": set_scores,
    }


# ============================================================================
# Aggregation and ranking
# ============================================================================


def _new_entries(teams: Sequence[Team]) -> Dict[int, StandingsEntry]:
    return {t.id: StandingsEntry(team_id=t.id, name=t.name, short_name=t.short_name) for t in teams}


def accumulate_match(entries: Dict[int, StandingsEntry], match: Match) -> None:
    """Credit one finalized match to the entries of its two teams (teams outside entries are skipped)."""
    result = match.result or {}
    winner_id = result.get("winner_team_id")
    loser_id = result.get("loser_team_id")
    sides = (
        (match.team_a_id, result.get("sets_won_a", 0), result.get("sets_won_b", 0),
         result.get("points_for_a", 0), result.get("points_against_a", 0)),
        (match.team_b_id, result.get("sets_won_b", 0), result.get("sets_won_a", 0),
         result.get("points_for_b", 0), result.get("points_against_b", 0)),
    )
    for team_id, sets_won, sets_lost, points_for, points_against in sides:
        entry = entries.get(team_id)
        if entry is None:
            continue
        entry.matches_played += 1
        if team_id == winner_id:
            entry.matches_won += 1
        elif team_id == loser_id:
            entry.matches_lost += 1
        entry.sets_won += int(sets_won or 0)
        entry.sets_lost += int(sets_lost or 0)
        entry.points_for += int(points_for or 0)
        entry.points_against += int(points_against or 0)


def standings_sort_key(entry: StandingsEntry, override_position: Dict[int, int]) -> Tuple[int, int, int, int, int]:
    unlisted = len(override_position)
    return (
        -entry.matches_won,
        -entry.set_diff,
        -entry.point_diff,
        override_position.get(entry.team_id, unlisted),
        entry.team_id,
    )


def rank_entries(entries: Sequence[StandingsEntry], override_order: Optional[Sequence[int]] = None) -> List[StandingsEntry]:
    """Sort entries by the standings order and assign strictly increasing 1-based ranks."""
    override_position = {team_id: index for index, team_id in enumerate(override_order or [])}
    ordered = sorted(entries, key=lambda e: standings_sort_key(e, override_position))
    for index, entry in enumerate(ordered):
        entry.rank = index + 1
    return ordered


def _is_permutation(order: Any, team_ids: Sequence[int]) -> bool:
    if not isinstance(order, list) or len(order) != len(team_ids):
        return False
    return sorted(order) == sorted(team_ids)


def phase_overrides(tournament: Tournament, scope: str) -> Dict[str, Any]:
    overrides = tournament.standings_overrides or {}
    entry = overrides.get(scope)
    return entry if isinstance(entry, dict) else {}


def valid_scopes(format_def: Optional[FormatDefinition]) -> List[str]:
    if not format_def:
        return [CUMULATIVE_SCOPE]
    return format_def.non_playoff_phases() + [CUMULATIVE_SCOPE]


def scope_phases(format_def: Optional[FormatDefinition], scope: str) -> Optional[List[str]]:
    """Phases aggregated for a scope. None means every non-playoff phase (no format applied)."""
    if scope == CUMULATIVE_SCOPE:
        return format_def.non_playoff_phases() if format_def else None
    return [scope]


def _in_scope(match: Match, phases: Optional[List[str]]) -> bool:
    if phases is None:
        return match.phase != "playoffs"
    return match.phase in phases


def _pool_standings(
    pool: Pool, team_ids: List[int], teams_by_id: Dict[int, Team], matches: Sequence[Match], override_order: Any
) -> List[StandingsEntry]:
    entries = _new_entries([teams_by_id[t] for t in team_ids if t in teams_by_id])
    for match in matches:
        if match.pool_id == pool.id and is_finalized(match):
            accumulate_match(entries, match)
    order = override_order if _is_permutation(override_order, team_ids) else None
    return rank_entries(list(entries.values()), order)


def compute_standings(session: Session, tournament_id: int, scope: str) -> Dict[str, Any]:
    """
    Per-pool and overall standings for a scope.

    Returns:
        {"scope", "phases", "pools": [{"pool_id", "name", "stage_key", "teams": [...]}], "overall": [...]}

    Raises:
        NotFound: tournament missing
        InvalidInput: scope is not a non-playoff phase of the format or "cumulative"
    """
    tournament = require_tournament(session, tournament_id)
    format_def = get_format(tournament.format_id)
    scope = (scope or "").strip()
    if format_def and scope not in valid_scopes(format_def):
        raise InvalidInput(
            f"Unknown standings scope '{scope}'. Expected one of: {', '.join(valid_scopes(format_def))}",
            field="phase",
        )
    phases = scope_phases(format_def, scope)

    teams = list_teams(session, tournament_id)
    teams_by_id = {t.id: t for t in teams}
    matches = [m for m in tournament_matches(session, tournament_id) if _in_scope(m, phases) and is_finalized(m)]
    overrides = phase_overrides(tournament, scope)

    pools_payload: List[Dict[str, Any]] = []
    if scope != CUMULATIVE_SCOPE and format_def:
        pool_order = overrides.get("pool_order") or {}
        for stage in format_def.stages:
            if stage.kind != STAGE_POOL_PLAY or stage.phase != scope:
                continue
            pools = stage_pools(session, tournament_id, stage.key)
            members = pool_team_ids(session, pools)
            for pool in pools:
                ranked = _pool_standings(pool, members[pool.id], teams_by_id, matches, pool_order.get(pool.name))
                pools_payload.append(
                    {
                        "pool_id": pool.id,
                        "name": pool.name,
                        "stage_key": pool.stage_key,
                        "teams": [e.to_dict() for e in ranked],
                    }
                )

    entries = _new_entries(teams)
    for match in matches:
        accumulate_match(entries, match)
    overall_order = overrides.get("overall_order")
    ranked_overall = rank_entries(
        list(entries.values()), overall_order if _is_permutation(overall_order, list(teams_by_id)) else None
    )

    return {
        "scope": scope,
        "phases": phases if phases is not None else [],
        "pools": pools_payload,
        "overall": [e.to_dict() for e in ranked_overall],
        "finalized_match_count": len(matches),
    }


def overall_order_for_scope(session: Session, tournament_id: int, scope: str) -> List[int]:
    """Team ids in overall standings order for a scope."""
    return [entry["team_id"] for entry in compute_standings(session, tournament_id, scope)["overall"]]


# ============================================================================
# Source placements for later stages
# ============================================================================


def resolve_pool_placements(
    session: Session,
    tournament: Tournament,
    format_def: FormatDefinition,
    source_stage_key: str,
    pool_names: Optional[Sequence[str]] = None,
) -> Tuple[Dict[str, List[int]], str]:
    """
    Final order of each source pool, keyed by pool name.

    Placements come from standings when every source pool is full and every
    round-robin match of those pools is finalized; otherwise from the phase's
    manual pool-order overrides when every source pool has a valid one.

    Returns:
        ({pool_name: [team ids in rank order]}, "standings" | "overrides")

    Raises:
        PrereqNotMet: source pools missing/short, or neither source is complete
    """
    stage = format_def.stage(source_stage_key)
    if stage is None:
        raise PrereqNotMet(f"Source stage {source_stage_key} is not defined", missing=[source_stage_key])
    names = list(pool_names) if pool_names else [shape.name for shape in stage.pools]

    pools_by_name = {p.name: p for p in stage_pools(session, tournament.id, stage.key)}
    members = pool_team_ids(session, pools_by_name.values())

    missing: List[str] = []
    for name in names:
        shape = stage.pool_shape(name)
        pool = pools_by_name.get(name)
        size = shape.size if shape else 0
        count = len(members[pool.id]) if pool else 0
        if pool is None:
            missing.append(f"{stage.display_name} pool {name} has not been created")
        elif count != size:
            missing.append(f"{stage.display_name} pool {name} has {count}/{size} teams")
    if missing:
        raise PrereqNotMet(f"{stage.display_name} pools are not fully populated", missing=missing)

    source_pools = [pools_by_name[name] for name in names]
    source_pool_ids = {p.id for p in source_pools}
    pool_matches = [m for m in tournament_matches(session, tournament.id, stage.phase) if m.pool_id in source_pool_ids]
    expected = sum(len(members[p.id]) * (len(members[p.id]) - 1) // 2 for p in source_pools)
    finalized = [m for m in pool_matches if is_finalized(m)]

    overrides = phase_overrides(tournament, stage.phase)
    pool_order = overrides.get("pool_order") or {}

    if expected > 0 and len(pool_matches) == expected and len(finalized) == expected:
        teams_by_id = {t.id: t for t in list_teams(session, tournament.id)}
        placements = {
            pool.name: [
                e.team_id
                for e in _pool_standings(pool, members[pool.id], teams_by_id, finalized, pool_order.get(pool.name))
            ]
            for pool in source_pools
        }
        return placements, PLACEMENTS_FROM_STANDINGS

    invalid = [pool.name for pool in source_pools if not _is_permutation(pool_order.get(pool.name), members[pool.id])]
    if not invalid:
        return {pool.name: list(pool_order[pool.name]) for pool in source_pools}, PLACEMENTS_FROM_OVERRIDES

    raise PrereqNotMet(
        f"{stage.display_name} results are not final",
        missing=[
            f"{stage.phase} has {len(finalized)}/{expected} finalized matches",
            f"Missing valid {stage.phase} pool_order overrides for pools: {', '.join(invalid)}",
        ],
    )


# ============================================================================
# Manual overrides
# ============================================================================


def set_standings_overrides(
    session: Session,
    tournament_id: int,
    scope: str,
    pool_order: Optional[Dict[str, List[int]]] = None,
    overall_order: Optional[List[int]] = None,
) -> Dict[str, Any]:
    """
    Store manual standings order for a scope. A provided value replaces the
    stored one; an empty dict/list clears it; None leaves it untouched.

    Raises:
        InvalidInput: unknown scope/pool, or an order that is not a
            permutation of the pool's (or tournament's) teams
    """
    with tournament_lock(tournament_id):
        tournament = require_tournament(session, tournament_id)
        format_def = get_format(tournament.format_id)
        if scope not in valid_scopes(format_def):
            raise InvalidInput(f"Unknown standings scope '{scope}'", field="phase")

        current = dict(phase_overrides(tournament, scope))

        if pool_order is not None:
            if scope == CUMULATIVE_SCOPE and pool_order:
                raise InvalidInput("Cumulative standings have no pools", field="pool_order")
            pools_by_name: Dict[str, Pool] = {}
            for stage in format_def.stages if format_def else ():
                if stage.kind == STAGE_POOL_PLAY and stage.phase == scope:
                    pools_by_name.update({p.name: p for p in stage_pools(session, tournament_id, stage.key)})
            members = pool_team_ids(session, pools_by_name.values())
            for name, order in pool_order.items():
                pool = pools_by_name.get(name)
                if pool is None:
                    raise InvalidInput(f"Pool {name} does not exist in {scope}", field=f"pool_order.{name}")
                if not _is_permutation(order, members[pool.id]):
                    raise InvalidInput(
                        f"Pool {name} order must list each of its {len(members[pool.id])} teams exactly once",
                        field=f"pool_order.{name}",
                    )
            current["pool_order"] = {name: list(order) for name, order in pool_order.items()}

        if overall_order is not None:
            team_ids = [t.id for t in list_teams(session, tournament_id)]
            if overall_order and not _is_permutation(overall_order, team_ids):
                raise InvalidInput(
                    f"Overall order must list each of the {len(team_ids)} tournament teams exactly once",
                    field="overall_order",
                )
            current["overall_order"] = list(overall_order)

        overrides = dict(tournament.standings_overrides or {})
        overrides[scope] = current
        tournament.standings_overrides = overrides
        session.add(tournament)
        session.commit()
        session.refresh(tournament)
        logger.info("Updated %s standings overrides for tournament %s", scope, tournament_id)
        return current
