"""
Pool/Bracket Assignment Engine

Populates the pools of a pool-play stage:
- First stage: teams dealt serpentine by seed across the declared pools
- Later stages: the format's canonical mapping (e.g. F <- A1, B2, C3) applied
  to the source stage's final pool placements, followed by rematch avoidance

Rematch avoidance swaps same-tier teams (teams placed from the same source
rank) between destination pools until no co-located pair has met in an
earlier finalized match, or no swap lowers the conflict count. Whatever
cannot be removed is attached to the pools as rematch warnings instead of
failing the operation.
"""
import logging
import re
from dataclasses import dataclass, field
from itertools import combinations
from typing import Any, Dict, FrozenSet, Iterator, List, Mapping, Optional, Sequence, Set, Tuple

from sqlmodel import Session, select

from poolplay.errors import AlreadyExists, InvalidInput, NotFound, PrereqNotMet
from poolplay.models.pool import Pool, PoolTeam
from poolplay.models.team import Team
from poolplay.models.tournament import Tournament
from poolplay.services.format_registry import (
    STAGE_POOL_PLAY,
    FormatDefinition,
    PoolShape,
    StageDefinition,
    get_format,
)
from poolplay.services.pool_mutation import apply_pool_writes, plan_pool_writes
from poolplay.services.standings import resolve_pool_placements
from poolplay.services.tournament_state import (
    delete_matches,
    is_finalized,
    list_teams,
    pool_team_ids,
    require_format,
    require_stage,
    require_tournament,
    stage_matches,
    stage_pools,
    tournament_matches,
)
from poolplay.utils.courts import parse_court_names, venue_courts
from poolplay.utils.tournament_lock import tournament_lock

logger = logging.getLogger(__name__)

PLACEMENT_TOKEN = re.compile(r"^([A-Z]+)(\d+)$")
MAX_SWAP_ATTEMPTS = 50

PLACEMENTS_FROM_SEEDS = "seeds"

Pair = FrozenSet[int]


@dataclass
class StagePoolsResult:
    stage_key: str
    source: str  # "seeds" | "standings" | "overrides"
    pools: List[Dict[str, Any]]
    swaps: List[Dict[str, Any]] = field(default_factory=list)
    swap_attempts: int = 0
    deleted_match_count: int = 0


# ============================================================================
# First stage: serpentine by seed
# ============================================================================


def seed_order(teams: Sequence[Team]) -> List[Team]:
    """Seeded teams ascending, unseeded teams last; team id breaks ties."""
    return sorted(teams, key=lambda t: (t.seed is None, t.seed if t.seed is not None else 0, t.id))


def _snake(count: int) -> Iterator[int]:
    forward = list(range(count))
    while True:
        yield from forward
        yield from reversed(forward)


def serpentine_assignment(teams: Sequence[Team], shapes: Sequence[PoolShape]) -> Dict[str, List[int]]:
    """
    Deal teams across pools in snake order (A B C C B A A B C ...), skipping
    pools that are already full.

    Raises:
        InvalidInput: more teams than total pool capacity
    """
    capacity = sum(shape.size for shape in shapes)
    if len(teams) > capacity:
        raise InvalidInput(f"{len(teams)} teams exceed the stage capacity of {capacity}", field="team_count")

    membership: Dict[str, List[int]] = {shape.name: [] for shape in shapes}
    path = _snake(len(shapes))
    for team in seed_order(teams):
        while True:
            shape = shapes[next(path)]
            if len(membership[shape.name]) < shape.size:
                membership[shape.name].append(team.id)
                break
    return membership


# ============================================================================
# Later stages: canonical mapping
# ============================================================================


def parse_placement_token(token: str) -> Tuple[str, int]:
    """'A1' -> ('A', 1)"""
    match = PLACEMENT_TOKEN.match(token.strip())
    if not match:
        raise ValueError(f"Invalid placement token: {token}")
    return match.group(1), int(match.group(2))


def mapping_source_pools(stage: StageDefinition) -> List[str]:
    names: List[str] = []
    for _, tokens in stage.mapping:
        for token in tokens:
            pool_name, _ = parse_placement_token(token)
            if pool_name not in names:
                names.append(pool_name)
    return sorted(names)


def build_mapped_membership(
    stage: StageDefinition, placements: Mapping[str, Sequence[int]]
) -> Tuple[Dict[str, List[int]], Dict[str, List[int]]]:
    """
    Apply the stage's canonical mapping to source placements.

    Returns:
        (membership, tiers): team ids per destination pool, and for each slot
        the source rank it was filled from
    """
    membership: Dict[str, List[int]] = {}
    tiers: Dict[str, List[int]] = {}
    missing: List[str] = []
    for shape in stage.pools:
        membership[shape.name] = []
        tiers[shape.name] = []
        for token in stage.mapping_for(shape.name):
            pool_name, rank = parse_placement_token(token)
            ranked = placements.get(pool_name) or []
            if rank > len(ranked):
                missing.append(f"{token} is not resolved")
                continue
            membership[shape.name].append(ranked[rank - 1])
            tiers[shape.name].append(rank)
    if missing:
        raise PrereqNotMet("Source placements are incomplete", missing=missing)
    return membership, tiers


# ============================================================================
# Rematch detection and resolution
# ============================================================================


def played_pairs(session: Session, tournament_id: int, format_def: FormatDefinition, stage_key: str) -> Set[Pair]:
    """Team pairs that met in a finalized match of any stage before `stage_key`."""
    earlier = {stage.key for stage in format_def.stages_before(stage_key)}
    pairs: Set[Pair] = set()
    if not earlier:
        return pairs
    for match in tournament_matches(session, tournament_id):
        if match.stage_key not in earlier or not is_finalized(match):
            continue
        if match.team_a_id is not None and match.team_b_id is not None:
            pairs.add(frozenset((match.team_a_id, match.team_b_id)))
    return pairs


def find_conflicts(membership: Mapping[str, Sequence[int]], played: Set[Pair]) -> Dict[str, List[Tuple[int, int]]]:
    """Previously played pairs that share a destination pool, per pool (pairs sorted)."""
    conflicts: Dict[str, List[Tuple[int, int]]] = {}
    for name in sorted(membership):
        pool_conflicts = [
            (min(a, b), max(a, b)) for a, b in combinations(membership[name], 2) if frozenset((a, b)) in played
        ]
        if pool_conflicts:
            conflicts[name] = sorted(pool_conflicts)
    return conflicts


def _conflict_pairs(membership: Mapping[str, Sequence[int]], played: Set[Pair]) -> Set[Tuple[int, int]]:
    return {pair for pairs in find_conflicts(membership, played).values() for pair in pairs}


def resolve_rematches(
    membership: Mapping[str, Sequence[int]],
    tiers: Mapping[str, Sequence[int]],
    played: Set[Pair],
    max_attempts: int = MAX_SWAP_ATTEMPTS,
) -> Tuple[Dict[str, List[int]], List[Dict[str, Any]], int]:
    """
    Greedy same-tier swaps that lower the rematch count.

    Each round evaluates swaps of a conflicted team in pool P with the
    same-tier team of every other pool Q, and applies the best one by:
    clean first (remaining conflicts are a strict subset of the current ones),
    then lowest-ranked tier, then fewest remaining conflicts, then P, then Q,
    then the incoming team id. Stops when conflicts reach zero, no swap
    lowers the count, or the attempt limit is reached.

    Returns:
        (membership, applied swaps, evaluated swap count)
    """
    current = {name: list(team_ids) for name, team_ids in membership.items()}
    swaps: List[Dict[str, Any]] = []
    attempts = 0

    while attempts < max_attempts:
        conflicts = find_conflicts(current, played)
        if not conflicts:
            break
        current_pairs = _conflict_pairs(current, played)

        best_key: Optional[Tuple] = None
        best: Optional[Tuple[Dict[str, List[int]], Dict[str, Any]]] = None
        for pool_name in sorted(conflicts):
            involved = {team_id for pair in conflicts[pool_name] for team_id in pair}
            for slot, team_id in enumerate(current[pool_name]):
                if team_id not in involved:
                    continue
                tier = tiers[pool_name][slot]
                for other_name in sorted(current):
                    if other_name == pool_name:
                        continue
                    for other_slot, other_team in enumerate(current[other_name]):
                        if tiers[other_name][other_slot] != tier or attempts >= max_attempts:
                            continue
                        attempts += 1
                        trial = {name: list(team_ids) for name, team_ids in current.items()}
                        trial[pool_name][slot] = other_team
                        trial[other_name][other_slot] = team_id
                        after = _conflict_pairs(trial, played)
                        if len(after) >= len(current_pairs):
                            continue
                        clean = after < current_pairs
                        key = (not clean, -tier, len(after), pool_name, other_name, other_team)
                        if best_key is None or key < best_key:
                            best_key = key
                            best = (
                                trial,
                                {
                                    "tier": tier,
                                    "pool": pool_name,
                                    "other_pool": other_name,
                                    "team_out": team_id,
                                    "team_in": other_team,
                                    "remaining_conflicts": len(after),
                                },
                            )
        if best is None:
            break
        current, swap = best
        swaps.append(swap)
        logger.debug("Rematch swap applied: %s", swap)

    return current, swaps, attempts


def rematch_warnings(team_ids: Sequence[int], played: Set[Pair]) -> List[Dict[str, int]]:
    return [
        {"team_a_id": a, "team_b_id": b}
        for a, b in sorted((min(x, y), max(x, y)) for x, y in combinations(team_ids, 2) if frozenset((x, y)) in played)
    ]


# ============================================================================
# Home courts
# ============================================================================


def available_courts(tournament: Tournament) -> List[str]:
    """Active courts in order; enabled venue courts when none were selected."""
    courts = parse_court_names(tournament.active_courts)
    if courts:
        return courts
    return [entry["court"] for entry in venue_courts(tournament.facilities)]


def home_courts(stage: StageDefinition, courts: Sequence[str]) -> Dict[str, Optional[str]]:
    """
    Home court per pool of a stage.

    Pools whose court-binding entry names an active court get that court.
    The rest take the remaining courts in declared pool order, then wrap
    around the full court list by pool position.
    """
    if not courts:
        return {shape.name: None for shape in stage.pools}

    bound: Dict[str, Optional[str]] = {}
    for shape in stage.pools:
        court = stage.home_court_for(shape.name)
        if court in courts and court not in bound.values():
            bound[shape.name] = court

    unused = [court for court in courts if court not in bound.values()]
    assigned: Dict[str, Optional[str]] = {}
    for index, shape in enumerate(stage.pools):
        if shape.name in bound:
            assigned[shape.name] = bound[shape.name]
        elif unused:
            assigned[shape.name] = unused.pop(0)
        else:
            assigned[shape.name] = courts[index % len(courts)]
    return assigned


# ============================================================================
# Persistence helpers
# ============================================================================


def describe_stage_pools(session: Session, tournament_id: int, stage_key: str) -> List[Dict[str, Any]]:
    pools = stage_pools(session, tournament_id, stage_key)
    members = pool_team_ids(session, pools)
    teams_by_id = {t.id: t for t in list_teams(session, tournament_id)}
    described = []
    for pool in pools:
        team_ids = members[pool.id]
        described.append(
            {
                "id": pool.id,
                "name": pool.name,
                "stage_key": pool.stage_key,
                "phase": pool.phase,
                "required_team_count": pool.required_team_count,
                "home_court": pool.home_court,
                "team_ids": team_ids,
                "teams": [
                    {
                        "id": team_id,
                        "name": teams_by_id[team_id].name,
                        "short_name": teams_by_id[team_id].short_name,
                        "seed": teams_by_id[team_id].seed,
                    }
                    for team_id in team_ids
                    if team_id in teams_by_id
                ],
                "rematch_warnings": pool.rematch_warnings or [],
            }
        )
    return described


def _delete_pools(session: Session, pools: Sequence[Pool]) -> None:
    pool_ids = [p.id for p in pools]
    if not pool_ids:
        return
    for row in session.exec(select(PoolTeam).where(PoolTeam.pool_id.in_(pool_ids))).all():
        session.delete(row)
    session.flush()
    for pool in pools:
        session.delete(pool)


def ensure_stage_pools(
    session: Session,
    tournament: Tournament,
    stage: StageDefinition,
    courts: Mapping[str, Optional[str]],
    commit: bool = True,
) -> Dict[str, Pool]:
    """
    Upsert the stage's pool rows and drop undeclared ones. A pool that already
    has a home court keeps it, so reassigned courts survive regeneration.
    """
    existing = {p.name: p for p in stage_pools(session, tournament.id, stage.key)}
    _delete_pools(session, [p for name, p in existing.items() if stage.pool_shape(name) is None])

    pools_by_name: Dict[str, Pool] = {}
    for shape in stage.pools:
        pool = existing.get(shape.name)
        if pool is None:
            pool = Pool(
                tournament_id=tournament.id,
                stage_key=stage.key,
                phase=stage.phase,
                name=shape.name,
                required_team_count=shape.size,
                rematch_warnings=[],
            )
        pool.phase = stage.phase
        pool.required_team_count = shape.size
        if not pool.home_court:
            pool.home_court = courts.get(shape.name)
        session.add(pool)
        pools_by_name[shape.name] = pool
    if not commit:
        session.flush()
        return pools_by_name
    session.commit()
    for pool in pools_by_name.values():
        session.refresh(pool)
    return pools_by_name


def _store_warnings(session: Session, pools_by_name: Mapping[str, Pool], membership: Mapping[str, Sequence[int]],
                    played: Set[Pair], commit: bool = True) -> None:
    for name, pool in pools_by_name.items():
        pool.rematch_warnings = rematch_warnings(membership.get(name, ()), played)
        session.add(pool)
    if commit:
        session.commit()


# ============================================================================
# Operations
# ============================================================================


def apply_format(
    session: Session, tournament_id: int, format_id: str, active_courts: Optional[Sequence[str]] = None
) -> Dict[str, Any]:
    """
    Select a format (and optionally the active courts) for a tournament and
    create empty first-stage pool skeletons with home courts.

    Raises:
        NotFound: format or tournament missing
        InvalidInput: unsupported team count, unknown/too few/too many courts,
            or matches already generated
    """
    format_def = get_format(format_id)
    if not format_def:
        raise NotFound("Format", format_id)

    with tournament_lock(tournament_id):
        tournament = require_tournament(session, tournament_id)
        team_count = len(list_teams(session, tournament_id))
        if team_count not in format_def.supported_team_counts:
            supported = ", ".join(str(c) for c in format_def.supported_team_counts)
            raise InvalidInput(
                f"Format {format_def.id} supports {supported} teams; tournament has {team_count}",
                field="team_count",
            )

        if active_courts is not None:
            courts = parse_court_names(list(active_courts))
            known = {entry["court"] for entry in venue_courts(tournament.facilities)}
            unknown = [court for court in courts if known and court not in known]
            if unknown:
                raise InvalidInput(f"Unknown or disabled courts: {', '.join(unknown)}", field="active_courts")
            if not format_def.accepts_court_count(len(courts)):
                raise InvalidInput(
                    f"Format {format_def.id} cannot run on {len(courts)} courts", field="active_courts"
                )
        else:
            courts = available_courts(tournament)

        existing_matches = tournament_matches(session, tournament_id)
        if existing_matches:
            raise InvalidInput(
                f"Cannot change format after {len(existing_matches)} matches have been generated",
                field="format_id",
            )

        previous_format = tournament.format_id
        existing_pools = list(session.exec(select(Pool).where(Pool.tournament_id == tournament_id)).all())
        _delete_pools(session, existing_pools)

        tournament.format_id = format_def.id
        tournament.active_courts = list(courts)
        if previous_format != format_def.id:
            tournament.standings_overrides = {}
        session.add(tournament)
        session.commit()
        session.refresh(tournament)

        first_stage = format_def.first_stage
        if first_stage.kind == STAGE_POOL_PLAY:
            ensure_stage_pools(session, tournament, first_stage, home_courts(first_stage, courts))

        logger.info(
            "Applied format %s to tournament %s (%d teams, %d courts)",
            format_def.id,
            tournament_id,
            team_count,
            len(courts),
        )
        return {
            "tournament_id": tournament_id,
            "format": format_def.to_dict(),
            "active_courts": list(courts),
            "pools": describe_stage_pools(session, tournament_id, first_stage.key),
        }


def generate_stage_pools(session: Session, tournament_id: int, stage_key: str, force: bool = False) -> StagePoolsResult:
    """
    Populate a pool-play stage.

    Raises:
        NotFound: tournament, format or stage missing
        PrereqNotMet: source stage not decided (reports missing pools/counts)
        AlreadyExists: stage already populated with matches, and not forced
    """
    with tournament_lock(tournament_id):
        tournament = require_tournament(session, tournament_id)
        format_def = require_format(tournament)
        stage = require_stage(format_def, stage_key, kind=STAGE_POOL_PLAY)

        pools = stage_pools(session, tournament_id, stage.key)
        members = pool_team_ids(session, pools)
        populated = [p.name for p in pools if members[p.id]]
        existing_matches = stage_matches(session, tournament_id, stage.key)
        if populated and existing_matches and not force:
            raise AlreadyExists(
                f"{stage.display_name} already has populated pools and {len(existing_matches)} matches",
                existing={
                    "stage_key": stage.key,
                    "pools": populated,
                    "match_count": len(existing_matches),
                },
            )

        swaps: List[Dict[str, Any]] = []
        attempts = 0
        played: Set[Pair] = set()
        if stage.mapping:
            placements, source = resolve_pool_placements(
                session, tournament, format_def, stage.source_stage, mapping_source_pools(stage)
            )
            membership, tiers = build_mapped_membership(stage, placements)
            played = played_pairs(session, tournament_id, format_def, stage.key)
            if find_conflicts(membership, played):
                membership, swaps, attempts = resolve_rematches(membership, tiers, played)
        else:
            teams = list_teams(session, tournament_id)
            membership = serpentine_assignment(teams, stage.pools)
            source = PLACEMENTS_FROM_SEEDS

        # Forced regeneration drops the stage's matches and rewrites its pools in one transaction
        deleted = 0
        courts = home_courts(stage, available_courts(tournament))
        try:
            if existing_matches and force:
                deleted = delete_matches(session, existing_matches)
            pools_by_name = ensure_stage_pools(session, tournament, stage, courts, commit=False)
            previous = {name: members.get(pool.id, []) for name, pool in pools_by_name.items()}
            apply_pool_writes(session, pools_by_name, plan_pool_writes(previous, membership), commit=False)
            _store_warnings(session, pools_by_name, membership, played, commit=False)
            session.commit()
        except Exception:
            session.rollback()
            logger.exception("Pool generation for %s failed; rolled back", stage.key)
            raise
        for pool in pools_by_name.values():
            session.refresh(pool)

        residual = sum(len(pool.rematch_warnings or []) for pool in pools_by_name.values())
        logger.info(
            "Generated %s pools for tournament %s from %s: %d swaps (%d evaluated), %d rematch warnings, %d matches deleted",
            stage.key,
            tournament_id,
            source,
            len(swaps),
            attempts,
            residual,
            deleted,
        )
        if residual:
            logger.warning("%s pools kept %d unavoidable rematches", stage.key, residual)

        return StagePoolsResult(
            stage_key=stage.key,
            source=source,
            pools=describe_stage_pools(session, tournament_id, stage.key),
            swaps=swaps,
            swap_attempts=attempts,
            deleted_match_count=deleted,
        )


def reassign_pools(
    session: Session, tournament_id: int, stage_key: str, desired: Mapping[str, Sequence[int]]
) -> Dict[str, Any]:
    """
    Apply an operator's pool membership edit through the two-pass write plan.
    Pools not named in `desired` keep their membership.

    Raises:
        NotFound: tournament, format, stage or pool missing
        InvalidInput: capacity exceeded, duplicate or unknown teams, or the
            stage already has matches
    """
    with tournament_lock(tournament_id):
        tournament = require_tournament(session, tournament_id)
        format_def = require_format(tournament)
        stage = require_stage(format_def, stage_key, kind=STAGE_POOL_PLAY)

        pools_by_name = {p.name: p for p in stage_pools(session, tournament_id, stage.key)}
        for name in desired:
            if name not in pools_by_name:
                raise NotFound("Pool", name)

        existing_matches = stage_matches(session, tournament_id, stage.key)
        if existing_matches:
            raise InvalidInput(
                f"{stage.display_name} already has {len(existing_matches)} matches; regenerate with force instead",
                field="stage_key",
            )

        members = pool_team_ids(session, pools_by_name.values())
        previous = {name: members[pool.id] for name, pool in pools_by_name.items()}
        merged = dict(previous)
        merged.update({name: list(team_ids) for name, team_ids in desired.items()})

        tournament_team_ids = {t.id for t in list_teams(session, tournament_id)}
        seen: Dict[int, str] = {}
        for name in sorted(merged):
            team_ids = merged[name]
            pool = pools_by_name[name]
            if len(team_ids) > pool.required_team_count:
                raise InvalidInput(
                    f"A pool can include at most {pool.required_team_count} teams", field=f"pools.{name}"
                )
            for team_id in team_ids:
                if team_id not in tournament_team_ids:
                    raise InvalidInput(f"Team {team_id} does not belong to this tournament", field=f"pools.{name}")
                if team_id in seen:
                    raise InvalidInput(
                        f"Team {team_id} is listed in both pool {seen[team_id]} and pool {name}",
                        field=f"pools.{name}",
                    )
                seen[team_id] = name

        writes = plan_pool_writes(previous, merged)
        apply_pool_writes(session, pools_by_name, writes)
        _store_warnings(session, pools_by_name, merged, played_pairs(session, tournament_id, format_def, stage.key))

        return {
            "stage_key": stage.key,
            "writes": [{"pool": w.pool_name, "team_ids": list(w.team_ids), "pass": w.pass_no} for w in writes],
            "pools": describe_stage_pools(session, tournament_id, stage.key),
        }


def set_pool_home_courts(
    session: Session, tournament_id: int, stage_key: str, assignments: Sequence[Tuple[int, str]]
) -> Dict[str, Any]:
    """
    Reassign home courts of a pool-play stage's pools.

    `assignments` is a list of (pool id, court). Courts must be active for the
    tournament. When the tournament has at least as many courts as the stage
    has pools, no two pools of the stage may end up on the same court. Matches
    already generated keep their courts until the stage is regenerated.

    Raises:
        NotFound: tournament, format, stage or pool missing
        InvalidInput: empty request, repeated pool, inactive court, or two
            pools bound to one court
    """
    with tournament_lock(tournament_id):
        tournament = require_tournament(session, tournament_id)
        format_def = require_format(tournament)
        stage = require_stage(format_def, stage_key, kind=STAGE_POOL_PLAY)
        if not assignments:
            raise InvalidInput("At least one pool court assignment is required", field="assignments")

        pools_by_id = {p.id: p for p in stage_pools(session, tournament_id, stage.key)}
        courts = available_courts(tournament)
        requested: Dict[int, str] = {}
        for pool_id, court in assignments:
            if pool_id not in pools_by_id:
                raise NotFound("Pool", pool_id)
            if pool_id in requested:
                raise InvalidInput(f"Pool {pools_by_id[pool_id].name} is assigned more than once", field="assignments")
            court = (court or "").strip()
            if court not in courts:
                raise InvalidInput(f"Court {court or '(blank)'} is not an active court", field="assignments")
            requested[pool_id] = court

        final = {pool_id: requested.get(pool_id, pool.home_court) for pool_id, pool in pools_by_id.items()}
        claimed = list(requested.values())
        if len(courts) >= len(pools_by_id):
            claimed = [court for court in final.values() if court]
        duplicates = sorted({court for court in claimed if claimed.count(court) > 1})
        if duplicates:
            raise InvalidInput(
                f"{stage.display_name} pools cannot share home court {', '.join(duplicates)}", field="assignments"
            )

        for pool_id, court in requested.items():
            pool = pools_by_id[pool_id]
            pool.home_court = court
            session.add(pool)
        session.commit()

        stale = len(stage_matches(session, tournament_id, stage.key))
        logger.info(
            "Reassigned %d home courts for %s in tournament %s (%d generated matches keep old courts)",
            len(requested),
            stage.key,
            tournament_id,
            stale,
        )
        return {
            "stage_key": stage.key,
            "stale_match_count": stale,
            "pools": describe_stage_pools(session, tournament_id, stage.key),
        }
