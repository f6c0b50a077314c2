"""
Match Generator

Expands a populated stage into concrete matches:
- Pool stages: a full round robin per pool on the pool's home court, with an
  off-team referee from the same pool
- Crossover stages: rank k of one source pool against rank k of the other,
  laid out on the courts of a single facility

Round-blocks start right after the last block used by earlier stages. Pools
on distinct home courts play in parallel; pools sharing a court queue on it.
Every generated match gets one scoreboard and starts "scheduled". All writes
happen in one transaction, so a failure leaves the previous matches intact.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from sqlmodel import Session

from poolplay.errors import AlreadyExists, InvalidInput, PrereqNotMet
from poolplay.models.match import Match
from poolplay.models.team import Team
from poolplay.models.tournament import Tournament
from poolplay.services.format_registry import (
    STAGE_CROSSOVER,
    STAGE_PLAYOFFS,
    FormatDefinition,
    StageDefinition,
)
from poolplay.services.scoreboards import create_match_scoreboard
from poolplay.services.standings import resolve_pool_placements
from poolplay.services.tournament_state import (
    delete_matches,
    list_teams,
    pool_team_ids,
    require_format,
    require_stage,
    require_tournament,
    stage_matches,
    stage_pools,
    tournament_matches,
)
from poolplay.utils.courts import courts_in_facility, facility_for_court, parse_court_names
from poolplay.utils.round_robin import pool_round_robin
from poolplay.utils.tournament_lock import tournament_lock

logger = logging.getLogger(__name__)


@dataclass
class MatchPlan:
    stage_key: str
    phase: str
    title: str
    team_a_id: int
    team_b_id: int
    round_block: int
    court: Optional[str]
    facility: Optional[str]
    pool_id: Optional[int] = None
    ref_team_ids: List[int] = field(default_factory=list)


@dataclass
class StageMatchesResult:
    stage_key: str
    matches: List[Match]
    deleted_match_count: int = 0

    @property
    def scoreboard_count(self) -> int:
        return sum(1 for m in self.matches if m.scoreboard_id is not None)


def first_free_block(session: Session, tournament_id: int, format_def: FormatDefinition, stage_key: str) -> int:
    """1 + the highest round-block used by stages that precede `stage_key`."""
    earlier = {stage.key for stage in format_def.stages_before(stage_key)}
    blocks = [
        m.round_block
        for m in tournament_matches(session, tournament_id)
        if m.stage_key in earlier and m.round_block is not None
    ]
    return max(blocks, default=0) + 1


# ============================================================================
# Pool stages
# ============================================================================


def plan_pool_stage(
    session: Session, tournament: Tournament, stage: StageDefinition, start_block: int
) -> List[MatchPlan]:
    """
    Round robin plans for every pool of a stage.

    Raises:
        PrereqNotMet: a pool is missing, has the wrong team count, or has no home court
    """
    pools_by_name = {p.name: p for p in stage_pools(session, tournament.id, stage.key)}
    members = pool_team_ids(session, pools_by_name.values())

    missing: List[str] = []
    for shape in stage.pools:
        pool = pools_by_name.get(shape.name)
        if pool is None:
            missing.append(f"Pool {shape.name} has not been created")
            continue
        count = len(members[pool.id])
        if count != pool.required_team_count:
            missing.append(f"Pool {pool.name} has {count}/{pool.required_team_count} teams")
        if not pool.home_court:
            missing.append(f"Pool {pool.name} has no home court")
    if missing:
        raise PrereqNotMet(f"{stage.display_name} pools are not ready for match generation", missing=missing)

    next_block: Dict[str, int] = {}
    plans: List[MatchPlan] = []
    for shape in stage.pools:
        pool = pools_by_name[shape.name]
        team_ids = members[pool.id]
        court = pool.home_court
        facility = facility_for_court(court, tournament.facilities)
        for index, (a, b, ref) in enumerate(pool_round_robin(len(team_ids))):
            block = next_block.get(court, start_block)
            next_block[court] = block + 1
            plans.append(
                MatchPlan(
                    stage_key=stage.key,
                    phase=stage.phase,
                    title=f"Pool {pool.name} Match {index + 1}",
                    pool_id=pool.id,
                    team_a_id=team_ids[a],
                    team_b_id=team_ids[b],
                    ref_team_ids=[team_ids[ref]] if ref is not None else [],
                    round_block=block,
                    court=court,
                    facility=facility,
                )
            )
    return plans


# ============================================================================
# Crossover stages
# ============================================================================


def crossover_courts(tournament: Tournament, source_home_courts: Sequence[Optional[str]]) -> List[str]:
    """
    Courts of the single facility hosting the first source pool: that
    facility's source home courts first, then its other active and enabled courts.
    """
    home = [c for c in source_home_courts if c]
    if not home:
        return []
    facility = facility_for_court(home[0], tournament.facilities)
    candidates = home + parse_court_names(tournament.active_courts)
    if facility:
        candidates += courts_in_facility(facility, tournament.facilities)

    courts: List[str] = []
    for court in candidates:
        if court in courts:
            continue
        if facility is None or facility_for_court(court, tournament.facilities) == facility:
            courts.append(court)
    return courts


def crossover_refs(pairing_count: int, left: List[int], right: List[int], index: int) -> List[int]:
    """Third-placed teams ref the opening pair; the right pool's runner-up refs the 3v3 match."""
    if pairing_count < 3:
        return []
    if index == 0:
        return [left[2]]
    if index == 1:
        return [right[2]]
    if index == 2:
        return [right[1]]
    return []


def plan_crossover_stage(
    session: Session, tournament: Tournament, format_def: FormatDefinition, stage: StageDefinition, start_block: int
) -> List[MatchPlan]:
    """
    Rank-to-rank crossover plans.

    Raises:
        PrereqNotMet: source pools undecided or without home courts
    """
    if len(stage.from_pools) != 2:
        raise InvalidInput(f"Crossover {stage.key} needs exactly two source pools", field="stage_key")
    left_name, right_name = stage.from_pools
    placements, _ = resolve_pool_placements(session, tournament, format_def, stage.source_stage, stage.from_pools)
    left, right = placements[left_name], placements[right_name]

    source_pools = {p.name: p for p in stage_pools(session, tournament.id, stage.source_stage)}
    courts = crossover_courts(
        tournament, [source_pools[left_name].home_court, source_pools[right_name].home_court]
    )
    if not courts:
        raise PrereqNotMet(
            f"{stage.display_name} source pools have no home courts",
            missing=[f"Pool {left_name} home court", f"Pool {right_name} home court"],
        )

    pairing_count = min(len(left), len(right))
    plans: List[MatchPlan] = []
    for index in range(pairing_count):
        if len(courts) >= 2 and index <= 1:
            block, court = start_block, courts[index]
        elif len(courts) >= 2:
            block, court = start_block + index - 1, courts[0]
        else:
            block, court = start_block + index, courts[0]
        plans.append(
            MatchPlan(
                stage_key=stage.key,
                phase=stage.phase,
                title=f"Crossover {left_name}{index + 1} v {right_name}{index + 1}",
                team_a_id=left[index],
                team_b_id=right[index],
                ref_team_ids=crossover_refs(pairing_count, left, right, index),
                round_block=block,
                court=court,
                facility=facility_for_court(court, tournament.facilities),
            )
        )
    return plans


# ============================================================================
# Operation
# ============================================================================


def create_planned_matches(
    session: Session, tournament: Tournament, plans: Sequence[MatchPlan], teams_by_id: Dict[int, Team]
) -> List[Match]:
    """Create scoreboards and matches for plans. Caller commits."""
    scoring = (tournament.settings or {}).get("scoring")
    created: List[Match] = []
    for plan in plans:
        scoreboard = create_match_scoreboard(
            session,
            tournament.id,
            plan.title,
            teams_by_id.get(plan.team_a_id),
            teams_by_id.get(plan.team_b_id),
            scoring,
        )
        match = Match(
            tournament_id=tournament.id,
            stage_key=plan.stage_key,
            phase=plan.phase,
            pool_id=plan.pool_id,
            round_block=plan.round_block,
            facility=plan.facility,
            court=plan.court,
            team_a_id=plan.team_a_id,
            team_b_id=plan.team_b_id,
            ref_team_ids=list(plan.ref_team_ids),
            scoreboard_id=scoreboard.id,
            status="scheduled",
        )
        session.add(match)
        created.append(match)
    session.flush()
    return created


def generate_stage_matches(
    session: Session, tournament_id: int, stage_key: str, force: bool = False
) -> StageMatchesResult:
    """
    Generate the matches of a pool-play or crossover stage.

    Raises:
        NotFound: tournament, format or stage missing
        InvalidInput: stage is a playoff stage
        PrereqNotMet: pools not ready (sizes, home courts) or crossover sources undecided
        AlreadyExists: stage already has matches and force is not set
    """
    with tournament_lock(tournament_id):
        tournament = require_tournament(session, tournament_id)
        format_def = require_format(tournament)
        stage = require_stage(format_def, stage_key)
        if stage.kind == STAGE_PLAYOFFS:
            raise InvalidInput("Playoff matches are generated from the playoffs endpoint", field="stage_key")

        existing = stage_matches(session, tournament_id, stage.key)
        if existing and not force:
            raise AlreadyExists(
                f"{stage.display_name} already has {len(existing)} matches",
                existing={"stage_key": stage.key, "match_count": len(existing)},
            )

        start_block = first_free_block(session, tournament_id, format_def, stage.key)
        if stage.kind == STAGE_CROSSOVER:
            plans = plan_crossover_stage(session, tournament, format_def, stage, start_block)
        else:
            plans = plan_pool_stage(session, tournament, stage, start_block)

        teams_by_id = {t.id: t for t in list_teams(session, tournament_id)}
        try:
            deleted = delete_matches(session, existing) if existing else 0
            created = create_planned_matches(session, tournament, plans, teams_by_id)
            session.commit()
        except Exception:
            session.rollback()
            logger.exception("Match generation for %s failed; rolled back", stage.key)
            raise
        for match in created:
            session.refresh(match)

        logger.info(
            "Generated %d %s matches for tournament %s starting at block %d (%d deleted)",
            len(created),
            stage.key,
            tournament_id,
            start_block,
            deleted,
        )
        return StageMatchesResult(stage_key=stage.key, matches=created, deleted_match_count=deleted)
