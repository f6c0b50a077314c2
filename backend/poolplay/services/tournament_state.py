"""
Guards and loaders shared by the stage engine services.

Every mutating operation starts by resolving the tournament, its applied
format and the requested stage through these helpers, so missing records
fail the same way everywhere.
"""
import logging
from typing import Dict, Iterable, List, Optional

from sqlmodel import Session, select

from poolplay.errors import NotFound, PrereqNotMet
from poolplay.models.match import Match
from poolplay.models.pool import Pool, PoolTeam
from poolplay.models.scoreboard import Scoreboard
from poolplay.models.team import Team
from poolplay.models.tournament import Tournament
from poolplay.services.format_registry import FormatDefinition, StageDefinition, get_format

logger = logging.getLogger(__name__)


def require_tournament(session: Session, tournament_id: int) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise NotFound("Tournament", tournament_id)
    return tournament


def require_format(tournament: Tournament) -> FormatDefinition:
    """
    Return the format applied to the tournament.

    Raises:
        PrereqNotMet: no format applied yet
        NotFound: the stored format id is not registered
    """
    if not tournament.format_id:
        raise PrereqNotMet("Tournament has no format applied", missing=["format"])
    format_def = get_format(tournament.format_id)
    if not format_def:
        raise NotFound("Format", tournament.format_id)
    return format_def


def require_stage(format_def: FormatDefinition, stage_key: str, kind: Optional[str] = None) -> StageDefinition:
    stage = format_def.stage(stage_key)
    if not stage or (kind and stage.kind != kind):
        raise NotFound("Stage", stage_key)
    return stage


def list_teams(session: Session, tournament_id: int) -> List[Team]:
    return list(session.exec(select(Team).where(Team.tournament_id == tournament_id).order_by(Team.id)).all())


def stage_pools(session: Session, tournament_id: int, stage_key: str) -> List[Pool]:
    return list(
        session.exec(
            select(Pool).where(Pool.tournament_id == tournament_id, Pool.stage_key == stage_key).order_by(Pool.name)
        ).all()
    )


def pool_team_ids(session: Session, pools: Iterable[Pool]) -> Dict[int, List[int]]:
    """Ordered team ids per pool id (every requested pool present, possibly empty)."""
    pool_ids = [p.id for p in pools]
    members: Dict[int, List[int]] = {pool_id: [] for pool_id in pool_ids}
    if not pool_ids:
        return members
    rows = session.exec(
        select(PoolTeam).where(PoolTeam.pool_id.in_(pool_ids)).order_by(PoolTeam.pool_id, PoolTeam.position)
    ).all()
    for row in rows:
        members[row.pool_id].append(row.team_id)
    return members


def stage_matches(session: Session, tournament_id: int, stage_key: str) -> List[Match]:
    return list(
        session.exec(
            select(Match).where(Match.tournament_id == tournament_id, Match.stage_key == stage_key).order_by(Match.id)
        ).all()
    )


def tournament_matches(session: Session, tournament_id: int, phase: Optional[str] = None) -> List[Match]:
    query = select(Match).where(Match.tournament_id == tournament_id)
    if phase:
        query = query.where(Match.phase == phase)
    return list(session.exec(query.order_by(Match.round_block, Match.court, Match.id)).all())


def is_finalized(match: Match) -> bool:
    return match.status == "final" and match.result is not None


def delete_matches(session: Session, matches: Iterable[Match]) -> int:
    """Delete matches and their linked scoreboards. Caller commits."""
    matches = list(matches)
    scoreboard_ids = [m.scoreboard_id for m in matches if m.scoreboard_id]
    for match in matches:
        session.delete(match)
    session.flush()
    if scoreboard_ids:
        for scoreboard in session.exec(select(Scoreboard).where(Scoreboard.id.in_(scoreboard_ids))).all():
            session.delete(scoreboard)
    logger.info("Deleted %d matches and %d scoreboards", len(matches), len(scoreboard_ids))
    return len(matches)
