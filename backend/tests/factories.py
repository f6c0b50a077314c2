"""Shared helpers for building tournament state in tests."""
from typing import Dict, List, Optional

from sqlmodel import Session, select

from poolplay.models.match import Match
from poolplay.models.scoreboard import Scoreboard
from poolplay.models.team import Team
from poolplay.services.match_lifecycle import finalize_match
from poolplay.services.pool_assignment import describe_stage_pools

TEAM_A_SWEEP = [{"a": 25, "b": 20}, {"a": 25, "b": 18}]
TEAM_B_SWEEP = [{"a": 19, "b": 25}, {"a": 22, "b": 25}]


def team_ids_by_seed(session: Session, tournament_id: int) -> Dict[int, int]:
    """{seed: team_id}"""
    teams = session.exec(select(Team).where(Team.tournament_id == tournament_id)).all()
    return {t.seed: t.id for t in teams}


def pool_members(session: Session, tournament_id: int, stage_key: str) -> Dict[str, List[int]]:
    """{pool name: ordered team ids}"""
    return {p["name"]: p["team_ids"] for p in describe_stage_pools(session, tournament_id, stage_key)}


def stage_match_list(session: Session, tournament_id: int, stage_key: str) -> List[Match]:
    session.expire_all()
    return list(
        session.exec(
            select(Match).where(Match.tournament_id == tournament_id, Match.stage_key == stage_key).order_by(Match.id)
        ).all()
    )


def match_by_key(session: Session, tournament_id: int, key: str) -> Optional[Match]:
    session.expire_all()
    return session.exec(
        select(Match).where(Match.tournament_id == tournament_id, Match.bracket_match_key == key)
    ).first()


def finalize_with(session: Session, match: Match, sets: Optional[list] = None):
    """Finalize a match with the given completed sets (team A sweeps by default)."""
    return finalize_match(session, match.tournament_id, match.id, sets=sets or TEAM_A_SWEEP, override=True)


def finalize_stage(session: Session, tournament_id: int, stage_key: str) -> List[Match]:
    """Finalize every match of a stage with team A sweeping."""
    finalized = []
    for match in stage_match_list(session, tournament_id, stage_key):
        updated, _ = finalize_with(session, match)
        finalized.append(updated)
    return finalized


def scoreboard_count(session: Session, tournament_id: int) -> int:
    return len(session.exec(select(Scoreboard).where(Scoreboard.tournament_id == tournament_id)).all())
