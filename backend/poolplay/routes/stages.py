"""
Stage pools and stage matches: generation, manual pool edits, reads.
"""
from dataclasses import asdict
from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, model_validator
from sqlmodel import Session

from poolplay.database import get_session
from poolplay.routes.matches import MatchRead, to_match_read
from poolplay.services.match_generation import generate_stage_matches
from poolplay.services.pool_assignment import (
    describe_stage_pools,
    generate_stage_pools,
    reassign_pools,
    set_pool_home_courts,
)
from poolplay.services.tournament_state import require_tournament

router = APIRouter()


class PoolReassignRequest(BaseModel):
    pools: Dict[str, List[int]]

    @model_validator(mode="after")
    def validate_pools(self):
        if not self.pools:
            raise ValueError("pools must name at least one pool")
        return self


class PoolCourtAssignment(BaseModel):
    pool_id: int
    home_court: str


class PoolCourtsRequest(BaseModel):
    assignments: List[PoolCourtAssignment]


class StageMatchesResponse(BaseModel):
    stage_key: str
    created_count: int
    scoreboard_count: int
    deleted_match_count: int
    matches: List[MatchRead]


@router.get("/tournaments/{tournament_id}/stages/{stage_key}/pools")
def get_stage_pools(tournament_id: int, stage_key: str, session: Session = Depends(get_session)) -> List[Dict[str, Any]]:
    require_tournament(session, tournament_id)
    return describe_stage_pools(session, tournament_id, stage_key)


@router.post("/tournaments/{tournament_id}/stages/{stage_key}/pools/generate")
def generate_pools(
    tournament_id: int,
    stage_key: str,
    force: bool = False,
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Populate a pool-play stage (seeding, canonical mapping, rematch avoidance)"""
    return asdict(generate_stage_pools(session, tournament_id, stage_key, force=force))


@router.put("/tournaments/{tournament_id}/stages/{stage_key}/pools")
def update_pools(
    tournament_id: int,
    stage_key: str,
    body: PoolReassignRequest,
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Reassign pool membership (two-pass write when teams change pools)"""
    return reassign_pools(session, tournament_id, stage_key, body.pools)


@router.put("/tournaments/{tournament_id}/stages/{stage_key}/pools/courts")
def update_pool_courts(
    tournament_id: int,
    stage_key: str,
    body: PoolCourtsRequest,
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Reassign pool home courts; matches generated afterwards use the new courts"""
    assignments = [(a.pool_id, a.home_court) for a in body.assignments]
    return set_pool_home_courts(session, tournament_id, stage_key, assignments)


@router.post("/tournaments/{tournament_id}/stages/{stage_key}/matches/generate", response_model=StageMatchesResponse)
def generate_matches(
    tournament_id: int,
    stage_key: str,
    force: bool = False,
    session: Session = Depends(get_session),
):
    result = generate_stage_matches(session, tournament_id, stage_key, force=force)
    return StageMatchesResponse(
        stage_key=result.stage_key,
        created_count=len(result.matches),
        scoreboard_count=result.scoreboard_count,
        deleted_match_count=result.deleted_match_count,
        matches=[to_match_read(m) for m in result.matches],
    )
