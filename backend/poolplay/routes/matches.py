from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlmodel import Session

from poolplay.database import get_session
from poolplay.models.match import Match
from poolplay.services.bracket_generation import ProgressionResult
from poolplay.services.match_lifecycle import finalize_match, unfinalize_match, update_match_status
from poolplay.services.tournament_state import require_tournament, tournament_matches

router = APIRouter()


class MatchRead(BaseModel):
    id: int
    tournament_id: int
    stage_key: str
    phase: str
    pool_id: Optional[int] = None
    round_block: Optional[int] = None
    facility: Optional[str] = None
    court: Optional[str] = None
    team_a_id: Optional[int] = None
    team_b_id: Optional[int] = None
    ref_team_ids: Optional[List[int]] = None
    scoreboard_id: Optional[int] = None
    status: str
    result: Optional[Dict[str, Any]] = None
    bracket: Optional[str] = None
    bracket_round: Optional[str] = None
    round: Optional[int] = None
    bracket_match_key: Optional[str] = None
    seed_a: Optional[int] = None
    seed_b: Optional[int] = None
    is_bye: bool = False
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None

    class Config:
        from_attributes = True


def to_match_read(match: Match) -> MatchRead:
    return MatchRead.model_validate(match)


class MatchStatusUpdate(BaseModel):
    status: str


class SetScore(BaseModel):
    a: int
    b: int

    @field_validator("a", "b")
    @classmethod
    def validate_points(cls, v):
        if v < 0:
            raise ValueError("set points cannot be negative")
        return v


class FinalizeRequest(BaseModel):
    sets: Optional[List[SetScore]] = None
    override: bool = False


class MatchResultResponse(BaseModel):
    match: MatchRead
    created_matches: List[MatchRead] = []
    updated_matches: List[MatchRead] = []


def _result_response(match: Match, progression: ProgressionResult) -> MatchResultResponse:
    return MatchResultResponse(
        match=to_match_read(match),
        created_matches=[to_match_read(m) for m in progression.created],
        updated_matches=[to_match_read(m) for m in progression.updated],
    )


@router.get("/tournaments/{tournament_id}/matches", response_model=List[MatchRead])
def list_matches(
    tournament_id: int,
    phase: Optional[str] = None,
    stage_key: Optional[str] = None,
    session: Session = Depends(get_session),
):
    """Matches of a tournament ordered by round-block and court"""
    require_tournament(session, tournament_id)
    matches = tournament_matches(session, tournament_id, phase)
    if stage_key:
        matches = [m for m in matches if m.stage_key == stage_key]
    return [to_match_read(m) for m in matches]


@router.patch("/tournaments/{tournament_id}/matches/{match_id}/status", response_model=MatchRead)
def update_status(
    tournament_id: int,
    match_id: int,
    body: MatchStatusUpdate,
    session: Session = Depends(get_session),
):
    return to_match_read(update_match_status(session, tournament_id, match_id, body.status.strip().lower()))


@router.post("/tournaments/{tournament_id}/matches/{match_id}/finalize", response_model=MatchResultResponse)
def finalize(
    tournament_id: int,
    match_id: int,
    body: Optional[FinalizeRequest] = None,
    session: Session = Depends(get_session),
):
    """Finalize from the scoreboard's completed sets (optionally supplied here)"""
    body = body or FinalizeRequest()
    sets = [s.model_dump() for s in body.sets] if body.sets is not None else None
    match, progression = finalize_match(session, tournament_id, match_id, sets=sets, override=body.override)
    return _result_response(match, progression)


@router.post("/tournaments/{tournament_id}/matches/{match_id}/unfinalize", response_model=MatchResultResponse)
def unfinalize(tournament_id: int, match_id: int, session: Session = Depends(get_session)):
    match, progression = unfinalize_match(session, tournament_id, match_id)
    return _result_response(match, progression)
