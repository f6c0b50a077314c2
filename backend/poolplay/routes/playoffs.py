from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session

from poolplay.database import get_session
from poolplay.routes.matches import MatchRead, to_match_read
from poolplay.services.bracket_generation import generate_playoffs, playoff_view

router = APIRouter()


class PlayoffsGenerateResponse(BaseModel):
    created_count: int
    deleted_match_count: int
    seeds: Dict[str, List[int]]
    matches: List[MatchRead]


@router.post("/tournaments/{tournament_id}/playoffs/generate", response_model=PlayoffsGenerateResponse)
def generate_playoffs_endpoint(tournament_id: int, force: bool = False, session: Session = Depends(get_session)):
    """Seed brackets from cumulative standings and create resolvable matches"""
    result = generate_playoffs(session, tournament_id, force=force)
    return PlayoffsGenerateResponse(
        created_count=len(result.matches),
        deleted_match_count=result.deleted_match_count,
        seeds=result.seeds,
        matches=[to_match_read(m) for m in result.matches],
    )


@router.get("/tournaments/{tournament_id}/playoffs")
def get_playoffs(tournament_id: int, session: Session = Depends(get_session)) -> Dict[str, Any]:
    view = playoff_view(session, tournament_id)
    for bracket in view["brackets"]:
        bracket["rounds"] = {
            round_name: [to_match_read(m).model_dump(mode="json") for m in matches]
            for round_name, matches in bracket["rounds"].items()
        }
    return view
