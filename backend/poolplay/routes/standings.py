from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, model_validator
from sqlmodel import Session

from poolplay.database import get_session
from poolplay.services.format_registry import CUMULATIVE_SCOPE
from poolplay.services.standings import compute_standings, set_standings_overrides

router = APIRouter()


class StandingsOverridesRequest(BaseModel):
    phase: str
    pool_order: Optional[Dict[str, List[int]]] = None
    overall_order: Optional[List[int]] = None

    @model_validator(mode="after")
    def validate_payload(self):
        if self.pool_order is None and self.overall_order is None:
            raise ValueError("pool_order or overall_order is required")
        return self


@router.get("/tournaments/{tournament_id}/standings")
def get_standings(
    tournament_id: int,
    phase: str = CUMULATIVE_SCOPE,
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Per-pool and overall standings for a phase, or cumulative across phases"""
    return compute_standings(session, tournament_id, phase)


@router.put("/tournaments/{tournament_id}/standings-overrides")
def put_standings_overrides(
    tournament_id: int,
    body: StandingsOverridesRequest,
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    overrides = set_standings_overrides(
        session,
        tournament_id,
        body.phase.strip(),
        pool_order=body.pool_order,
        overall_order=body.overall_order,
    )
    return {"phase": body.phase.strip(), "overrides": overrides}
