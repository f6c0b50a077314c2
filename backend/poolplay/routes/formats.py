from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlmodel import Session

from poolplay.database import get_session
from poolplay.errors import NotFound
from poolplay.services.format_registry import get_format, list_formats, suggest_formats
from poolplay.services.pool_assignment import apply_format

router = APIRouter()


class ApplyFormatRequest(BaseModel):
    format_id: str
    active_courts: Optional[List[str]] = None

    @field_validator("format_id")
    @classmethod
    def validate_format_id(cls, v):
        if not v or not v.strip():
            raise ValueError("format_id is required")
        return v.strip()


@router.get("/formats")
def list_formats_endpoint() -> List[Dict[str, Any]]:
    return [format_def.to_dict() for format_def in list_formats()]


@router.get("/formats/suggest")
def suggest_formats_endpoint(team_count: Optional[str] = None, court_count: Optional[str] = None) -> List[Dict[str, Any]]:
    """Formats for a team count and court count (empty for missing or non-positive counts)"""
    return [format_def.to_dict() for format_def in suggest_formats(team_count, court_count)]


@router.get("/formats/{format_id}")
def get_format_endpoint(format_id: str) -> Dict[str, Any]:
    format_def = get_format(format_id)
    if not format_def:
        raise NotFound("Format", format_id)
    return format_def.to_dict()


@router.post("/tournaments/{tournament_id}/format")
def apply_format_endpoint(
    tournament_id: int,
    body: ApplyFormatRequest,
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Apply a format and create the first stage's empty pools"""
    return apply_format(session, tournament_id, body.format_id, body.active_courts)
