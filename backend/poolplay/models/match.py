from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel

MATCH_STATUSES = ("scheduled", "live", "ended", "final")


class Match(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    stage_key: str = Field(index=True)
    phase: str = Field(index=True)  # "phase1" | "phase2" | "crossover" | "playoffs"
    pool_id: Optional[int] = Field(default=None, foreign_key="pool.id")

    # Time/court binding
    round_block: Optional[int] = Field(default=None)
    facility: Optional[str] = Field(default=None)
    court: Optional[str] = Field(default=None)

    # Team assignments (nullable for byes)
    team_a_id: Optional[int] = Field(default=None, foreign_key="team.id")
    team_b_id: Optional[int] = Field(default=None, foreign_key="team.id")
    ref_team_ids: Optional[List[int]] = Field(default=None, sa_column=Column(JSON))
    scoreboard_id: Optional[int] = Field(default=None, foreign_key="scoreboard.id")

    status: str = Field(default="scheduled")  # scheduled | live | ended | final
    # Snapshot written on finalize: winner/loser, sets won, set scores, points
    result: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))

    # Playoff bracket position (null for pool/crossover matches)
    bracket: Optional[str] = Field(default=None)  # "gold" | "silver" | "bronze" | "all"
    bracket_round: Optional[str] = Field(default=None)  # "R1" | "R2" | ...
    round: Optional[int] = Field(default=None)
    bracket_match_key: Optional[str] = Field(default=None, index=True)  # e.g. "gold:R1:4v5"
    seed_a: Optional[int] = Field(default=None)
    seed_b: Optional[int] = Field(default=None)
    is_bye: bool = Field(default=False)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = Field(default=None)
    ended_at: Optional[datetime] = Field(default=None)
    finalized_at: Optional[datetime] = Field(default=None)
