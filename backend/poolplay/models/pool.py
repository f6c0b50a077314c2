from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, SQLModel


class Pool(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("tournament_id", "stage_key", "name", name="uq_pool_stage_name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    stage_key: str = Field(index=True)  # "poolPlay1" | "poolPlay2" | ...
    phase: str  # standings scope the pool belongs to ("phase1", "phase2")
    name: str
    required_team_count: int
    home_court: Optional[str] = Field(default=None)
    # [{"team_a_id": 1, "team_b_id": 7}, ...]
    rematch_warnings: Optional[List[Dict[str, Any]]] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"onupdate": datetime.utcnow})


class PoolTeam(SQLModel, table=True):
    """Ordered pool membership. A team sits in at most one pool per stage."""

    __table_args__ = (SAUniqueConstraint("tournament_id", "stage_key", "team_id", name="uq_pool_team_stage"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    pool_id: int = Field(foreign_key="pool.id", index=True)
    tournament_id: int = Field(foreign_key="tournament.id")
    stage_key: str
    team_id: int = Field(foreign_key="team.id")
    position: int  # 0-based order within the pool
