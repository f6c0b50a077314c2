from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel


class Scoreboard(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    title: str
    team_a_name: str
    team_b_name: str
    # Completed sets: [{"a": 25, "b": 21}, ...]
    sets: Optional[List[Dict[str, Any]]] = Field(default=None, sa_column=Column(JSON))
    scoring: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=datetime.utcnow)
