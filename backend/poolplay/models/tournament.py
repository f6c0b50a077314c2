from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel


class Tournament(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    status: str = Field(default="setup")  # "setup" | "phase1" | "phase2" | "playoffs" | "complete"
    format_id: Optional[str] = Field(default=None, index=True)

    # Ordered court names selected for play; pool home courts bind to these in order
    active_courts: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    # Venue layout: [{"name": "SRC", "courts": [{"name": "SRC-1", "is_enabled": true}, ...]}, ...]
    facilities: Optional[List[Dict[str, Any]]] = Field(default=None, sa_column=Column(JSON))
    # {"scoring": {"set_targets": [25, 25, 15], "win_by": 2, "caps": [27, 27, 17]}}
    settings: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    # {"phase1": {"pool_order": {"A": [ids]}, "overall_order": [ids]}, "cumulative": {...}}
    standings_overrides: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    # Bracket seeds fixed at playoff generation: {"gold": [team ids, seed 1 first], ...}
    playoff_seeds: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"onupdate": datetime.utcnow})
