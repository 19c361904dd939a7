from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.stage import Stage


class GroupDraw(SQLModel, table=True):
    """Audit record of a draw: the seed and the reveal sequence it produced."""

    id: Optional[int] = Field(default=None, primary_key=True)
    stage_id: int = Field(foreign_key="stage.id", index=True)
    seed: Optional[str] = Field(default=None)  # Null for snake drafts
    mode: str  # random | pots | snake
    group_count: int
    # [{"order": 1, "team_id": 7, "group_label": "A", "pot": 1}, ...]
    sequence_json: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    # Team ids in the order they were handed to the draw (replay input)
    entrants_json: List[int] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    stage: "Stage" = Relationship(back_populates="draws")
