from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class MatchCorrection(SQLModel, table=True):
    """Append-only log of dispute resolutions."""

    id: Optional[int] = Field(default=None, primary_key=True)
    match_id: int = Field(foreign_key="match.id", index=True)
    previous_winner_id: Optional[int] = Field(default=None)
    new_winner_id: Optional[int] = Field(default=None)
    previous_score_a: Optional[int] = Field(default=None)
    previous_score_b: Optional[int] = Field(default=None)
    new_score_a: Optional[int] = Field(default=None)
    new_score_b: Optional[int] = Field(default=None)
    notes: str = Field(default="")
    resolved_by: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)
