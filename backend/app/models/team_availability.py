from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class TeamAvailability(SQLModel, table=True):
    """One submitted start time a team can play; match_code narrows it to a single match."""

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    team_id: int = Field(foreign_key="team.id", index=True)
    stage_id: Optional[int] = Field(default=None, foreign_key="stage.id")
    match_code: Optional[str] = Field(default=None)
    slot_start: datetime
    created_at: datetime = Field(default_factory=datetime.utcnow)
