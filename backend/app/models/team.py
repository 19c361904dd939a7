from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.tournament import Tournament

TEAM_STATUS_APPROVED = "approved"
TEAM_STATUS_WITHDRAWN = "withdrawn"


class Team(SQLModel, table=True):
    __table_args__ = (
        # Seeds are unique among a tournament's entrants (where seed is not null)
        SAUniqueConstraint("tournament_id", "seed", name="uq_tournament_seed"),
        SAUniqueConstraint("tournament_id", "name", name="uq_tournament_team_name"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    name: str
    seed: Optional[int] = Field(default=None)  # 1-based seed (1=highest)
    pot: Optional[int] = Field(default=None)  # Draw tier, 1-based
    status: str = Field(default=TEAM_STATUS_APPROVED)  # approved | withdrawn
    registration_timestamp: datetime = Field(default_factory=datetime.utcnow)  # Tie-break after seed
    withdrawn_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="teams")
