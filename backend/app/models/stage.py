from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.group_draw import GroupDraw
    from app.models.stage_group_team import StageGroupTeam
    from app.models.tournament import Tournament

STAGE_STATUS_CONFIGURED = "configured"
STAGE_STATUS_DRAWN = "drawn"
STAGE_STATUS_IN_PROGRESS = "in_progress"
STAGE_STATUS_COMPLETED = "completed"


class Stage(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("tournament_id", "stage_index", name="uq_tournament_stage_index"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    stage_index: int  # 1-based order within the tournament
    name: str = Field(default="")
    format: str  # round_robin | single_elimination | double_elimination
    best_of: int = Field(default=1)
    final_best_of: Optional[int] = Field(default=None)

    # Round robin only
    group_count: int = Field(default=0)
    advance_upper_per_group: int = Field(default=0)
    advance_lower_per_group: int = Field(default=0)
    advance_best_remaining: int = Field(default=0)

    status: str = Field(default=STAGE_STATUS_CONFIGURED)  # configured | drawn | in_progress | completed
    lb_initial_rounds: int = Field(default=0)  # Seeded double elimination: pure losers rounds
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="stages")
    entrants: List["StageGroupTeam"] = Relationship(back_populates="stage")
    draws: List["GroupDraw"] = Relationship(back_populates="stage")
