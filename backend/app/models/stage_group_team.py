from typing import TYPE_CHECKING, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.stage import Stage

SIDE_UPPER = "upper"
SIDE_LOWER = "lower"


class StageGroupTeam(SQLModel, table=True):
    """A team entered in a stage: its group (round robin) or bracket side (elimination)."""

    __table_args__ = (SAUniqueConstraint("stage_id", "team_id", name="uq_stage_team"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    stage_id: int = Field(foreign_key="stage.id", index=True)
    team_id: int = Field(foreign_key="team.id", index=True)
    group_label: Optional[str] = Field(default=None)  # "A".."Z"
    draw_order: Optional[int] = Field(default=None)  # Reveal position in the draw
    pot: Optional[int] = Field(default=None)
    bracket_side: Optional[str] = Field(default=None)  # upper | lower (advancers)
    stage_seed: Optional[int] = Field(default=None)  # Seed within this stage

    # Relationships
    stage: "Stage" = Relationship(back_populates="entrants")
