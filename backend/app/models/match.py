from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.tournament import Tournament


class Match(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("stage_id", "match_code", name="uq_match_stage_code"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    stage_id: int = Field(foreign_key="stage.id", index=True)
    match_code: str  # WB-R1-M1 | LB-R2-M1 | SF-1 | GF-1 | GF-2 | GA-R1-M1
    branch: str  # winners | losers | semi_final | grand_final | group
    round_number: int
    sequence_in_round: int
    best_of: int = Field(default=1)
    group_label: Optional[str] = Field(default=None)

    # Occupants (null = TBD unless the bye flag is set)
    team_a_id: Optional[int] = Field(default=None, foreign_key="team.id")
    team_b_id: Optional[int] = Field(default=None, foreign_key="team.id")
    bye_a: bool = Field(default=False)
    bye_b: bool = Field(default=False)

    # Placeholder text (always present, used when team_ids are null or for display)
    placeholder_side_a: str = Field(default="TBD")
    placeholder_side_b: str = Field(default="TBD")
    source_a_code: Optional[str] = Field(default=None)
    source_a_role: Optional[str] = Field(default=None)  # winner | loser
    source_b_code: Optional[str] = Field(default=None)
    source_b_role: Optional[str] = Field(default=None)

    # Forward links fixed at build time
    winner_to_code: Optional[str] = Field(default=None)
    winner_to_slot: Optional[str] = Field(default=None)  # a | b
    loser_to_code: Optional[str] = Field(default=None)
    loser_to_slot: Optional[str] = Field(default=None)
    is_final: bool = Field(default=False)
    loser_placement: Optional[int] = Field(default=None)  # e.g. 3 for the seeded-DE semifinal

    # Runtime
    status: str = Field(default="pending")  # pending | ongoing | completed | disputed | forfeited
    score_a: Optional[int] = Field(default=None)
    score_b: Optional[int] = Field(default=None)
    winner_team_id: Optional[int] = Field(default=None, foreign_key="team.id")
    is_forfeit: bool = Field(default=False)
    is_walkover: bool = Field(default=False)
    dispute_reason: Optional[str] = Field(default=None)
    scheduled_at: Optional[datetime] = Field(default=None)
    started_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="matches")
