"""
Route Guards and Error Translation

Provides reusable lookups that 404 on unknown or foreign entities, and a
context manager that turns engine exceptions into HTTP errors:
- InvalidStageConfigError / InsufficientEntrantsError / InvalidScoreError /
  InvalidScheduleConfigError -> 422
- InvalidTransitionError -> 409
UnresolvedSlotError is a bracket construction defect and is left to surface
as a 500.
"""

from contextlib import contextmanager
from typing import Iterator

from fastapi import HTTPException
from sqlmodel import Session, select

from app.models.match import Match
from app.models.stage import Stage
from app.models.team import Team
from app.models.tournament import Tournament
from app.services.errors import (
    InsufficientEntrantsError,
    InvalidScheduleConfigError,
    InvalidScoreError,
    InvalidStageConfigError,
    InvalidTransitionError,
)

UNPROCESSABLE_ERRORS = (
    InvalidStageConfigError,
    InsufficientEntrantsError,
    InvalidScoreError,
    InvalidScheduleConfigError,
)


@contextmanager
def engine_errors() -> Iterator[None]:
    try:
        yield
    except UNPROCESSABLE_ERRORS as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


def require_tournament(session: Session, tournament_id: int) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return tournament


def require_stage(session: Session, tournament_id: int, stage_index: int) -> Stage:
    """Stages are addressed by their 1-based index within the tournament."""
    require_tournament(session, tournament_id)
    stage = session.exec(
        select(Stage).where(Stage.tournament_id == tournament_id, Stage.stage_index == stage_index)
    ).first()
    if not stage:
        raise HTTPException(status_code=404, detail=f"Stage {stage_index} not found")
    return stage


def require_team(session: Session, tournament_id: int, team_id: int) -> Team:
    team = session.get(Team, team_id)
    if not team or team.tournament_id != tournament_id:
        raise HTTPException(status_code=404, detail="Team not found")
    return team


def require_match_code(session: Session, stage: Stage, match_code: str) -> Match:
    match = session.exec(
        select(Match).where(Match.stage_id == stage.id, Match.match_code == match_code)
    ).first()
    if not match:
        raise HTTPException(status_code=404, detail=f"Match {match_code} not found")
    return match
