from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, field_validator
from sqlmodel import Session, select

from app.database import get_session
from app.models.stage import STAGE_STATUS_IN_PROGRESS
from app.models.team import TEAM_STATUS_APPROVED, TEAM_STATUS_WITHDRAWN, Team
from app.models.tournament import Tournament
from app.routes.runtime import TransitionResponse, sync_stage_status, transition_response
from app.services.bracket_builder import order_entrants
from app.services.graph_store import (
    load_stage_graph,
    save_stage_graph,
    team_entries,
    tournament_stages,
)
from app.services.progression import ProgressionController
from app.services.tournament_locks import tournament_lock
from app.utils.guards import engine_errors, require_team, require_tournament

router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================


class TournamentCreate(BaseModel):
    name: str
    timezone: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("name is required")
        return v.strip()


class TournamentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    timezone: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class TeamCreateRequest(BaseModel):
    name: str
    seed: Optional[int] = None
    pot: Optional[int] = None
    registration_timestamp: Optional[datetime] = None

    @field_validator("seed", "pot")
    @classmethod
    def validate_positive(cls, v):
        if v is not None and v < 1:
            raise ValueError("must be a positive integer")
        return v


class TeamResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tournament_id: int
    name: str
    seed: Optional[int] = None
    pot: Optional[int] = None
    status: str
    registration_timestamp: datetime
    withdrawn_at: Optional[datetime] = None


class StageWithdrawal(BaseModel):
    stage_index: int
    transition: TransitionResponse


class WithdrawResponse(BaseModel):
    team: TeamResponse
    stages: List[StageWithdrawal]


# ============================================================================
# Tournaments
# ============================================================================


@router.get("/tournaments", response_model=List[TournamentResponse])
def list_tournaments(session: Session = Depends(get_session)):
    """List all tournaments"""
    return session.exec(select(Tournament).order_by(Tournament.id)).all()


@router.post("/tournaments", response_model=TournamentResponse, status_code=201)
def create_tournament(tournament_data: TournamentCreate, session: Session = Depends(get_session)):
    tournament = Tournament(**tournament_data.model_dump())
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament


@router.get("/tournaments/{tournament_id}", response_model=TournamentResponse)
def get_tournament(tournament_id: int, session: Session = Depends(get_session)):
    """Get a tournament by ID"""
    return require_tournament(session, tournament_id)


# ============================================================================
# Teams (approved entrants)
# ============================================================================


@router.get("/tournaments/{tournament_id}/teams", response_model=List[TeamResponse])
def list_teams(tournament_id: int, session: Session = Depends(get_session)):
    """
    Teams in bracket order:
    1. seed ascending (nulls last)
    2. registration_timestamp ascending
    3. id ascending
    """
    require_tournament(session, tournament_id)
    teams = {t.id: t for t in session.exec(select(Team).where(Team.tournament_id == tournament_id)).all()}
    ordered = order_entrants(team_entries(session, tournament_id, include_withdrawn=True))
    return [teams[e.team_id] for e in ordered]


@router.post("/tournaments/{tournament_id}/teams", response_model=TeamResponse, status_code=201)
def register_team(tournament_id: int, payload: TeamCreateRequest, session: Session = Depends(get_session)):
    """Add an approved entrant. Seeds and names are unique within a tournament."""
    require_tournament(session, tournament_id)
    existing = session.exec(select(Team).where(Team.tournament_id == tournament_id)).all()
    if payload.seed is not None and any(t.seed == payload.seed for t in existing):
        raise HTTPException(status_code=422, detail=f"Seed {payload.seed} is already taken")
    if any(t.name == payload.name for t in existing):
        raise HTTPException(status_code=422, detail=f"Team name '{payload.name}' is already registered")

    data = payload.model_dump(exclude_none=True)
    team = Team(tournament_id=tournament_id, status=TEAM_STATUS_APPROVED, **data)
    session.add(team)
    session.commit()
    session.refresh(team)
    return team


@router.post("/tournaments/{tournament_id}/teams/auto-seed", response_model=List[TeamResponse])
def auto_seed_teams(tournament_id: int, session: Session = Depends(get_session)):
    """Re-seed approved teams 1..N by registration order."""
    with tournament_lock(tournament_id):
        require_tournament(session, tournament_id)
        entries = team_entries(session, tournament_id)
        teams = {t.id: t for t in session.exec(select(Team).where(Team.tournament_id == tournament_id)).all()}

        # Clear first so the unique (tournament, seed) constraint never trips mid-update
        for team in teams.values():
            team.seed = None
            session.add(team)
        session.flush()

        for seed, entry in enumerate(entries, start=1):
            teams[entry.team_id].seed = seed
        session.commit()

    return sorted(
        (t for t in teams.values() if t.status == TEAM_STATUS_APPROVED), key=lambda t: t.seed
    )


@router.post("/tournaments/{tournament_id}/teams/{team_id}/withdraw", response_model=WithdrawResponse)
def withdraw_team(tournament_id: int, team_id: int, session: Session = Depends(get_session)):
    """
    Withdraw a team. In every running stage its open matches are forfeited to
    the opponent and the forfeit winners advance as if they had won by play.
    """
    with tournament_lock(tournament_id):
        team = require_team(session, tournament_id, team_id)
        if team.status == TEAM_STATUS_WITHDRAWN:
            raise HTTPException(status_code=409, detail="Team has already withdrawn")

        results: List[StageWithdrawal] = []
        for stage in tournament_stages(session, tournament_id):
            if stage.status != STAGE_STATUS_IN_PROGRESS:
                continue
            graph = load_stage_graph(session, stage)
            if not graph.matches_for_team(team_id):
                continue
            with engine_errors():
                report = ProgressionController(graph).withdraw(team_id)
            rows = save_stage_graph(session, stage, graph)
            sync_stage_status(stage, report.stage_complete)
            session.add(stage)
            session.flush()
            results.append(StageWithdrawal(
                stage_index=stage.stage_index,
                transition=transition_response(report, rows),
            ))

        team.status = TEAM_STATUS_WITHDRAWN
        team.withdrawn_at = datetime.utcnow()
        session.add(team)
        session.commit()
        session.refresh(team)

    return WithdrawResponse(team=TeamResponse.model_validate(team), stages=results)
