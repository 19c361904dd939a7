"""
Runtime: match state transitions on a built stage.
Every transition loads the stage graph, applies one engine transition under the
tournament lock, and saves the graph back. Winners (and double-elimination
losers) are written into their pre-computed downstream slots by the engine.
"""
from datetime import datetime
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session, select

from app.database import get_session
from app.models.match import Match
from app.models.match_correction import MatchCorrection
from app.models.stage import (
    STAGE_STATUS_COMPLETED,
    STAGE_STATUS_IN_PROGRESS,
    Stage,
)
from app.services.graph_store import load_stage_graph, save_stage_graph, stage_match_rows
from app.services.progression import ProgressionController, ResultEntry, TransitionReport
from app.services.random_source import coin_toss
from app.services.tournament_locks import tournament_lock
from app.utils.guards import engine_errors, require_match_code, require_stage

router = APIRouter()


class MatchState(BaseModel):
    id: int
    stage_id: int
    match_code: str
    branch: str
    round_number: int
    sequence_in_round: int
    best_of: int
    group_label: Optional[str] = None
    team_a_id: Optional[int] = None
    team_b_id: Optional[int] = None
    placeholder_side_a: str
    placeholder_side_b: str
    winner_to_code: Optional[str] = None
    loser_to_code: Optional[str] = None
    is_final: bool
    status: str
    score_a: Optional[int] = None
    score_b: Optional[int] = None
    winner_team_id: Optional[int] = None
    is_forfeit: bool
    is_walkover: bool
    dispute_reason: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TransitionResponse(BaseModel):
    match: Optional[MatchState] = None
    touched: List[str] = []
    forfeits: List[str] = []
    walkovers: List[str] = []
    voided: List[str] = []
    eliminated: List[int] = []
    reset_created: Optional[str] = None
    stage_complete: bool = False


class ResultPayload(BaseModel):
    score_a: int
    score_b: int


class BatchResultItem(BaseModel):
    match_code: str
    score_a: int
    score_b: int


class BatchResultPayload(BaseModel):
    results: List[BatchResultItem]


class BatchResultOutcome(BaseModel):
    match_code: str
    ok: bool
    error: Optional[str] = None
    touched: List[str] = []


class ForfeitPayload(BaseModel):
    winner_team_id: int


class DisputePayload(BaseModel):
    reason: str


class ResolvePayload(BaseModel):
    notes: str
    score_a: Optional[int] = None
    score_b: Optional[int] = None
    resolved_by: Optional[str] = None


class CorrectionState(BaseModel):
    id: int
    match_id: int
    previous_winner_id: Optional[int] = None
    new_winner_id: Optional[int] = None
    previous_score_a: Optional[int] = None
    previous_score_b: Optional[int] = None
    new_score_a: Optional[int] = None
    new_score_b: Optional[int] = None
    notes: str
    resolved_by: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CoinTossResponse(BaseModel):
    match_code: str
    winner_team_id: int
    loser_team_id: int
    seed: str


def transition_response(report: TransitionReport, rows: dict) -> TransitionResponse:
    row = rows.get(report.match_code) if report.match_code else None
    return TransitionResponse(
        match=MatchState.model_validate(row) if row is not None else None,
        touched=report.touched,
        forfeits=report.forfeits,
        walkovers=report.walkovers,
        voided=report.voided,
        eliminated=report.eliminated,
        reset_created=report.reset_created,
        stage_complete=report.stage_complete,
    )


def sync_stage_status(stage: Stage, complete: bool) -> None:
    """Running stages flip between in_progress and completed with their graph."""
    if stage.status in (STAGE_STATUS_IN_PROGRESS, STAGE_STATUS_COMPLETED):
        stage.status = STAGE_STATUS_COMPLETED if complete else STAGE_STATUS_IN_PROGRESS


def run_transition(
    session: Session,
    tournament_id: int,
    stage_index: int,
    match_code: Optional[str],
    action: Callable[[ProgressionController], TransitionReport],
) -> TransitionResponse:
    with tournament_lock(tournament_id):
        stage = require_stage(session, tournament_id, stage_index)
        if match_code is not None:
            require_match_code(session, stage, match_code)
        graph = load_stage_graph(session, stage)
        with engine_errors():
            report = action(ProgressionController(graph))
        rows = save_stage_graph(session, stage, graph)
        sync_stage_status(stage, report.stage_complete)
        session.add(stage)
        session.commit()
        for row in rows.values():
            session.refresh(row)
        return transition_response(report, rows)


@router.get(
    "/tournaments/{tournament_id}/stages/{stage_index}/matches",
    response_model=List[MatchState],
)
def list_stage_matches(
    tournament_id: int,
    stage_index: int,
    session: Session = Depends(get_session),
) -> List[MatchState]:
    """Matches of a stage in construction order."""
    stage = require_stage(session, tournament_id, stage_index)
    return [MatchState.model_validate(m) for m in stage_match_rows(session, stage).values()]


@router.post(
    "/tournaments/{tournament_id}/stages/{stage_index}/matches/{match_code}/start",
    response_model=TransitionResponse,
)
def start_match(
    tournament_id: int,
    stage_index: int,
    match_code: str,
    session: Session = Depends(get_session),
) -> TransitionResponse:
    return run_transition(
        session, tournament_id, stage_index, match_code,
        lambda c: c.start_match(match_code),
    )


@router.post(
    "/tournaments/{tournament_id}/stages/{stage_index}/matches/{match_code}/result",
    response_model=TransitionResponse,
)
def record_result(
    tournament_id: int,
    stage_index: int,
    match_code: str,
    payload: ResultPayload,
    session: Session = Depends(get_session),
) -> TransitionResponse:
    """Record a played result. The winner advances into its pre-computed slot."""
    return run_transition(
        session, tournament_id, stage_index, match_code,
        lambda c: c.apply_result(match_code, payload.score_a, payload.score_b),
    )


@router.post(
    "/tournaments/{tournament_id}/stages/{stage_index}/results",
    response_model=List[BatchResultOutcome],
)
def record_results(
    tournament_id: int,
    stage_index: int,
    payload: BatchResultPayload,
    session: Session = Depends(get_session),
) -> List[BatchResultOutcome]:
    """Record several results at once; rejected entries are reported per item."""
    with tournament_lock(tournament_id):
        stage = require_stage(session, tournament_id, stage_index)
        graph = load_stage_graph(session, stage)
        controller = ProgressionController(graph)
        outcomes = controller.apply_results(
            ResultEntry(item.match_code, item.score_a, item.score_b) for item in payload.results
        )
        save_stage_graph(session, stage, graph)
        sync_stage_status(stage, graph.is_complete())
        session.add(stage)
        session.commit()

    return [
        BatchResultOutcome(
            match_code=o.match_code,
            ok=o.ok,
            error=o.error,
            touched=o.report.touched if o.report else [],
        )
        for o in outcomes
    ]


@router.post(
    "/tournaments/{tournament_id}/stages/{stage_index}/matches/{match_code}/forfeit",
    response_model=TransitionResponse,
)
def forfeit_match(
    tournament_id: int,
    stage_index: int,
    match_code: str,
    payload: ForfeitPayload,
    session: Session = Depends(get_session),
) -> TransitionResponse:
    return run_transition(
        session, tournament_id, stage_index, match_code,
        lambda c: c.forfeit(match_code, payload.winner_team_id),
    )


@router.post(
    "/tournaments/{tournament_id}/stages/{stage_index}/matches/{match_code}/dispute",
    response_model=TransitionResponse,
)
def dispute_match(
    tournament_id: int,
    stage_index: int,
    match_code: str,
    payload: DisputePayload,
    session: Session = Depends(get_session),
) -> TransitionResponse:
    return run_transition(
        session, tournament_id, stage_index, match_code,
        lambda c: c.raise_dispute(match_code, payload.reason),
    )


@router.post(
    "/tournaments/{tournament_id}/stages/{stage_index}/matches/{match_code}/resolve",
    response_model=TransitionResponse,
)
def resolve_dispute(
    tournament_id: int,
    stage_index: int,
    match_code: str,
    payload: ResolvePayload,
    session: Session = Depends(get_session),
) -> TransitionResponse:
    """Close a dispute. A score overwrite is logged as a correction."""
    return run_transition(
        session, tournament_id, stage_index, match_code,
        lambda c: c.resolve_dispute(
            match_code, payload.notes, payload.score_a, payload.score_b, payload.resolved_by,
        ),
    )


@router.get(
    "/tournaments/{tournament_id}/stages/{stage_index}/matches/{match_code}/corrections",
    response_model=List[CorrectionState],
)
def list_corrections(
    tournament_id: int,
    stage_index: int,
    match_code: str,
    session: Session = Depends(get_session),
) -> List[CorrectionState]:
    stage = require_stage(session, tournament_id, stage_index)
    match = require_match_code(session, stage, match_code)
    rows = session.exec(
        select(MatchCorrection).where(MatchCorrection.match_id == match.id).order_by(MatchCorrection.id)
    ).all()
    return [CorrectionState.model_validate(r) for r in rows]


@router.post(
    "/tournaments/{tournament_id}/stages/{stage_index}/matches/{match_code}/coin-toss",
    response_model=CoinTossResponse,
)
def toss_coin(
    tournament_id: int,
    stage_index: int,
    match_code: str,
    session: Session = Depends(get_session),
) -> CoinTossResponse:
    """Pick which side chooses first. Both teams must be known."""
    stage = require_stage(session, tournament_id, stage_index)
    match: Match = require_match_code(session, stage, match_code)
    if match.team_a_id is None or match.team_b_id is None:
        raise HTTPException(status_code=409, detail="Both teams must be known before the coin toss")
    toss = coin_toss(match.team_a_id, match.team_b_id)
    return CoinTossResponse(
        match_code=match_code,
        winner_team_id=toss.winner_id,
        loser_team_id=toss.loser_id,
        seed=toss.seed,
    )
