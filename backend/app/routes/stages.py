"""
Stage API Routes
Stage plan configuration, group draws, bracket builds, standings and
stage-to-stage advancement.
"""

from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict
from sqlmodel import Session, select

from app.database import get_session
from app.models.group_draw import GroupDraw
from app.models.match import Match
from app.models.stage import (
    STAGE_STATUS_COMPLETED,
    STAGE_STATUS_CONFIGURED,
    STAGE_STATUS_DRAWN,
    STAGE_STATUS_IN_PROGRESS,
    Stage,
)
from app.models.stage_group_team import StageGroupTeam
from app.routes.runtime import MatchState
from app.services.bracket_builder import order_entrants
from app.services.bracket_graph import StageConfig, TeamEntry, group_label, validate_stage_plan
from app.services.draw_engine import (
    DRAW_MODE_POTS,
    DRAW_MODE_RANDOM,
    DRAW_MODE_SNAKE,
    DrawAssignment,
    DrawResult,
    pots_from_teams,
    replay_draw,
    run_draw,
    snake_draft,
)
from app.services.graph_store import (
    entrant_rows,
    load_stage_graph,
    save_stage_graph,
    stage_config,
    stage_entrants,
    team_entries,
    tournament_stages,
    withdrawn_team_ids,
)
from app.services.stage_pipeline import advance_stage, build_stage
from app.services.standings import compute_advancement, group_standings
from app.services.tournament_locks import tournament_lock
from app.utils.guards import engine_errors, require_stage, require_tournament

router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================


class StageIn(BaseModel):
    format: str
    name: str = ""
    best_of: int = 1
    final_best_of: Optional[int] = None
    group_count: int = 0
    advance_upper_per_group: int = 0
    advance_lower_per_group: int = 0
    advance_best_remaining: int = 0


class StagePlanRequest(BaseModel):
    stages: List[StageIn]


class StageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tournament_id: int
    stage_index: int
    name: str
    format: str
    best_of: int
    final_best_of: Optional[int] = None
    group_count: int
    advance_upper_per_group: int
    advance_lower_per_group: int
    advance_best_remaining: int
    status: str
    lb_initial_rounds: int


class DrawRequest(BaseModel):
    mode: str = DRAW_MODE_RANDOM  # random | pots | snake
    seed: Optional[str] = None


class DrawEntry(BaseModel):
    order: int
    team_id: int
    group_label: str
    pot: Optional[int] = None


class DrawResponse(BaseModel):
    stage_index: int
    mode: str
    seed: Optional[str] = None
    group_labels: List[str]
    sequence: List[DrawEntry]
    created_at: Optional[datetime] = None


class ReplayResponse(BaseModel):
    stage_index: int
    seed: Optional[str] = None
    identical: bool
    sequence: List[DrawEntry]


class BuildResponse(BaseModel):
    stage_index: int
    format: str
    playable_matches: int
    matches: List[MatchState]


class StandingRow(BaseModel):
    rank: int
    team_id: int
    played: int
    wins: int
    losses: int
    score_for: int
    score_against: int
    differential: int
    points: int
    head_to_head: int
    seed: Optional[int] = None


class AdvancerRow(BaseModel):
    team_id: int
    group_label: Optional[str] = None
    group_position: int
    suggested_seed: int


class AdvancementResponse(BaseModel):
    upper: List[AdvancerRow]
    lower: List[AdvancerRow]
    eliminated: List[int]


class StandingsResponse(BaseModel):
    stage_index: int
    complete: bool
    groups: Dict[str, List[StandingRow]]
    advancement: AdvancementResponse


class AdvanceResponse(BaseModel):
    stage_index: int
    next_stage_index: int
    advancement: AdvancementResponse
    next_stage_built: bool


# ============================================================================
# Helpers
# ============================================================================


def _stage_has_matches(session: Session, stage: Stage) -> bool:
    return session.exec(select(Match.id).where(Match.stage_id == stage.id)).first() is not None


def _clear_entrants(session: Session, stage: Stage) -> None:
    rows = session.exec(select(StageGroupTeam).where(StageGroupTeam.stage_id == stage.id)).all()
    for row in rows:
        session.delete(row)
    # Flush so re-inserted rows don't collide with uq_stage_team
    session.flush()


def _clear_stage(session: Session, stage: Stage) -> None:
    _clear_entrants(session, stage)
    for draw in session.exec(select(GroupDraw).where(GroupDraw.stage_id == stage.id)).all():
        session.delete(draw)
    session.delete(stage)


def _draw_entrants(session: Session, stage: Stage) -> List[TeamEntry]:
    """First stage draws every approved team; later stages draw the previous stage's advancers."""
    if stage.stage_index == 1:
        return team_entries(session, stage.tournament_id)
    groups, upper, lower = stage_entrants(session, stage)
    withdrawn = withdrawn_team_ids(session, stage.tournament_id)
    drawn = [t for members in groups.values() for t in members]
    return [t for t in upper + lower + drawn if t.team_id not in withdrawn]


def _draw_response(stage: Stage, draw: GroupDraw) -> DrawResponse:
    labels = sorted({item["group_label"] for item in draw.sequence_json})
    return DrawResponse(
        stage_index=stage.stage_index,
        mode=draw.mode,
        seed=draw.seed,
        group_labels=labels,
        sequence=[DrawEntry(**item) for item in draw.sequence_json],
        created_at=draw.created_at,
    )


def _advancement_response(advancement) -> AdvancementResponse:
    def rows(bucket):
        return [
            AdvancerRow(
                team_id=t.team_id,
                group_label=t.group_label,
                group_position=t.group_position,
                suggested_seed=t.suggested_seed,
            )
            for t in bucket
        ]

    return AdvancementResponse(
        upper=rows(advancement.upper),
        lower=rows(advancement.lower),
        eliminated=advancement.eliminated,
    )


def _latest_draw(session: Session, stage: Stage) -> GroupDraw:
    draw = session.exec(
        select(GroupDraw).where(GroupDraw.stage_id == stage.id).order_by(GroupDraw.id.desc())
    ).first()
    if not draw:
        raise HTTPException(status_code=404, detail="Stage has not been drawn")
    return draw


# ============================================================================
# Stage plan
# ============================================================================


@router.put("/tournaments/{tournament_id}/stages", response_model=List[StageResponse])
def configure_stages(tournament_id: int, payload: StagePlanRequest, session: Session = Depends(get_session)):
    """
    Replace the tournament's stage plan. Each stage is validated on its own
    and, once at least two teams are registered, the plan as a whole.
    """
    with tournament_lock(tournament_id):
        require_tournament(session, tournament_id)
        existing = tournament_stages(session, tournament_id)
        if any(s.status != STAGE_STATUS_CONFIGURED or _stage_has_matches(session, s) for s in existing):
            raise HTTPException(status_code=409, detail="Stages cannot be reconfigured once a stage has started")
        if not payload.stages:
            raise HTTPException(status_code=422, detail="At least one stage is required")

        with engine_errors():
            configs = [
                StageConfig(index=i, **s.model_dump())
                for i, s in enumerate(payload.stages, start=1)
            ]
            team_count = len(team_entries(session, tournament_id))
            if team_count >= 2:
                validate_stage_plan(configs, team_count)

        for stage in existing:
            _clear_stage(session, stage)
        session.flush()

        stages = []
        for config in configs:
            stage = Stage(
                tournament_id=tournament_id,
                stage_index=config.index,
                name=config.name,
                format=config.format,
                best_of=config.best_of,
                final_best_of=config.final_best_of,
                group_count=config.group_count,
                advance_upper_per_group=config.advance_upper_per_group,
                advance_lower_per_group=config.advance_lower_per_group,
                advance_best_remaining=config.advance_best_remaining,
            )
            session.add(stage)
            stages.append(stage)
        session.commit()
        for stage in stages:
            session.refresh(stage)
        return stages


@router.get("/tournaments/{tournament_id}/stages", response_model=List[StageResponse])
def list_stages(tournament_id: int, session: Session = Depends(get_session)):
    require_tournament(session, tournament_id)
    return tournament_stages(session, tournament_id)


# ============================================================================
# Draw
# ============================================================================


@router.post("/tournaments/{tournament_id}/stages/{stage_index}/draw", response_model=DrawResponse)
def draw_stage(
    tournament_id: int,
    stage_index: int,
    payload: DrawRequest,
    session: Session = Depends(get_session),
):
    """Assign the stage's entrants to groups and record the reveal sequence."""
    with tournament_lock(tournament_id):
        stage = require_stage(session, tournament_id, stage_index)
        config = stage_config(stage)
        if not config.is_round_robin:
            raise HTTPException(status_code=422, detail="Only round-robin stages have a group draw")
        if _stage_has_matches(session, stage):
            raise HTTPException(status_code=409, detail="Stage bracket is already built")
        if payload.mode not in (DRAW_MODE_RANDOM, DRAW_MODE_POTS, DRAW_MODE_SNAKE):
            raise HTTPException(status_code=422, detail=f"Unknown draw mode: {payload.mode}")

        entrants = _draw_entrants(session, stage)
        if not entrants:
            raise HTTPException(status_code=409, detail="Stage has no entrants yet")
        previous = {row.team_id: row for row in session.exec(
            select(StageGroupTeam).where(StageGroupTeam.stage_id == stage.id)
        ).all()}

        with engine_errors():
            if payload.mode == DRAW_MODE_SNAKE:
                entrants = order_entrants(entrants)
                result = snake_draft(entrants, config.effective_group_count)
            elif payload.mode == DRAW_MODE_POTS:
                result = run_draw(
                    entrants, config.effective_group_count, seed=payload.seed, pots=pots_from_teams(entrants),
                )
            else:
                result = run_draw(entrants, config.effective_group_count, seed=payload.seed)

        _clear_entrants(session, stage)
        for a in result.assignments:
            carried = previous.get(a.team_id)
            session.add(StageGroupTeam(
                stage_id=stage.id,
                team_id=a.team_id,
                group_label=a.group_label,
                draw_order=a.order,
                pot=a.pot,
                stage_seed=carried.stage_seed if carried else None,
            ))
        draw = GroupDraw(
            stage_id=stage.id,
            seed=result.seed,
            mode=result.mode,
            group_count=len(result.group_labels),
            sequence_json=[
                {"order": a.order, "team_id": a.team_id, "group_label": a.group_label, "pot": a.pot}
                for a in result.assignments
            ],
            entrants_json=[t.team_id for t in entrants],
        )
        session.add(draw)
        stage.status = STAGE_STATUS_DRAWN
        session.add(stage)
        session.commit()
        session.refresh(draw)

    response = _draw_response(stage, draw)
    response.group_labels = result.group_labels
    return response


@router.get("/tournaments/{tournament_id}/stages/{stage_index}/draw", response_model=DrawResponse)
def get_draw(tournament_id: int, stage_index: int, session: Session = Depends(get_session)):
    stage = require_stage(session, tournament_id, stage_index)
    return _draw_response(stage, _latest_draw(session, stage))


@router.post("/tournaments/{tournament_id}/stages/{stage_index}/draw/replay", response_model=ReplayResponse)
def replay_stage_draw(tournament_id: int, stage_index: int, session: Session = Depends(get_session)):
    """Re-run the recorded draw from its seed and report whether the sequence matches."""
    stage = require_stage(session, tournament_id, stage_index)
    draw = _latest_draw(session, stage)
    entries = {e.team_id: e for e in team_entries(session, tournament_id, include_withdrawn=True)}
    teams = [entries[team_id] for team_id in draw.entrants_json if team_id in entries]
    recorded = DrawResult(
        seed=draw.seed,
        group_labels=[group_label(i) for i in range(draw.group_count)],
        assignments=[DrawAssignment(**item) for item in draw.sequence_json],
        mode=draw.mode,
    )

    with engine_errors():
        if draw.mode == DRAW_MODE_SNAKE:
            replayed = snake_draft(teams, draw.group_count)
        else:
            pots = {a.team_id: a.pot for a in recorded.assignments} if draw.mode == DRAW_MODE_POTS else None
            replayed = replay_draw(recorded, teams, pots)

    return ReplayResponse(
        stage_index=stage.stage_index,
        seed=draw.seed,
        identical=replayed.assignments == recorded.assignments,
        sequence=[DrawEntry(order=a.order, team_id=a.team_id, group_label=a.group_label, pot=a.pot)
                  for a in replayed.assignments],
    )


# ============================================================================
# Build
# ============================================================================


@router.post("/tournaments/{tournament_id}/stages/{stage_index}/build", response_model=BuildResponse)
def build_stage_bracket(tournament_id: int, stage_index: int, session: Session = Depends(get_session)):
    """Construct the stage's full match graph from its entrants."""
    with tournament_lock(tournament_id):
        stage = require_stage(session, tournament_id, stage_index)
        if _stage_has_matches(session, stage):
            raise HTTPException(status_code=409, detail="Stage bracket is already built")
        config = stage_config(stage)
        withdrawn = withdrawn_team_ids(session, tournament_id)
        groups, upper, lower = stage_entrants(session, stage)
        groups = {
            label: [t for t in members if t.team_id not in withdrawn]
            for label, members in groups.items()
        }
        upper = [t for t in upper if t.team_id not in withdrawn]
        lower = [t for t in lower if t.team_id not in withdrawn]

        with engine_errors():
            if stage.stage_index == 1:
                teams = team_entries(session, tournament_id)
                validate_stage_plan([stage_config(s) for s in tournament_stages(session, tournament_id)], len(teams))
            else:
                teams = upper + lower
            if config.is_round_robin:
                if groups:
                    teams = [t for members in groups.values() for t in members]
                graph = build_stage(config, teams, groups=groups or None)
            elif stage.stage_index == 1:
                graph = build_stage(config, teams)
            else:
                graph = build_stage(config, upper, lower_teams=lower)

        if config.is_round_robin and not groups:
            # Undrawn single-group stage: everyone plays in group A
            _clear_entrants(session, stage)
            for order, team in enumerate(order_entrants(teams), start=1):
                session.add(StageGroupTeam(stage_id=stage.id, team_id=team.team_id, group_label="A", draw_order=order))

        rows = save_stage_graph(session, stage, graph)
        stage.status = STAGE_STATUS_IN_PROGRESS
        session.add(stage)
        session.commit()
        for row in rows.values():
            session.refresh(row)

    return BuildResponse(
        stage_index=stage.stage_index,
        format=stage.format,
        playable_matches=len(graph.playable_matches()),
        matches=[MatchState.model_validate(r) for r in rows.values()],
    )


# ============================================================================
# Standings & advancement
# ============================================================================


@router.get("/tournaments/{tournament_id}/stages/{stage_index}/standings", response_model=StandingsResponse)
def get_standings(tournament_id: int, stage_index: int, session: Session = Depends(get_session)):
    """Group standings recomputed from resolved matches, with the advancement they imply."""
    stage = require_stage(session, tournament_id, stage_index)
    config = stage_config(stage)
    if not config.is_round_robin:
        raise HTTPException(status_code=422, detail="Standings apply to round-robin stages only")
    graph = load_stage_graph(session, stage)
    groups, _, _ = stage_entrants(session, stage)
    standings = group_standings(graph, groups)
    advancement = compute_advancement(standings, config, withdrawn_team_ids(session, tournament_id))

    return StandingsResponse(
        stage_index=stage.stage_index,
        complete=graph.is_complete(),
        groups={
            label: [
                StandingRow(
                    rank=r.rank,
                    team_id=r.team_id,
                    played=r.played,
                    wins=r.wins,
                    losses=r.losses,
                    score_for=r.score_for,
                    score_against=r.score_against,
                    differential=r.differential,
                    points=r.points,
                    head_to_head=r.head_to_head,
                    seed=r.seed,
                )
                for r in rows
            ]
            for label, rows in standings.items()
        },
        advancement=_advancement_response(advancement),
    )


@router.post("/tournaments/{tournament_id}/stages/{stage_index}/advance", response_model=AdvanceResponse)
def advance_to_next_stage(tournament_id: int, stage_index: int, session: Session = Depends(get_session)):
    """
    Close a completed round-robin stage and seed its advancers into the next
    stage. Elimination stages are built immediately; a round-robin next stage
    waits for its own draw.
    """
    with tournament_lock(tournament_id):
        stage = require_stage(session, tournament_id, stage_index)
        following = [s for s in tournament_stages(session, tournament_id) if s.stage_index == stage_index + 1]
        if not following:
            raise HTTPException(status_code=409, detail="There is no subsequent stage")
        next_stage = following[0]
        has_entrants = session.exec(
            select(StageGroupTeam.id).where(StageGroupTeam.stage_id == next_stage.id)
        ).first() is not None
        if has_entrants or _stage_has_matches(session, next_stage):
            raise HTTPException(status_code=409, detail=f"Stage {stage_index} has already advanced")

        graph = load_stage_graph(session, stage)
        groups, _, _ = stage_entrants(session, stage)
        teams = [t for members in groups.values() for t in members]
        with engine_errors():
            result = advance_stage(
                graph, stage_config(stage), stage_config(next_stage), teams, groups,
                withdrawn=withdrawn_team_ids(session, tournament_id),
            )

        for row in entrant_rows(next_stage, result.upper, result.lower):
            session.add(row)
        if result.next_graph is not None:
            save_stage_graph(session, next_stage, result.next_graph)
            next_stage.status = STAGE_STATUS_IN_PROGRESS
            session.add(next_stage)
        stage.status = STAGE_STATUS_COMPLETED
        session.add(stage)
        session.commit()

    return AdvanceResponse(
        stage_index=stage_index,
        next_stage_index=stage_index + 1,
        advancement=_advancement_response(result.advancement),
        next_stage_built=result.next_graph is not None,
    )
