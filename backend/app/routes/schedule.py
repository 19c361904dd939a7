"""
Schedule API Routes

Start times are submitted as local (date, time) pairs in the tournament's
timezone (Tournament.timezone, else SCHEDULE_TIMEZONE) and stored as naive
UTC on the match rows.
"""

import os
from datetime import date, datetime, time, timezone
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session, select

from app.database import get_session
from app.models.team_availability import TeamAvailability
from app.models.tournament import Tournament
from app.routes.runtime import MatchState
from app.services.bracket_graph import BracketMatch
from app.services.graph_store import load_stage_graph, save_stage_graph, tournament_stages
from app.services.scheduling import (
    MATCH_DURATION_MINUTES,
    AvailabilitySubmission,
    CadenceConfig,
    Conflict,
    ScheduledMatch,
    SchedulePlan,
    apply_schedule,
    detect_conflicts,
    plan_availability,
    plan_cadence,
    reschedule,
)
from app.services.tournament_locks import tournament_lock
from app.utils.guards import (
    engine_errors,
    require_match_code,
    require_stage,
    require_team,
    require_tournament,
)

router = APIRouter()

SCHEDULE_TIMEZONE = os.getenv("SCHEDULE_TIMEZONE", "UTC")


# ============================================================================
# Request/Response Models
# ============================================================================


class LocalSlot(BaseModel):
    day: date
    start_time: time


class CadenceRequest(BaseModel):
    start_date: date
    start_time: time
    max_per_day: int
    gap_minutes: int = 0


class AvailabilityRequest(BaseModel):
    slots: List[LocalSlot]
    stage_index: Optional[int] = None
    match_code: Optional[str] = None  # requires stage_index


class AvailabilityPlanRequest(BaseModel):
    gap_minutes: int = MATCH_DURATION_MINUTES


class RescheduleRequest(BaseModel):
    # Both omitted clears the scheduled time
    day: Optional[date] = None
    start_time: Optional[time] = None


class ScheduledItem(BaseModel):
    match_code: str
    scheduled_at: datetime  # UTC
    local_day: date
    local_time: time


class UnschedulableItem(BaseModel):
    match_code: str
    reason: str


class ConflictItem(BaseModel):
    match_a: str
    match_b: str
    team_ids: List[int]
    minutes_apart: float


class SchedulePlanResponse(BaseModel):
    stage_index: int
    timezone: str
    scheduled: List[ScheduledItem]
    unschedulable: List[UnschedulableItem]
    conflicts: List[ConflictItem]


class AvailabilityResponse(BaseModel):
    team_id: int
    stage_index: Optional[int] = None
    match_code: Optional[str] = None
    slots: List[LocalSlot]


class RescheduleResponse(BaseModel):
    match: MatchState
    conflicts: List[ConflictItem]


# ============================================================================
# Timezone helpers
# ============================================================================


def tournament_zone(tournament: Tournament) -> ZoneInfo:
    name = tournament.timezone or SCHEDULE_TIMEZONE
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise HTTPException(status_code=422, detail=f"Unknown timezone: {name}")


def to_utc(local: datetime, tz: ZoneInfo) -> datetime:
    """Local wall-clock time -> naive UTC for storage."""
    if local.tzinfo is None:
        local = local.replace(tzinfo=tz)
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def to_local(stored: datetime, tz: ZoneInfo) -> datetime:
    return stored.replace(tzinfo=timezone.utc).astimezone(tz)


def _conflict_items(conflicts: List[Conflict]) -> List[ConflictItem]:
    return [
        ConflictItem(match_a=c.match_a, match_b=c.match_b, team_ids=c.team_ids, minutes_apart=c.minutes_apart)
        for c in conflicts
    ]


def _plan_response(stage_index: int, tz: ZoneInfo, plan: SchedulePlan, conflicts: List[Conflict]) -> SchedulePlanResponse:
    scheduled = []
    for item in plan.scheduled:
        local = to_local(item.scheduled_at, tz)
        scheduled.append(ScheduledItem(
            match_code=item.match_code,
            scheduled_at=item.scheduled_at,
            local_day=local.date(),
            local_time=local.time().replace(tzinfo=None),
        ))
    return SchedulePlanResponse(
        stage_index=stage_index,
        timezone=str(tz.key),
        scheduled=scheduled,
        unschedulable=[UnschedulableItem(match_code=u.match_code, reason=u.reason) for u in plan.unschedulable],
        conflicts=_conflict_items(conflicts),
    )


# ============================================================================
# Planning
# ============================================================================


@router.post(
    "/tournaments/{tournament_id}/stages/{stage_index}/schedule/cadence",
    response_model=SchedulePlanResponse,
)
def schedule_cadence(
    tournament_id: int,
    stage_index: int,
    payload: CadenceRequest,
    session: Session = Depends(get_session),
):
    """
    Give every unscheduled playable match a start time on a fixed cadence.
    Each new day restarts at the same local start time.
    """
    with tournament_lock(tournament_id):
        tournament = require_tournament(session, tournament_id)
        stage = require_stage(session, tournament_id, stage_index)
        tz = tournament_zone(tournament)
        graph = load_stage_graph(session, stage)

        start = datetime.combine(payload.start_date, payload.start_time).replace(tzinfo=tz)
        with engine_errors():
            plan = plan_cadence(graph, CadenceConfig(start, payload.max_per_day, payload.gap_minutes))
        plan.scheduled = [ScheduledMatch(s.match_code, to_utc(s.scheduled_at, tz)) for s in plan.scheduled]
        conflicts = apply_schedule(graph, plan.scheduled)

        save_stage_graph(session, stage, graph)
        session.commit()

    return _plan_response(stage_index, tz, plan, conflicts)


@router.put(
    "/tournaments/{tournament_id}/teams/{team_id}/availability",
    response_model=AvailabilityResponse,
)
def submit_availability(
    tournament_id: int,
    team_id: int,
    payload: AvailabilityRequest,
    session: Session = Depends(get_session),
):
    """Replace the team's submitted slots for the given scope (whole tournament, stage, or one match)."""
    tournament = require_tournament(session, tournament_id)
    require_team(session, tournament_id, team_id)
    tz = tournament_zone(tournament)

    stage_id = None
    if payload.match_code is not None and payload.stage_index is None:
        raise HTTPException(status_code=422, detail="match_code requires stage_index")
    if payload.stage_index is not None:
        stage = require_stage(session, tournament_id, payload.stage_index)
        stage_id = stage.id
        if payload.match_code is not None:
            require_match_code(session, stage, payload.match_code)

    with tournament_lock(tournament_id):
        existing = session.exec(
            select(TeamAvailability).where(
                TeamAvailability.tournament_id == tournament_id,
                TeamAvailability.team_id == team_id,
                TeamAvailability.stage_id == stage_id,
                TeamAvailability.match_code == payload.match_code,
            )
        ).all()
        for row in existing:
            session.delete(row)

        for slot in payload.slots:
            session.add(TeamAvailability(
                tournament_id=tournament_id,
                team_id=team_id,
                stage_id=stage_id,
                match_code=payload.match_code,
                slot_start=to_utc(datetime.combine(slot.day, slot.start_time), tz),
            ))
        session.commit()

    return AvailabilityResponse(
        team_id=team_id,
        stage_index=payload.stage_index,
        match_code=payload.match_code,
        slots=payload.slots,
    )


@router.get("/tournaments/{tournament_id}/teams/{team_id}/availability", response_model=List[AvailabilityResponse])
def get_availability(tournament_id: int, team_id: int, session: Session = Depends(get_session)):
    tournament = require_tournament(session, tournament_id)
    require_team(session, tournament_id, team_id)
    tz = tournament_zone(tournament)
    stage_index_by_id = {s.id: s.stage_index for s in tournament_stages(session, tournament_id)}

    rows = session.exec(
        select(TeamAvailability)
        .where(TeamAvailability.tournament_id == tournament_id, TeamAvailability.team_id == team_id)
        .order_by(TeamAvailability.slot_start)
    ).all()
    scopes: Dict[tuple, List[LocalSlot]] = {}
    for row in rows:
        local = to_local(row.slot_start, tz)
        scopes.setdefault((row.stage_id, row.match_code), []).append(
            LocalSlot(day=local.date(), start_time=local.time().replace(tzinfo=None))
        )
    return [
        AvailabilityResponse(
            team_id=team_id,
            stage_index=stage_index_by_id.get(stage_id),
            match_code=match_code,
            slots=slots,
        )
        for (stage_id, match_code), slots in scopes.items()
    ]


@router.post(
    "/tournaments/{tournament_id}/stages/{stage_index}/schedule/availability",
    response_model=SchedulePlanResponse,
)
def schedule_from_availability(
    tournament_id: int,
    stage_index: int,
    payload: AvailabilityPlanRequest,
    session: Session = Depends(get_session),
):
    """
    Place each ready match at the earliest slot both teams submitted that
    keeps the gap to their other matches. Matches that cannot be placed are
    returned with a reason.
    """
    with tournament_lock(tournament_id):
        tournament = require_tournament(session, tournament_id)
        stage = require_stage(session, tournament_id, stage_index)
        tz = tournament_zone(tournament)
        graph = load_stage_graph(session, stage)

        rows = session.exec(
            select(TeamAvailability).where(TeamAvailability.tournament_id == tournament_id)
        ).all()
        grouped: Dict[tuple, List[datetime]] = {}
        for row in rows:
            if row.stage_id is not None and row.stage_id != stage.id:
                continue
            grouped.setdefault((row.team_id, row.match_code), []).append(row.slot_start)
        submissions = [
            AvailabilitySubmission(team_id=team_id, slots=slots, match_code=match_code)
            for (team_id, match_code), slots in grouped.items()
        ]

        with engine_errors():
            plan = plan_availability(graph, submissions, gap_minutes=payload.gap_minutes)
        conflicts = apply_schedule(graph, plan.scheduled)

        save_stage_graph(session, stage, graph)
        session.commit()

    return _plan_response(stage_index, tz, plan, conflicts)


# ============================================================================
# Manual edits & conflicts
# ============================================================================


@router.patch(
    "/tournaments/{tournament_id}/stages/{stage_index}/matches/{match_code}/schedule",
    response_model=RescheduleResponse,
)
def reschedule_match(
    tournament_id: int,
    stage_index: int,
    match_code: str,
    payload: RescheduleRequest,
    session: Session = Depends(get_session),
):
    """Move (or clear) one match's start time. Resulting conflicts are reported, not rejected."""
    if (payload.day is None) != (payload.start_time is None):
        raise HTTPException(status_code=422, detail="day and start_time must be given together")

    with tournament_lock(tournament_id):
        tournament = require_tournament(session, tournament_id)
        stage = require_stage(session, tournament_id, stage_index)
        require_match_code(session, stage, match_code)
        tz = tournament_zone(tournament)
        graph = load_stage_graph(session, stage)

        when = None
        if payload.day is not None:
            when = to_utc(datetime.combine(payload.day, payload.start_time), tz)
        with engine_errors():
            conflicts = reschedule(graph, match_code, when)

        rows = save_stage_graph(session, stage, graph)
        session.commit()
        row = rows[match_code]
        session.refresh(row)

    return RescheduleResponse(match=MatchState.model_validate(row), conflicts=_conflict_items(conflicts))


@router.get("/tournaments/{tournament_id}/conflicts", response_model=List[ConflictItem])
def list_conflicts(tournament_id: int, session: Session = Depends(get_session)):
    """Scheduling conflicts across every stage; matches are labelled '<stage_index>:<match_code>'."""
    require_tournament(session, tournament_id)
    labels: Dict[int, str] = {}
    matches: List[BracketMatch] = []
    for stage in tournament_stages(session, tournament_id):
        for match in load_stage_graph(session, stage):
            labels[id(match)] = f"{stage.stage_index}:{match.code}"
            matches.append(match)
    return _conflict_items(detect_conflicts(matches, label=lambda m: labels[id(m)]))
