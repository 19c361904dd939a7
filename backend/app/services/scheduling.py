"""
Scheduling Planner - match start times from a fixed cadence or from
team-submitted availability, plus conflict detection.

Cadence: matches in round-then-sequence order, `gap_minutes` apart, rolling
to the next day at the same start time once `max_per_day` is reached.

Availability: the earliest slot both teams submitted that is not within the
inter-match gap of another match either team already has. Matches that
cannot be placed come back as Unschedulable with a reason; nothing raises.

Conflicts: two scheduled matches sharing a team whose start times are less
than one match duration (60 minutes) apart.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo as TzInfo
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from app.services.bracket_graph import BRANCH_ORDER, BracketGraph, BracketMatch
from app.services.errors import InvalidScheduleConfigError, InvalidTransitionError

logger = logging.getLogger(__name__)

MATCH_DURATION_MINUTES = 60

REASON_NO_SUBMISSIONS = "neither side has submitted availability"
REASON_ONE_SIDE = "only one side has submitted availability"
REASON_NO_OVERLAP = "no overlapping availability"
REASON_ALL_BLOCKED = "all overlapping slots conflict with other matches"


@dataclass
class CadenceConfig:
    start: datetime
    max_per_day: int
    gap_minutes: int = 0

    def validate(self) -> None:
        if not isinstance(self.start, datetime):
            raise InvalidScheduleConfigError("start must be a datetime")
        for name, value, minimum in (("max_per_day", self.max_per_day, 1), ("gap_minutes", self.gap_minutes, 0)):
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidScheduleConfigError(f"{name} must be an integer, got {value!r}")
            if value < minimum:
                raise InvalidScheduleConfigError(f"{name} must be >= {minimum}, got {value}")


@dataclass
class ScheduledMatch:
    match_code: str
    scheduled_at: datetime


@dataclass
class Unschedulable:
    match_code: str
    reason: str


@dataclass
class SchedulePlan:
    scheduled: List[ScheduledMatch] = field(default_factory=list)
    unschedulable: List[Unschedulable] = field(default_factory=list)


@dataclass
class AvailabilitySubmission:
    """Slots a team can play; match_code limits it to one match."""
    team_id: int
    slots: List[datetime]
    match_code: Optional[str] = None


@dataclass
class Conflict:
    match_a: str
    match_b: str
    team_ids: List[int]
    minutes_apart: float


def schedule_order(match: BracketMatch):
    return (
        match.round_number,
        BRANCH_ORDER.get(match.branch, 99),
        match.sequence,
        match.group_label or "",
        match.code,
    )


def _unscheduled(matches: Iterable[BracketMatch]) -> List[BracketMatch]:
    return sorted(
        (m for m in matches if m.scheduled_at is None and m.is_open and m.is_playable),
        key=schedule_order,
    )


# =============================================================================
# Fixed cadence
# =============================================================================

def plan_cadence(matches: Iterable[BracketMatch], config: CadenceConfig) -> SchedulePlan:
    config.validate()
    plan = SchedulePlan()
    day_start = config.start
    current = config.start
    today = 0
    for match in _unscheduled(matches):
        if today == config.max_per_day:
            day_start += timedelta(days=1)
            current = day_start
            today = 0
        plan.scheduled.append(ScheduledMatch(match.code, current))
        today += 1
        current += timedelta(minutes=config.gap_minutes)
    logger.info("Cadence plan: %d matches from %s", len(plan.scheduled), config.start.isoformat())
    return plan


# =============================================================================
# Availability intersection
# =============================================================================

def _localize(value: datetime, tz: Optional[TzInfo]) -> datetime:
    if tz is not None and value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value


def _slots_for(
    team_id: int,
    match_code: str,
    per_match: Dict[tuple, List[datetime]],
    team_wide: Dict[int, List[datetime]],
) -> Optional[List[datetime]]:
    if (team_id, match_code) in per_match:
        return per_match[(team_id, match_code)]
    return team_wide.get(team_id)


def _blocked(slot: datetime, taken: Sequence[datetime], gap: timedelta) -> bool:
    for other in taken:
        delta = abs(slot - other)
        if delta == timedelta(0) or delta < gap:
            return True
    return False


def plan_availability(
    matches: Iterable[BracketMatch],
    submissions: Iterable[AvailabilitySubmission],
    gap_minutes: int = MATCH_DURATION_MINUTES,
    tzinfo: Optional[TzInfo] = None,
) -> SchedulePlan:
    if isinstance(gap_minutes, bool) or not isinstance(gap_minutes, int) or gap_minutes < 0:
        raise InvalidScheduleConfigError(f"gap_minutes must be a non-negative integer, got {gap_minutes!r}")
    matches = list(matches)
    gap = timedelta(minutes=gap_minutes)

    per_match: Dict[tuple, List[datetime]] = {}
    team_wide: Dict[int, List[datetime]] = {}
    for sub in submissions:
        slots = [_localize(s, tzinfo) for s in sub.slots]
        if sub.match_code is None:
            team_wide.setdefault(sub.team_id, []).extend(slots)
        else:
            per_match.setdefault((sub.team_id, sub.match_code), []).extend(slots)

    occupied: Dict[int, List[datetime]] = {}
    for m in matches:
        if m.scheduled_at is not None:
            for team_id in m.team_ids:
                occupied.setdefault(team_id, []).append(_localize(m.scheduled_at, tzinfo))

    plan = SchedulePlan()
    for match in _unscheduled(matches):
        if not match.is_ready:
            continue
        slots_a = _slots_for(match.team_a_id, match.code, per_match, team_wide)
        slots_b = _slots_for(match.team_b_id, match.code, per_match, team_wide)
        if not slots_a and not slots_b:
            plan.unschedulable.append(Unschedulable(match.code, REASON_NO_SUBMISSIONS))
            continue
        if not slots_a or not slots_b:
            plan.unschedulable.append(Unschedulable(match.code, REASON_ONE_SIDE))
            continue

        common = sorted(set(slots_a) & set(slots_b))
        if not common:
            plan.unschedulable.append(Unschedulable(match.code, REASON_NO_OVERLAP))
            continue

        chosen = None
        for slot in common:
            if _blocked(slot, occupied.get(match.team_a_id, []), gap):
                continue
            if _blocked(slot, occupied.get(match.team_b_id, []), gap):
                continue
            chosen = slot
            break
        if chosen is None:
            plan.unschedulable.append(Unschedulable(match.code, REASON_ALL_BLOCKED))
            continue

        plan.scheduled.append(ScheduledMatch(match.code, chosen))
        occupied.setdefault(match.team_a_id, []).append(chosen)
        occupied.setdefault(match.team_b_id, []).append(chosen)

    for item in plan.unschedulable:
        logger.warning("Match %s unschedulable: %s", item.match_code, item.reason)
    return plan


# =============================================================================
# Conflicts
# =============================================================================

def detect_conflicts(
    matches: Iterable[BracketMatch],
    duration_minutes: int = MATCH_DURATION_MINUTES,
    label: Optional[Callable[[BracketMatch], str]] = None,
) -> List[Conflict]:
    """Every pair of matches sharing a team that start less than one duration apart."""
    label = label or (lambda m: m.code)
    window = timedelta(minutes=duration_minutes)
    timed = sorted(
        (m for m in matches if m.scheduled_at is not None and m.team_ids),
        key=lambda m: (m.scheduled_at, label(m)),
    )
    conflicts: List[Conflict] = []
    for i, first in enumerate(timed):
        for second in timed[i + 1:]:
            delta = second.scheduled_at - first.scheduled_at
            if delta >= window:
                break
            shared = sorted(set(first.team_ids) & set(second.team_ids))
            if shared:
                conflicts.append(Conflict(
                    match_a=label(first),
                    match_b=label(second),
                    team_ids=shared,
                    minutes_apart=delta.total_seconds() / 60,
                ))
    return conflicts


def apply_schedule(graph: BracketGraph, scheduled: Iterable[ScheduledMatch]) -> List[Conflict]:
    """Write planned times onto the graph and re-run conflict detection."""
    for item in scheduled:
        graph.get(item.match_code).scheduled_at = item.scheduled_at
    return detect_conflicts(graph)


def reschedule(graph: BracketGraph, code: str, when: Optional[datetime]) -> List[Conflict]:
    match = graph.get(code)
    if match.is_resolved:
        raise InvalidTransitionError(f"Match {code} is already {match.status}")
    match.scheduled_at = when
    logger.info("Match %s rescheduled to %s", code, when.isoformat() if when else None)
    return detect_conflicts(graph)
