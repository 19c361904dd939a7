"""
Draw Engine — seeded group draws with an auditable reveal sequence.

Unconstrained: shuffle the whole field, deal round-robin across groups.
Pot-constrained: shuffle each pot independently, deal pot by pot so no group
receives two teams from the same pot. A pot smaller than the group count
leaves the trailing groups without a team from that pot.

The seed is the only source of variation; replaying a draw with its recorded
seed and the same inputs reproduces the exact same sequence.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from app.services.bracket_builder import order_entrants
from app.services.bracket_graph import MAX_GROUPS, TeamEntry, group_label
from app.services.errors import InvalidStageConfigError
from app.services.random_source import RandomSource

logger = logging.getLogger(__name__)

DRAW_MODE_RANDOM = "random"
DRAW_MODE_POTS = "pots"
DRAW_MODE_SNAKE = "snake"


@dataclass(frozen=True)
class DrawAssignment:
    order: int
    team_id: int
    group_label: str
    pot: Optional[int] = None


@dataclass
class DrawResult:
    seed: Optional[str]
    group_labels: List[str]
    assignments: List[DrawAssignment] = field(default_factory=list)
    mode: str = DRAW_MODE_RANDOM

    def team_groups(self) -> Dict[int, str]:
        return {a.team_id: a.group_label for a in self.assignments}

    def members(self) -> Dict[str, List[int]]:
        grouped: Dict[str, List[int]] = {label: [] for label in self.group_labels}
        for a in self.assignments:
            grouped[a.group_label].append(a.team_id)
        return grouped


def _validate_draw_inputs(teams: Sequence[TeamEntry], group_count) -> List[str]:
    if isinstance(group_count, bool) or not isinstance(group_count, int):
        raise InvalidStageConfigError(f"group_count must be an integer, got {group_count!r}")
    if group_count < 1 or group_count > MAX_GROUPS:
        raise InvalidStageConfigError(f"group_count must be between 1 and {MAX_GROUPS}, got {group_count}")
    if group_count > len(teams):
        raise InvalidStageConfigError(f"Cannot draw {len(teams)} teams into {group_count} groups")
    ids = [t.team_id for t in teams]
    if len(set(ids)) != len(ids):
        raise InvalidStageConfigError("Duplicate team in draw")
    return [group_label(i) for i in range(group_count)]


def pots_from_teams(teams: Sequence[TeamEntry]) -> Dict[int, int]:
    """team_id -> pot using the pot recorded on each entry."""
    return {t.team_id: t.pot for t in teams if t.pot is not None}


def _split_pots(
    teams: Sequence[TeamEntry], pots: Mapping[int, Optional[int]], group_count: int
) -> Tuple[Dict[int, List[TeamEntry]], List[TeamEntry]]:
    """Pot number -> members, plus the overflow teams that were given no pot."""
    by_pot: Dict[int, List[TeamEntry]] = {}
    overflow: List[TeamEntry] = []
    for t in teams:
        pot = pots.get(t.team_id)
        if pot is None:
            overflow.append(t)
            continue
        if isinstance(pot, bool) or not isinstance(pot, int) or pot < 1:
            raise InvalidStageConfigError(f"Pot for team {t.team_id} must be a positive integer, got {pot!r}")
        by_pot.setdefault(pot, []).append(t)
    for pot, members in by_pot.items():
        if len(members) > group_count:
            raise InvalidStageConfigError(
                f"Pot {pot} has {len(members)} teams but only {group_count} groups"
            )
    return dict(sorted(by_pot.items())), overflow


def run_draw(
    teams: Sequence[TeamEntry],
    group_count: int,
    seed: Optional[str] = None,
    pots: Optional[Mapping[int, int]] = None,
) -> DrawResult:
    labels = _validate_draw_inputs(teams, group_count)
    source = RandomSource(seed)
    assignments: List[DrawAssignment] = []

    if pots is None:
        for i, team in enumerate(source.shuffle(teams)):
            assignments.append(DrawAssignment(
                order=i + 1, team_id=team.team_id, group_label=labels[i % group_count],
            ))
        mode = DRAW_MODE_RANDOM
    else:
        by_pot, overflow = _split_pots(teams, pots, group_count)
        sizes = [0] * group_count
        for pot, members in by_pot.items():
            for j, team in enumerate(source.shuffle(members)):
                sizes[j] += 1
                assignments.append(DrawAssignment(
                    order=len(assignments) + 1, team_id=team.team_id,
                    group_label=labels[j], pot=pot,
                ))
        # Overflow teams go to random groups among the smallest after the pots
        for team in source.shuffle(overflow):
            smallest = min(sizes)
            j = source.choice([i for i, size in enumerate(sizes) if size == smallest])
            sizes[j] += 1
            assignments.append(DrawAssignment(
                order=len(assignments) + 1, team_id=team.team_id, group_label=labels[j],
            ))
        mode = DRAW_MODE_POTS

    logger.info("Draw %s: %d teams into %d groups (seed %s)", mode, len(teams), group_count, source.seed)
    return DrawResult(seed=source.seed, group_labels=labels, assignments=assignments, mode=mode)


def replay_draw(
    result: DrawResult, teams: Sequence[TeamEntry], pots: Optional[Mapping[int, int]] = None
) -> DrawResult:
    if result.seed is None:
        raise InvalidStageConfigError("Draw has no recorded seed to replay")
    return run_draw(teams, len(result.group_labels), seed=result.seed, pots=pots)


def verify_draw(
    result: DrawResult, teams: Sequence[TeamEntry], pots: Optional[Mapping[int, int]] = None
) -> bool:
    """True when replaying the recorded seed reproduces the identical reveal sequence."""
    replayed = replay_draw(result, teams, pots)
    return replayed.assignments == result.assignments


def snake_draft(ordered_teams: Sequence[TeamEntry], group_count: int) -> DrawResult:
    """Balanced serpentine distribution: A..Z then Z..A by seed, no randomness."""
    labels = _validate_draw_inputs(ordered_teams, group_count)
    assignments = []
    for i, team in enumerate(ordered_teams):
        row, col = divmod(i, group_count)
        idx = col if row % 2 == 0 else group_count - 1 - col
        assignments.append(DrawAssignment(order=i + 1, team_id=team.team_id, group_label=labels[idx]))
    return DrawResult(seed=None, group_labels=labels, assignments=assignments, mode=DRAW_MODE_SNAKE)


def groups_from_assignments(
    assignments: Sequence[DrawAssignment],
    teams: Sequence[TeamEntry],
    group_labels: Optional[Sequence[str]] = None,
) -> Dict[str, List[TeamEntry]]:
    """label -> members in seed order, ready for the round-robin builder."""
    by_id = {t.team_id: t for t in teams}
    groups: Dict[str, List[TeamEntry]] = {label: [] for label in group_labels or []}
    for a in assignments:
        team = by_id.get(a.team_id)
        if team is None:
            raise InvalidStageConfigError(f"Drawn team {a.team_id} is not an entrant")
        groups.setdefault(a.group_label, []).append(team)
    return {label: order_entrants(members) for label, members in sorted(groups.items())}
