"""
Standings - round-robin group ranking and advancement sets.

Standings are never stored as authoritative; they are recomputed from the
resolved matches of a group every time they are needed.

Ranking order:
  1. points (3 per win)
  2. head-to-head points among the teams tied on points
  3. game-score differential across all matches
  4. seed (unseeded last), then registration order, then team id
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Set

from app.services.bracket_graph import (
    BracketGraph,
    BracketMatch,
    StageConfig,
    TeamEntry,
    advancing_total,
    upper_quota,
)

logger = logging.getLogger(__name__)

POINTS_PER_WIN = 3

__all__ = [
    "POINTS_PER_WIN",
    "Standing",
    "AdvancingTeam",
    "Advancement",
    "compute_standings",
    "group_standings",
    "compute_advancement",
    "advancing_total",
]


@dataclass
class Standing:
    team_id: int
    group_label: Optional[str] = None
    seed: Optional[int] = None
    registration_order: int = 0
    played: int = 0
    wins: int = 0
    losses: int = 0
    score_for: int = 0
    score_against: int = 0
    points: int = 0
    head_to_head: int = 0
    rank: int = 0

    @property
    def differential(self) -> int:
        return self.score_for - self.score_against


@dataclass
class AdvancingTeam:
    team_id: int
    group_label: Optional[str]
    group_position: int
    points: int
    differential: int
    seed: Optional[int] = None
    suggested_seed: int = 0


@dataclass
class Advancement:
    upper: List[AdvancingTeam]
    lower: List[AdvancingTeam]
    eliminated: List[int]

    @property
    def upper_ids(self) -> List[int]:
        return [t.team_id for t in self.upper]

    @property
    def lower_ids(self) -> List[int]:
        return [t.team_id for t in self.lower]


def _counts(match: BracketMatch) -> bool:
    """Resolved matches with a recorded winner count; disputed and void ones do not."""
    return match.is_resolved and match.winner_id is not None and match.is_ready


def _seed_key(seed: Optional[int]):
    return (seed is None, seed or 0)


def compute_standings(
    group_matches: Iterable[BracketMatch],
    teams: Optional[Sequence[TeamEntry]] = None,
    group_label: Optional[str] = None,
) -> List[Standing]:
    matches = [m for m in group_matches if _counts(m)]

    rows: Dict[int, Standing] = {}
    for t in teams or []:
        rows[t.team_id] = Standing(
            team_id=t.team_id,
            group_label=group_label,
            seed=t.seed,
            registration_order=t.registration_order,
        )

    for m in matches:
        for team_id in m.team_ids:
            rows.setdefault(team_id, Standing(team_id=team_id, group_label=group_label))
        a, b = rows[m.team_a_id], rows[m.team_b_id]
        score_a, score_b = m.score_a or 0, m.score_b or 0
        for row, scored, conceded in ((a, score_a, score_b), (b, score_b, score_a)):
            row.played += 1
            row.score_for += scored
            row.score_against += conceded
        winner, loser = (a, b) if m.winner_id == m.team_a_id else (b, a)
        winner.wins += 1
        winner.points += POINTS_PER_WIN
        loser.losses += 1

    # Head-to-head restricted to each set of teams level on points
    by_points: Dict[int, Set[int]] = {}
    for row in rows.values():
        by_points.setdefault(row.points, set()).add(row.team_id)
    for tied in by_points.values():
        if len(tied) < 2:
            continue
        for m in matches:
            if m.team_a_id in tied and m.team_b_id in tied:
                rows[m.winner_id].head_to_head += POINTS_PER_WIN

    ranked = sorted(
        rows.values(),
        key=lambda r: (
            -r.points,
            -r.head_to_head,
            -r.differential,
            _seed_key(r.seed),
            r.registration_order,
            r.team_id,
        ),
    )
    for position, row in enumerate(ranked, start=1):
        row.rank = position
    return ranked


def group_standings(
    graph: BracketGraph, groups: Dict[str, Sequence[TeamEntry]]
) -> Dict[str, List[Standing]]:
    """Standings for every group of a round-robin stage graph."""
    matches_by_group = graph.groups()
    return {
        label: compute_standings(matches_by_group.get(label, []), members, group_label=label)
        for label, members in sorted(groups.items())
    }


def _advancing(row: Standing, position: Optional[int] = None) -> AdvancingTeam:
    return AdvancingTeam(
        team_id=row.team_id,
        group_label=row.group_label,
        group_position=position or row.rank,
        points=row.points,
        differential=row.differential,
        seed=row.seed,
    )


def _assign_suggested_seeds(bucket: List[AdvancingTeam]) -> List[AdvancingTeam]:
    """Cross-group seeds: group winners first, then runners-up, ..."""
    bucket.sort(key=lambda t: (
        t.group_position, -t.points, -t.differential, _seed_key(t.seed), t.team_id,
    ))
    for i, team in enumerate(bucket, start=1):
        team.suggested_seed = i
    return bucket


def compute_advancement(
    groups_of_standings: Dict[str, List[Standing]],
    config: StageConfig,
    withdrawn: Iterable[int] = (),
) -> Advancement:
    """
    Split ranked groups into upper advancers, lower advancers and eliminated.

    Groups holding base+1 teams (base = total // groups) use the enlarged
    upper quota from upper_quota(). Best-remaining places go to the top
    non-advancing teams across all groups by points, then differential, then
    seed; they join the lower bracket when the stage has one.

    Withdrawn teams never advance. Quotas still follow the drawn group
    sizes, so the next-ranked team in the group takes the vacated place.
    """
    withdrawn = set(withdrawn)
    group_count = len(groups_of_standings)
    if group_count == 0:
        return Advancement(upper=[], lower=[], eliminated=[])
    total = sum(len(rows) for rows in groups_of_standings.values())
    base = total // group_count

    upper: List[AdvancingTeam] = []
    lower: List[AdvancingTeam] = []
    remaining: List[tuple] = []
    dropped: List[int] = []
    for label in sorted(groups_of_standings):
        rows = groups_of_standings[label]
        quota = upper_quota(config, len(rows), base)
        lower_end = quota + config.advance_lower_per_group
        dropped.extend(r.team_id for r in rows if r.team_id in withdrawn)
        present = [r for r in rows if r.team_id not in withdrawn]
        for position, row in enumerate(present, start=1):
            if position <= quota:
                upper.append(_advancing(row, position))
            elif position <= lower_end:
                lower.append(_advancing(row, position))
            else:
                remaining.append((row, position))

    remaining.sort(key=lambda item: (
        -item[0].points, -item[0].differential, _seed_key(item[0].seed), item[0].registration_order, item[0].team_id,
    ))
    best = [_advancing(r, position) for r, position in remaining[:config.advance_best_remaining]]
    if config.has_lower_path:
        lower.extend(best)
    else:
        upper.extend(best)

    eliminated = [r.team_id for r, _ in remaining[config.advance_best_remaining:]] + dropped
    logger.debug(
        "Advancement: %d upper, %d lower, %d eliminated (base group size %d)",
        len(upper), len(lower), len(eliminated), base,
    )
    return Advancement(
        upper=_assign_suggested_seeds(upper),
        lower=_assign_suggested_seeds(lower),
        eliminated=eliminated,
    )
