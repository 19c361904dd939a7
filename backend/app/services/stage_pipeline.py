"""
Stage pipeline - builds a stage's bracket and hands a finished group stage's
advancers to the next stage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from app.services.bracket_builder import build_bracket, order_entrants
from app.services.bracket_graph import (
    FORMAT_DOUBLE_ELIMINATION,
    BracketGraph,
    StageConfig,
    TeamEntry,
)
from app.services.errors import InvalidStageConfigError, InvalidTransitionError
from app.services.standings import Advancement, AdvancingTeam, Standing, compute_advancement, group_standings

logger = logging.getLogger(__name__)


@dataclass
class StageAdvance:
    advancement: Advancement
    standings: Dict[str, List[Standing]]
    upper: List[TeamEntry] = field(default_factory=list)
    lower: List[TeamEntry] = field(default_factory=list)
    next_graph: Optional[BracketGraph] = None


def build_stage(
    config: StageConfig,
    teams: Sequence[TeamEntry],
    groups: Optional[Dict[str, Sequence[TeamEntry]]] = None,
    lower_teams: Optional[Sequence[TeamEntry]] = None,
) -> BracketGraph:
    ordered = order_entrants(teams)
    if config.is_round_robin and groups is None and config.effective_group_count > 1:
        raise InvalidStageConfigError(
            f"Stage {config.index} has {config.group_count} groups; run the draw before building"
        )
    lower = order_entrants(lower_teams) if lower_teams else None
    return build_bracket(config.format, ordered, config, groups=groups, lower_teams=lower)


def _entries(advancing: Sequence[AdvancingTeam], by_id: Dict[int, TeamEntry]) -> List[TeamEntry]:
    entries = []
    for a in advancing:
        original = by_id.get(a.team_id)
        entries.append(TeamEntry(
            team_id=a.team_id,
            name=original.name if original else "",
            seed=a.suggested_seed,
            registration_order=original.registration_order if original else 0,
        ))
    return entries


def advance_stage(
    graph: BracketGraph,
    config: StageConfig,
    next_config: StageConfig,
    teams: Sequence[TeamEntry],
    groups: Dict[str, Sequence[TeamEntry]],
    withdrawn: Iterable[int] = (),
) -> StageAdvance:
    """
    Compute advancement from a completed round-robin stage.

    An elimination next stage is built immediately, as seeded double
    elimination when at least two lower-bracket advancers exist. A
    round-robin next stage needs a fresh draw, so only the advancers are
    returned. Withdrawn teams are left out and their places pass down the
    group standings.
    """
    if not config.is_round_robin:
        raise InvalidStageConfigError(
            f"Stage {config.index} is {config.format}; only round-robin stages feed a subsequent stage"
        )
    if not graph.is_complete():
        raise InvalidTransitionError(f"Stage {config.index} is not complete")
    if config.has_lower_path and next_config.format != FORMAT_DOUBLE_ELIMINATION:
        raise InvalidStageConfigError(
            f"Stage {config.index}: lower-bracket advancement requires a double elimination next stage"
        )

    standings = group_standings(graph, groups)
    advancement = compute_advancement(standings, config, withdrawn)
    by_id = {t.team_id: t for t in teams}
    upper = _entries(advancement.upper, by_id)
    lower = _entries(advancement.lower, by_id)
    result = StageAdvance(advancement=advancement, standings=standings, upper=upper, lower=lower)

    if next_config.is_round_robin:
        logger.info("Stage %s complete: %d teams advance to a new draw", config.index, len(result.upper))
        return result

    if len(lower) == 1:
        # A lone lower advancer cannot seed a losers bracket; it becomes the lowest winners-bracket seed
        start = len(upper)
        lower = [
            TeamEntry(t.team_id, t.name, seed=start + i + 1, registration_order=t.registration_order)
            for i, t in enumerate(lower)
        ]
        upper, lower = upper + lower, []

    result.upper, result.lower = upper, lower
    result.next_graph = build_stage(next_config, upper, lower_teams=lower or None)
    logger.info(
        "Stage %s complete: %d upper / %d lower advancers into stage %s",
        config.index, len(upper), len(lower), next_config.index,
    )
    return result
