"""
Graph store - moves stage graphs between Match rows and the engine.

The engine never touches the database. Routes load a stage's BracketGraph,
run one transition under the tournament lock, then save the graph back.
Rows are keyed by (stage_id, match_code); codes that disappear from the graph
(an unplayed bracket reset removed by a correction) are deleted.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from sqlmodel import Session, select

from app.models.match import Match
from app.models.match_correction import MatchCorrection
from app.models.stage import Stage
from app.models.stage_group_team import SIDE_LOWER, SIDE_UPPER, StageGroupTeam
from app.models.team import TEAM_STATUS_WITHDRAWN, Team
from app.services.bracket_graph import (
    FORMAT_DOUBLE_ELIMINATION,
    SLOT_A,
    SLOT_B,
    STATUS_ONGOING,
    BracketGraph,
    BracketMatch,
    SlotRef,
    SlotSource,
    StageConfig,
    TeamEntry,
)

logger = logging.getLogger(__name__)


def stage_config(stage: Stage) -> StageConfig:
    return StageConfig(
        format=stage.format,
        best_of=stage.best_of,
        final_best_of=stage.final_best_of,
        group_count=stage.group_count,
        advance_upper_per_group=stage.advance_upper_per_group,
        advance_lower_per_group=stage.advance_lower_per_group,
        advance_best_remaining=stage.advance_best_remaining,
        index=stage.stage_index,
        name=stage.name,
    )


def tournament_stages(session: Session, tournament_id: int) -> List[Stage]:
    return session.exec(
        select(Stage).where(Stage.tournament_id == tournament_id).order_by(Stage.stage_index)
    ).all()


def team_entries(
    session: Session, tournament_id: int, include_withdrawn: bool = False
) -> List[TeamEntry]:
    """Entrants in registration order; registration_order is 1-based."""
    teams = session.exec(
        select(Team)
        .where(Team.tournament_id == tournament_id)
        .order_by(Team.registration_timestamp, Team.id)
    ).all()
    entries = []
    for position, team in enumerate(teams, start=1):
        if team.status == TEAM_STATUS_WITHDRAWN and not include_withdrawn:
            continue
        entries.append(TeamEntry(
            team_id=team.id,
            name=team.name,
            seed=team.seed,
            registration_order=position,
            pot=team.pot,
        ))
    return entries


def withdrawn_team_ids(session: Session, tournament_id: int) -> set:
    return set(session.exec(
        select(Team.id).where(Team.tournament_id == tournament_id, Team.status == TEAM_STATUS_WITHDRAWN)
    ).all())


def stage_entrants(
    session: Session, stage: Stage
) -> Tuple[Dict[str, List[TeamEntry]], List[TeamEntry], List[TeamEntry]]:
    """
    (groups, upper, lower) for a stage. Groups are filled for drawn round-robin
    stages; upper/lower hold advancers entered into an elimination stage, with
    their stage seed.
    """
    entries = {e.team_id: e for e in team_entries(session, stage.tournament_id, include_withdrawn=True)}
    rows = session.exec(
        select(StageGroupTeam)
        .where(StageGroupTeam.stage_id == stage.id)
        .order_by(StageGroupTeam.draw_order, StageGroupTeam.stage_seed, StageGroupTeam.id)
    ).all()

    groups: Dict[str, List[TeamEntry]] = {}
    upper: List[TeamEntry] = []
    lower: List[TeamEntry] = []
    for row in rows:
        base = entries.get(row.team_id)
        if base is None:
            continue
        entry = TeamEntry(
            team_id=base.team_id,
            name=base.name,
            seed=row.stage_seed if row.stage_seed is not None else base.seed,
            registration_order=base.registration_order,
            pot=row.pot if row.pot is not None else base.pot,
        )
        if row.group_label is not None:
            groups.setdefault(row.group_label, []).append(entry)
        elif row.bracket_side == SIDE_LOWER:
            lower.append(entry)
        else:
            upper.append(entry)
    return groups, upper, lower


# =============================================================================
# Row <-> engine conversion
# =============================================================================

def _ref(code: Optional[str], slot: Optional[str]) -> Optional[SlotRef]:
    return SlotRef(code, slot) if code and slot else None


def _source(code: Optional[str], role: Optional[str]) -> Optional[SlotSource]:
    return SlotSource(code, role) if code and role else None


def row_to_match(row: Match) -> BracketMatch:
    return BracketMatch(
        code=row.match_code,
        branch=row.branch,
        round_number=row.round_number,
        sequence=row.sequence_in_round,
        best_of=row.best_of,
        group_label=row.group_label,
        team_a_id=row.team_a_id,
        team_b_id=row.team_b_id,
        bye_a=row.bye_a,
        bye_b=row.bye_b,
        source_a=_source(row.source_a_code, row.source_a_role),
        source_b=_source(row.source_b_code, row.source_b_role),
        winner_to=_ref(row.winner_to_code, row.winner_to_slot),
        loser_to=_ref(row.loser_to_code, row.loser_to_slot),
        is_final=row.is_final,
        loser_placement=row.loser_placement,
        status=row.status,
        score_a=row.score_a,
        score_b=row.score_b,
        winner_id=row.winner_team_id,
        is_forfeit=row.is_forfeit,
        is_walkover=row.is_walkover,
        scheduled_at=row.scheduled_at,
        dispute_reason=row.dispute_reason,
    )


def _copy_to_row(match: BracketMatch, row: Match) -> None:
    row.branch = match.branch
    row.round_number = match.round_number
    row.sequence_in_round = match.sequence
    row.best_of = match.best_of
    row.group_label = match.group_label
    row.team_a_id = match.team_a_id
    row.team_b_id = match.team_b_id
    row.bye_a = match.bye_a
    row.bye_b = match.bye_b
    row.placeholder_side_a = match.placeholder(SLOT_A)
    row.placeholder_side_b = match.placeholder(SLOT_B)
    row.source_a_code = match.source_a.match_code if match.source_a else None
    row.source_a_role = match.source_a.role if match.source_a else None
    row.source_b_code = match.source_b.match_code if match.source_b else None
    row.source_b_role = match.source_b.role if match.source_b else None
    row.winner_to_code = match.winner_to.match_code if match.winner_to else None
    row.winner_to_slot = match.winner_to.slot if match.winner_to else None
    row.loser_to_code = match.loser_to.match_code if match.loser_to else None
    row.loser_to_slot = match.loser_to.slot if match.loser_to else None
    row.is_final = match.is_final
    row.loser_placement = match.loser_placement
    row.score_a = match.score_a
    row.score_b = match.score_b
    row.winner_team_id = match.winner_id
    row.is_forfeit = match.is_forfeit
    row.is_walkover = match.is_walkover
    row.dispute_reason = match.dispute_reason
    row.scheduled_at = match.scheduled_at

    now = datetime.utcnow()
    if match.status == STATUS_ONGOING and row.started_at is None:
        row.started_at = now
    if match.is_resolved and row.completed_at is None:
        row.completed_at = now
    row.status = match.status


def load_stage_graph(session: Session, stage: Stage) -> BracketGraph:
    graph = BracketGraph(
        stage.format,
        stage_index=stage.stage_index,
        allow_reset=stage.format == FORMAT_DOUBLE_ELIMINATION,
    )
    graph.lb_initial_rounds = stage.lb_initial_rounds
    graph.withdrawn_team_ids = withdrawn_team_ids(session, stage.tournament_id)
    rows = session.exec(select(Match).where(Match.stage_id == stage.id).order_by(Match.id)).all()
    for row in rows:
        graph.add(row_to_match(row))
    return graph


def stage_match_rows(session: Session, stage: Stage) -> Dict[str, Match]:
    rows = session.exec(select(Match).where(Match.stage_id == stage.id).order_by(Match.id)).all()
    return {row.match_code: row for row in rows}


def save_stage_graph(session: Session, stage: Stage, graph: BracketGraph) -> Dict[str, Match]:
    """Upsert every match of the graph and log pending corrections. Caller commits."""
    existing = stage_match_rows(session, stage)
    saved: Dict[str, Match] = {}
    for match in graph:
        row = existing.pop(match.code, None)
        if row is None:
            row = Match(
                tournament_id=stage.tournament_id,
                stage_id=stage.id,
                match_code=match.code,
                branch=match.branch,
                round_number=match.round_number,
                sequence_in_round=match.sequence,
            )
        _copy_to_row(match, row)
        session.add(row)
        saved[match.code] = row

    for code, row in existing.items():
        logger.info("Deleting match %s from stage %s", code, stage.id)
        session.delete(row)

    stage.lb_initial_rounds = graph.lb_initial_rounds
    session.add(stage)
    session.flush()

    for correction in graph.corrections:
        row = saved.get(correction.match_code)
        if row is None:
            continue
        session.add(MatchCorrection(
            match_id=row.id,
            previous_winner_id=correction.previous_winner_id,
            new_winner_id=correction.new_winner_id,
            previous_score_a=correction.previous_score[0],
            previous_score_b=correction.previous_score[1],
            new_score_a=correction.new_score[0],
            new_score_b=correction.new_score[1],
            notes=correction.notes,
            resolved_by=correction.resolved_by,
            created_at=correction.recorded_at,
        ))
    graph.corrections = []
    return saved


def entrant_rows(stage: Stage, upper: Sequence[TeamEntry], lower: Sequence[TeamEntry]) -> List[StageGroupTeam]:
    """Membership rows for the advancers of an elimination stage."""
    rows = [
        StageGroupTeam(stage_id=stage.id, team_id=t.team_id, bracket_side=SIDE_UPPER, stage_seed=t.seed)
        for t in upper
    ]
    rows.extend(
        StageGroupTeam(stage_id=stage.id, team_id=t.team_id, bracket_side=SIDE_LOWER, stage_seed=t.seed)
        for t in lower
    )
    return rows
