"""
Bracket Builder — turns an ordered entrant list into a linked match graph.

Formats:
  single_elimination   power-of-two padding, standard seed pairing, byes to top seeds
  double_elimination   winners bracket + interleaved losers bracket + grand final
                       (seeded variant when lower-bracket advancers are supplied)
  round_robin          circle-method pairings per group

The builder works on a private graph and only returns it once every forward
link resolves, so callers never see a half-built bracket.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from app.services.bracket_graph import (
    BRANCH_GRAND_FINAL,
    BRANCH_GROUP,
    BRANCH_LOSERS,
    BRANCH_SEMI_FINAL,
    BRANCH_WINNERS,
    FORMAT_DOUBLE_ELIMINATION,
    FORMAT_ROUND_ROBIN,
    FORMAT_SINGLE_ELIMINATION,
    ROLE_LOSER,
    ROLE_WINNER,
    SLOT_A,
    SLOT_B,
    BracketGraph,
    BracketMatch,
    SlotRef,
    SlotSource,
    StageConfig,
    TeamEntry,
)
from app.services.errors import (
    InsufficientEntrantsError,
    InvalidStageConfigError,
    UnresolvedSlotError,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Seeding helpers
# =============================================================================

def order_entrants(teams: Sequence[TeamEntry]) -> List[TeamEntry]:
    """Seeded teams first by seed, then unseeded; ties by registration order, team id."""
    return sorted(
        teams,
        key=lambda t: (t.seed is None, t.seed or 0, t.registration_order, t.team_id),
    )


def next_power_of_two(n: int) -> int:
    if n <= 1:
        return 1
    return 1 << (n - 1).bit_length()


def log2_exact(n: int) -> int:
    return n.bit_length() - 1


def standard_seed_order(size: int) -> List[int]:
    """Bracket positions for a power-of-two field.

    Consecutive pairs are first-round matchups; seed k meets seed size+1-k,
    and the top two seeds sit in opposite halves:
      4 -> [1, 4, 2, 3]
      8 -> [1, 8, 4, 5, 2, 7, 3, 6]
    """
    if size < 1 or size & (size - 1):
        raise ValueError(f"size must be a power of two, got {size}")
    order = [1]
    while len(order) < size:
        n = len(order) * 2
        order = [s for seed in order for s in (seed, n + 1 - seed)]
    return order


def lb_initial_rounds(upper_count: int, lower_count: int) -> int:
    """Pure losers-bracket rounds played before the first winners-bracket drop-in."""
    if lower_count <= 0:
        return 0
    upper_size = next_power_of_two(upper_count)
    lower_size = max(next_power_of_two(lower_count), upper_size)
    return max(1, log2_exact(lower_size) - log2_exact(upper_size) + 1)


def _check_unique(teams: Sequence[TeamEntry]) -> None:
    seen = set()
    for t in teams:
        if t.team_id in seen:
            raise InvalidStageConfigError(f"Team {t.team_id} appears more than once")
        seen.add(t.team_id)


# =============================================================================
# Graph construction primitives
# =============================================================================

def _link(source: BracketMatch, role: str, dest: BracketMatch, slot: str) -> None:
    ref = SlotRef(dest.code, slot)
    if role == ROLE_WINNER:
        source.winner_to = ref
    else:
        source.loser_to = ref
    mirror = SlotSource(source.code, role)
    if slot == SLOT_A:
        dest.source_a = mirror
    else:
        dest.source_b = mirror


def _add_round(
    graph: BracketGraph, prefix: str, branch: str, round_number: int, count: int, best_of: int
) -> List[BracketMatch]:
    return [
        graph.add(BracketMatch(
            code=f"{prefix}-R{round_number}-M{m}",
            branch=branch,
            round_number=round_number,
            sequence=m,
            best_of=best_of,
        ))
        for m in range(1, count + 1)
    ]


def _seed_first_round(matches: List[BracketMatch], ordered: Sequence[TeamEntry], size: int) -> None:
    """Place entrants by standard seed order; positions beyond the field are byes."""
    positions = standard_seed_order(size)
    for idx, match in enumerate(matches):
        for slot, seed in ((SLOT_A, positions[2 * idx]), (SLOT_B, positions[2 * idx + 1])):
            if seed <= len(ordered):
                match.set_slot(slot, ordered[seed - 1].team_id)
            else:
                match.mark_bye(slot)


def _build_winners_bracket(
    graph: BracketGraph, ordered: Sequence[TeamEntry], config: StageConfig, standalone_final: bool
) -> List[List[BracketMatch]]:
    """Winners bracket rounds; in single elimination the last round is the final."""
    size = next_power_of_two(len(ordered))
    rounds = log2_exact(size)
    bracket: List[List[BracketMatch]] = []
    for r in range(1, rounds + 1):
        is_last = r == rounds
        best_of = config.finals_best_of if (is_last and standalone_final) else config.best_of
        bracket.append(_add_round(graph, "WB", BRANCH_WINNERS, r, size >> r, best_of))

    _seed_first_round(bracket[0], ordered, size)
    for r in range(rounds - 1):
        for m, match in enumerate(bracket[r]):
            _link(match, ROLE_WINNER, bracket[r + 1][m // 2], SLOT_A if m % 2 == 0 else SLOT_B)

    if standalone_final:
        bracket[-1][0].is_final = True
    return bracket


def _collapse_byes(graph: BracketGraph) -> None:
    """
    Resolve byes at construction time, in creation order (feeders first):
      bye + team  -> match removed, team written to the winner destination
      bye + bye   -> match removed, destinations become byes
      bye + TBD   -> kept as a non-playable walkover record
    """
    for match in graph:
        if match.code not in graph or not match.has_bye:
            continue
        if match.bye_a and match.bye_b:
            graph.remove(match.code)
            for ref in (match.winner_to, match.loser_to):
                if ref is not None:
                    dest = graph.resolve_link(ref)
                    dest.mark_bye(ref.slot)
                    _clear_source(dest, ref.slot)
            logger.debug("Removed double-bye match %s", match.code)
            continue

        present = match.team_a_id if match.bye_b else match.team_b_id
        if present is None:
            match.is_walkover = True
            continue

        graph.remove(match.code)
        if match.winner_to is not None:
            dest = graph.resolve_link(match.winner_to)
            dest.set_slot(match.winner_to.slot, present)
            _clear_source(dest, match.winner_to.slot)
        if match.loser_to is not None:
            dest = graph.resolve_link(match.loser_to)
            dest.mark_bye(match.loser_to.slot)
            _clear_source(dest, match.loser_to.slot)
        logger.debug("Bye advanced team %s past %s", present, match.code)


def _clear_source(match: BracketMatch, slot: str) -> None:
    if slot == SLOT_A:
        match.source_a = None
    else:
        match.source_b = None


def _verify_links(graph: BracketGraph) -> None:
    """Every forward link must resolve and every non-final match must feed forward."""
    for match in graph:
        for ref in (match.winner_to, match.loser_to):
            if ref is not None:
                graph.resolve_link(ref)
        if graph.format != FORMAT_ROUND_ROBIN and not match.is_final and match.winner_to is None:
            raise UnresolvedSlotError(f"Match {match.code} has no winner destination")


# =============================================================================
# Formats
# =============================================================================

def build_single_elimination(ordered: Sequence[TeamEntry], config: StageConfig) -> BracketGraph:
    graph = BracketGraph(FORMAT_SINGLE_ELIMINATION, stage_index=config.index)
    _build_winners_bracket(graph, ordered, config, standalone_final=True)
    _collapse_byes(graph)
    _verify_links(graph)
    return graph


def _drop_target(matches: List[BracketMatch], m: int, reverse: bool) -> BracketMatch:
    return matches[len(matches) - 1 - m] if reverse else matches[m]


def _add_grand_final(graph: BracketGraph, round_number: int, config: StageConfig) -> BracketMatch:
    return graph.add(BracketMatch(
        code="GF-1",
        branch=BRANCH_GRAND_FINAL,
        round_number=round_number,
        sequence=1,
        best_of=config.finals_best_of,
        is_final=True,
    ))


def build_double_elimination(ordered: Sequence[TeamEntry], config: StageConfig) -> BracketGraph:
    """
    Standard double elimination.

    Losers bracket for a field of P (R winners rounds) has 2(R-1) rounds:
      LB R1            losers of WB R1, paired 2:1
      LB R2k           LB R(2k-1) winners (slot a) vs losers of WB R(k+1) (slot b)
      LB R2k+1         LB R2k winners paired 2:1
    Drop-in order is reversed on alternating drop rounds, first one reversed.
    """
    graph = BracketGraph(FORMAT_DOUBLE_ELIMINATION, stage_index=config.index, allow_reset=True)
    wb = _build_winners_bracket(graph, ordered, config, standalone_final=False)
    size = next_power_of_two(len(ordered))
    rounds = log2_exact(size)
    lb_rounds = 2 * (rounds - 1)

    lb: List[List[BracketMatch]] = []
    for r in range(1, lb_rounds + 1):
        if r == 1:
            count = size // 4
        elif r % 2 == 0:
            count = size >> (r // 2 + 1)
        else:
            count = size >> ((r - 1) // 2 + 2)
        lb.append(_add_round(graph, "LB", BRANCH_LOSERS, r, count, config.best_of))

    gf = _add_grand_final(graph, max(rounds, lb_rounds) + 1, config)
    _link(wb[-1][0], ROLE_WINNER, gf, SLOT_A)

    if lb_rounds == 0:
        _link(wb[-1][0], ROLE_LOSER, gf, SLOT_B)
    else:
        for m, match in enumerate(wb[0]):
            _link(match, ROLE_LOSER, lb[0][m // 2], SLOT_A if m % 2 == 0 else SLOT_B)
        for r in range(2, lb_rounds + 1):
            current = lb[r - 1]
            previous = lb[r - 2]
            if r % 2 == 0:
                drop = r // 2
                for m, match in enumerate(previous):
                    _link(match, ROLE_WINNER, current[m], SLOT_A)
                for m, match in enumerate(wb[drop]):
                    _link(match, ROLE_LOSER, _drop_target(current, m, reverse=drop % 2 == 1), SLOT_B)
            else:
                for m, match in enumerate(previous):
                    _link(match, ROLE_WINNER, current[m // 2], SLOT_A if m % 2 == 0 else SLOT_B)
        lb_final = lb[-1][0]
        lb_final.loser_placement = 3
        _link(lb_final, ROLE_WINNER, gf, SLOT_B)

    _collapse_byes(graph)
    _verify_links(graph)
    return graph


def build_seeded_double_elimination(
    upper: Sequence[TeamEntry], lower: Sequence[TeamEntry], config: StageConfig
) -> BracketGraph:
    """
    Double elimination fed by a group stage.

    Upper advancers seed the winners bracket; lower advancers seed the first
    k losers-bracket rounds directly. Winners round w losers drop into losers
    round k + 2w - 1. The winners-bracket final loser meets the losers-bracket
    champion in a semifinal (slot a / slot b); the semifinal winner meets the
    winners-bracket champion in the grand final and the semifinal loser
    finishes 3rd.
    """
    if len(upper) < 2:
        raise InsufficientEntrantsError("Need at least 2 upper-bracket teams")
    if not lower:
        return build_double_elimination(upper, config)
    if len(lower) < 2:
        raise InsufficientEntrantsError("Need at least 2 lower-bracket teams")

    graph = BracketGraph(FORMAT_DOUBLE_ELIMINATION, stage_index=config.index, allow_reset=True)
    wb = _build_winners_bracket(graph, upper, config, standalone_final=False)
    upper_size = next_power_of_two(len(upper))
    upper_rounds = log2_exact(upper_size)
    k = lb_initial_rounds(len(upper), len(lower))
    lower_size = upper_size << (k - 1)
    lb_rounds = k + 2 * (upper_rounds - 1)
    graph.lb_initial_rounds = k

    lb: List[List[BracketMatch]] = []
    for r in range(1, lb_rounds + 1):
        if r <= k:
            count = lower_size >> r
        else:
            # drop-in and consolidation rounds share sizes pairwise
            w = (r - k + 1) // 2
            count = upper_size >> (w if (r - k) % 2 == 1 else w + 1)
        lb.append(_add_round(graph, "LB", BRANCH_LOSERS, r, count, config.best_of))

    _seed_first_round(lb[0], lower, lower_size)
    for r in range(2, lb_rounds + 1):
        current = lb[r - 1]
        previous = lb[r - 2]
        is_drop_round = r > k and (r - k) % 2 == 1
        if is_drop_round:
            w = (r - k + 1) // 2
            for m, match in enumerate(previous):
                _link(match, ROLE_WINNER, current[m], SLOT_A)
            for m, match in enumerate(wb[w - 1]):
                _link(match, ROLE_LOSER, _drop_target(current, m, reverse=w % 2 == 1), SLOT_B)
        else:
            for m, match in enumerate(previous):
                _link(match, ROLE_WINNER, current[m // 2], SLOT_A if m % 2 == 0 else SLOT_B)

    sf_round = max(upper_rounds, lb_rounds) + 1
    sf = graph.add(BracketMatch(
        code="SF-1",
        branch=BRANCH_SEMI_FINAL,
        round_number=sf_round,
        sequence=1,
        best_of=config.finals_best_of,
        loser_placement=3,
    ))
    gf = _add_grand_final(graph, sf_round + 1, config)

    wb_final = wb[-1][0]
    _link(wb_final, ROLE_WINNER, gf, SLOT_A)
    _link(wb_final, ROLE_LOSER, sf, SLOT_A)
    _link(lb[-1][0], ROLE_WINNER, sf, SLOT_B)
    _link(sf, ROLE_WINNER, gf, SLOT_B)

    _collapse_byes(graph)
    _verify_links(graph)
    return graph


# Four-team groups play the strongest pairing last.
_FOUR_TEAM_SCHEDULE = [
    (1, 1, 0, 3), (1, 2, 1, 2),
    (2, 1, 0, 2), (2, 2, 1, 3),
    (3, 1, 0, 1), (3, 2, 2, 3),
]


def round_robin_pairings(n: int) -> List[tuple]:
    """
    All C(n, 2) pairings as (round, sequence, idx_a, idx_b), 0-based indices.

    Circle method: position 0 stays fixed while the others rotate; odd
    fields add a phantom entrant and whoever meets it sits the round out.
    """
    if n < 2:
        return []
    if n == 4:
        return list(_FOUR_TEAM_SCHEDULE)

    phantom = n if n % 2 else None
    ring = list(range(n + 1 if n % 2 else n))
    size = len(ring)
    pairings = []
    for r in range(1, size):
        seq = 0
        for i in range(size // 2):
            a, b = ring[i], ring[size - 1 - i]
            if phantom in (a, b):
                continue
            seq += 1
            pairings.append((r, seq, min(a, b), max(a, b)))
        ring = [ring[0], ring[-1]] + ring[1:-1]
    return pairings


def build_round_robin(groups: Dict[str, Sequence[TeamEntry]], config: StageConfig) -> BracketGraph:
    graph = BracketGraph(FORMAT_ROUND_ROBIN, stage_index=config.index)
    for label, members in sorted(groups.items()):
        for r, seq, i, j in round_robin_pairings(len(members)):
            graph.add(BracketMatch(
                code=f"G{label}-R{r}-M{seq}",
                branch=BRANCH_GROUP,
                round_number=r,
                sequence=seq,
                best_of=config.best_of,
                group_label=label,
                team_a_id=members[i].team_id,
                team_b_id=members[j].team_id,
            ))
    return graph


# =============================================================================
# Dispatcher
# =============================================================================

def build_bracket(
    format: str,
    ordered_teams: Sequence[TeamEntry],
    config: StageConfig,
    groups: Optional[Dict[str, Sequence[TeamEntry]]] = None,
    lower_teams: Optional[Sequence[TeamEntry]] = None,
) -> BracketGraph:
    """
    Build the full match graph for one stage.

    ordered_teams must already be in seed order (see order_entrants). For
    seeded double elimination, ordered_teams are the upper-bracket advancers
    and lower_teams the lower-bracket advancers.
    """
    lower_teams = list(lower_teams or [])
    _check_unique(list(ordered_teams) + lower_teams)
    total = len(ordered_teams) + len(lower_teams)
    if total < 2:
        raise InsufficientEntrantsError(f"Need at least 2 teams, got {total}")

    if format == FORMAT_SINGLE_ELIMINATION:
        if lower_teams:
            raise InvalidStageConfigError("single_elimination has no lower bracket")
        graph = build_single_elimination(ordered_teams, config)
    elif format == FORMAT_DOUBLE_ELIMINATION:
        if lower_teams:
            graph = build_seeded_double_elimination(ordered_teams, lower_teams, config)
        else:
            graph = build_double_elimination(ordered_teams, config)
    elif format == FORMAT_ROUND_ROBIN:
        if lower_teams:
            raise InvalidStageConfigError("round_robin has no lower bracket")
        if groups is None:
            groups = {"A": list(ordered_teams)}
        grouped_ids = [t.team_id for members in groups.values() for t in members]
        if sorted(grouped_ids) != sorted(t.team_id for t in ordered_teams):
            raise InvalidStageConfigError("Every team must belong to exactly one group")
        graph = build_round_robin(groups, config)
    else:
        raise InvalidStageConfigError(f"Unknown stage format: {format!r}")

    logger.info(
        "Built %s bracket for stage %s: %d teams, %d playable matches",
        format, config.index, total, len(graph.playable_matches()),
    )
    return graph
