"""
Tests for seeded group draws: determinism, pot constraints and snake drafts.
"""

import pytest

from app.services.bracket_graph import TeamEntry
from app.services.draw_engine import (
    DRAW_MODE_POTS,
    DRAW_MODE_RANDOM,
    DrawAssignment,
    DrawResult,
    groups_from_assignments,
    pots_from_teams,
    run_draw,
    snake_draft,
    verify_draw,
)
from app.services.errors import InvalidStageConfigError


def _teams(n, pots=None):
    return [
        TeamEntry(team_id=100 + i, seed=i, registration_order=i, pot=pots[i - 1] if pots else None)
        for i in range(1, n + 1)
    ]


class TestRandomDraw:
    def test_even_split(self):
        result = run_draw(_teams(8), 2, seed="even")
        members = result.members()
        assert result.mode == DRAW_MODE_RANDOM
        assert sorted(len(v) for v in members.values()) == [4, 4]
        assert [a.order for a in result.assignments] == list(range(1, 9))

    def test_uneven_split_fills_first_groups(self):
        result = run_draw(_teams(7), 3, seed="uneven")
        assert [len(result.members()[label]) for label in "ABC"] == [3, 2, 2]

    def test_same_seed_same_draw(self):
        first = run_draw(_teams(12), 3, seed="replay-me")
        second = run_draw(_teams(12), 3, seed="replay-me")
        assert first.assignments == second.assignments

    def test_missing_seed_is_generated_and_recorded(self):
        result = run_draw(_teams(6), 2)
        assert result.seed is not None
        assert run_draw(_teams(6), 2, seed=result.seed).assignments == result.assignments

    def test_verify_detects_tampering(self):
        teams = _teams(8)
        result = run_draw(teams, 2, seed="audit")
        assert verify_draw(result, teams)

        first, second = result.assignments[0], result.assignments[1]
        swapped = [
            DrawAssignment(first.order, second.team_id, first.group_label),
            DrawAssignment(second.order, first.team_id, second.group_label),
        ] + result.assignments[2:]
        tampered = DrawResult(seed=result.seed, group_labels=result.group_labels, assignments=swapped)
        assert not verify_draw(tampered, teams)

    def test_too_many_groups(self):
        with pytest.raises(InvalidStageConfigError):
            run_draw(_teams(3), 4, seed="x")

    def test_more_than_26_groups(self):
        with pytest.raises(InvalidStageConfigError):
            run_draw(_teams(30), 27, seed="x")


class TestPotDraw:
    def test_no_group_gets_two_teams_from_one_pot(self):
        pots = [1, 1, 1, 1, 2, 2, 2, 2, 3, 3, 3, 3]
        teams = _teams(12, pots)
        result = run_draw(teams, 4, seed="pots", pots=pots_from_teams(teams))
        assert result.mode == DRAW_MODE_POTS
        by_group = {}
        for a in result.assignments:
            by_group.setdefault(a.group_label, []).append(a.pot)
        for drawn_pots in by_group.values():
            assert sorted(drawn_pots) == [1, 2, 3]

    def test_pots_drawn_in_order(self):
        pots = [2, 1, 2, 1]
        teams = _teams(4, pots)
        result = run_draw(teams, 2, seed="order", pots=pots_from_teams(teams))
        assert [a.pot for a in result.assignments] == [1, 1, 2, 2]

    def test_short_pot_leaves_trailing_groups_without_it(self):
        pots = [1, 1, 1, 2, 2]
        teams = _teams(5, pots)
        result = run_draw(teams, 3, seed="short", pots=pots_from_teams(teams))
        pot_two_groups = sorted(a.group_label for a in result.assignments if a.pot == 2)
        assert pot_two_groups == ["A", "B"]

    def test_pot_larger_than_group_count(self):
        pots = [1, 1, 1, 2]
        teams = _teams(4, pots)
        with pytest.raises(InvalidStageConfigError):
            run_draw(teams, 2, seed="big", pots=pots_from_teams(teams))

    def test_teams_without_pot_fill_smallest_groups(self):
        teams = _teams(7, [1, 1, 1, 2, 2, None, None])
        result = run_draw(teams, 3, seed="overflow", pots=pots_from_teams(teams))
        overflow = [a for a in result.assignments if a.pot is None]
        assert sorted(a.team_id for a in overflow) == [106, 107]
        assert [a.order for a in overflow] == [6, 7]
        # Pot 2 leaves group C one short, so the first overflow team lands there
        assert overflow[0].group_label == "C"
        sizes = sorted(len(m) for m in result.members().values())
        assert sizes == [2, 2, 3]

    def test_overflow_replay_is_identical(self):
        teams = _teams(6, [1, 1, 2, 2, None, None])
        result = run_draw(teams, 2, seed="overflow-replay", pots=pots_from_teams(teams))
        assert verify_draw(result, teams, pots_from_teams(teams))
        again = run_draw(teams, 2, seed="overflow-replay", pots=pots_from_teams(teams))
        assert again.assignments == result.assignments

    def test_pot_replay_is_identical(self):
        pots = [1, 1, 2, 2, 3, 3]
        teams = _teams(6, pots)
        result = run_draw(teams, 2, seed="pot-replay", pots=pots_from_teams(teams))
        assert verify_draw(result, teams, pots_from_teams(teams))


class TestSnakeDraft:
    def test_serpentine_distribution(self):
        result = snake_draft(_teams(8), 4)
        members = result.members()
        assert members == {"A": [101, 108], "B": [102, 107], "C": [103, 106], "D": [104, 105]}
        assert result.seed is None

    def test_groups_from_assignments_orders_by_seed(self):
        teams = _teams(6)
        result = run_draw(teams, 2, seed="members")
        groups = groups_from_assignments(result.assignments, teams, result.group_labels)
        for members in groups.values():
            seeds = [t.seed for t in members]
            assert seeds == sorted(seeds)
        assert sum(len(m) for m in groups.values()) == 6

    def test_unknown_drawn_team(self):
        assignments = [DrawAssignment(1, 999, "A")]
        with pytest.raises(InvalidStageConfigError):
            groups_from_assignments(assignments, _teams(2))
