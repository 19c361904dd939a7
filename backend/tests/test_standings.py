"""
Tests for round-robin standings and advancement sets.
"""

from app.services.bracket_graph import (
    BRANCH_GROUP,
    FORMAT_DOUBLE_ELIMINATION,
    FORMAT_ROUND_ROBIN,
    STATUS_COMPLETED,
    STATUS_DISPUTED,
    BracketMatch,
    StageConfig,
    TeamEntry,
    advancing_total,
    validate_stage_plan,
)
from app.services.standings import compute_advancement, compute_standings

A, B, C, D = 1, 2, 3, 4


def _entries(ids):
    return [TeamEntry(team_id=t, seed=t, registration_order=t) for t in ids]


def _result(code, team_a, team_b, score_a, score_b, group="A", best_of=1, status=STATUS_COMPLETED):
    return BracketMatch(
        code=code,
        branch=BRANCH_GROUP,
        round_number=1,
        sequence=1,
        best_of=best_of,
        group_label=group,
        team_a_id=team_a,
        team_b_id=team_b,
        status=status,
        score_a=score_a,
        score_b=score_b,
        winner_id=team_a if score_a > score_b else team_b,
    )


def _ranked(rows):
    return [r.team_id for r in rows]


class TestComputeStandings:
    def test_cycle_with_unplayed_fourth_team(self):
        """A>B, B>C, C>A with D yet to play: 3/3/3/0, tie falls through to seed."""
        matches = [
            _result("m1", A, B, 1, 0),
            _result("m2", B, C, 1, 0),
            _result("m3", C, A, 1, 0),
        ]
        rows = compute_standings(matches, _entries([A, B, C, D]), group_label="A")
        points = {r.team_id: r.points for r in rows}
        assert points == {A: 3, B: 3, C: 3, D: 0}
        assert all(r.head_to_head == 3 for r in rows if r.team_id != D)
        assert _ranked(rows) == [A, B, C, D]
        assert [r.rank for r in rows] == [1, 2, 3, 4]

    def test_cycle_where_d_loses_everything(self):
        matches = [
            _result("m1", A, B, 1, 0),
            _result("m2", B, C, 1, 0),
            _result("m3", C, A, 1, 0),
            _result("m4", A, D, 1, 0),
            _result("m5", B, D, 1, 0),
            _result("m6", C, D, 1, 0),
        ]
        rows = compute_standings(matches, _entries([A, B, C, D]))
        assert [r.points for r in rows] == [6, 6, 6, 0]
        assert _ranked(rows) == [A, B, C, D]

    def test_cycle_broken_by_score_differential(self):
        matches = [
            _result("m1", A, B, 2, 0, best_of=3),
            _result("m2", B, C, 2, 1, best_of=3),
            _result("m3", C, A, 2, 1, best_of=3),
        ]
        rows = compute_standings(matches, _entries([A, B, C]))
        # Differentials: A +1, C 0, B -1
        assert _ranked(rows) == [A, C, B]
        assert {r.team_id: r.differential for r in rows} == {A: 1, B: -1, C: 0}

    def test_three_way_cycle_among_chasers(self):
        matches = [
            _result("m1", A, B, 1, 0),
            _result("m2", C, B, 1, 0),
            _result("m3", A, C, 1, 0),
            _result("m4", B, D, 1, 0),
            _result("m5", C, D, 0, 1),
            _result("m6", A, D, 1, 0),
        ]
        rows = compute_standings(matches, _entries([A, B, C, D]))
        assert [r.points for r in rows] == [9, 3, 3, 3]
        # B, C, D each on 3 points, cycle among them: B>D, D>C, C>B
        assert _ranked(rows) == [A, B, C, D]

    def test_head_to_head_over_differential(self):
        matches = [
            _result("m1", B, A, 2, 1, best_of=3),
            _result("m2", A, C, 2, 0, best_of=3),
            _result("m3", C, B, 2, 0, best_of=3),
            _result("m4", A, D, 2, 0, best_of=3),
            _result("m5", B, D, 2, 1, best_of=3),
            _result("m6", D, C, 2, 1, best_of=3),
        ]
        rows = compute_standings(matches, _entries([A, B, C, D]))
        by_id = {r.team_id: r for r in rows}
        assert by_id[A].points == by_id[B].points == 6
        # A has the better differential but B won the head-to-head
        assert by_id[A].differential > by_id[B].differential
        assert _ranked(rows)[:2] == [B, A]

    def test_disputed_matches_do_not_count(self):
        matches = [
            _result("m1", A, B, 1, 0),
            _result("m2", B, A, 1, 0, status=STATUS_DISPUTED),
        ]
        rows = compute_standings(matches, _entries([A, B]))
        assert {r.team_id: r.played for r in rows} == {A: 1, B: 1}
        assert _ranked(rows) == [A, B]


def _group_rows(groups):
    """{label: [ids in finishing order]} -> ranked standings per group."""
    result = {}
    for label, ids in groups.items():
        matches = []
        # Earlier ids beat later ids: rank order equals list order
        for i, first in enumerate(ids):
            for second in ids[i + 1:]:
                matches.append(_result(f"{label}{first}-{second}", first, second, 1, 0, group=label))
        result[label] = compute_standings(matches, _entries(ids), group_label=label)
    return result


class TestAdvancement:
    def test_group_winners_seeded_first(self):
        config = StageConfig(format=FORMAT_ROUND_ROBIN, group_count=2, advance_upper_per_group=2)
        standings = _group_rows({"A": [1, 2, 3, 4], "B": [5, 6, 7, 8]})
        adv = compute_advancement(standings, config)
        assert adv.upper_ids == [1, 5, 2, 6]
        assert [t.suggested_seed for t in adv.upper] == [1, 2, 3, 4]
        assert adv.lower == []
        assert sorted(adv.eliminated) == [3, 4, 7, 8]

    def test_lower_bracket_split(self):
        config = StageConfig(
            format=FORMAT_ROUND_ROBIN, group_count=2,
            advance_upper_per_group=2, advance_lower_per_group=1,
        )
        standings = _group_rows({"A": [1, 2, 3, 4], "B": [5, 6, 7, 8]})
        adv = compute_advancement(standings, config)
        assert adv.upper_ids == [1, 5, 2, 6]
        assert adv.lower_ids == [3, 7]
        assert sorted(adv.eliminated) == [4, 8]

    def test_larger_group_uses_enlarged_quota(self):
        config = StageConfig(
            format=FORMAT_ROUND_ROBIN, group_count=2,
            advance_upper_per_group=2, advance_lower_per_group=2,
        )
        standings = _group_rows({"A": [1, 2, 3, 4, 5], "B": [6, 7, 8, 9]})
        adv = compute_advancement(standings, config)
        # Group A holds base+1 teams: max(2, 5 - 2) = 3 go upper
        assert sorted(adv.upper_ids) == [1, 2, 3, 6, 7]
        assert sorted(adv.lower_ids) == [4, 5, 8, 9]
        assert adv.eliminated == []
        assert advancing_total(config, 9) == 9

    def test_best_remaining_join_upper_without_lower_path(self):
        config = StageConfig(
            format=FORMAT_ROUND_ROBIN, group_count=3,
            advance_upper_per_group=1, advance_best_remaining=1,
        )
        standings = _group_rows({"A": [1, 2, 3], "B": [4, 5, 6], "C": [7, 8, 9]})
        adv = compute_advancement(standings, config)
        assert len(adv.upper) == 4
        # Runners-up are level; seed decides
        assert 2 in adv.upper_ids
        assert adv.upper[-1].team_id == 2

    def test_best_remaining_join_lower_with_lower_path(self):
        config = StageConfig(
            format=FORMAT_ROUND_ROBIN, group_count=2,
            advance_upper_per_group=1, advance_lower_per_group=1, advance_best_remaining=1,
        )
        standings = _group_rows({"A": [1, 2, 3], "B": [4, 5, 6]})
        adv = compute_advancement(standings, config)
        assert adv.upper_ids == [1, 4]
        assert adv.lower_ids == [2, 5, 3]
        assert adv.eliminated == [6]


class TestStagePlan:
    def test_groups_feeding_double_elimination(self):
        stages = [
            StageConfig(format=FORMAT_ROUND_ROBIN, group_count=4,
                        advance_upper_per_group=2, advance_lower_per_group=1, index=1),
            StageConfig(format=FORMAT_DOUBLE_ELIMINATION, index=2),
        ]
        assert validate_stage_plan(stages, 16) == [16, 12]
