"""
Tests for building stages and handing group-stage advancers to the next stage.
"""

import pytest

from app.services.bracket_graph import (
    FORMAT_DOUBLE_ELIMINATION,
    FORMAT_ROUND_ROBIN,
    FORMAT_SINGLE_ELIMINATION,
    StageConfig,
    TeamEntry,
    validate_stage_plan,
)
from app.services.errors import InvalidStageConfigError, InvalidTransitionError
from app.services.progression import ProgressionController
from app.services.stage_pipeline import advance_stage, build_stage


def _teams(n):
    return [TeamEntry(team_id=s, name=f"T{s}", seed=s, registration_order=s) for s in range(1, n + 1)]


def _groups(teams, size):
    labels = "ABCDEFGH"
    return {labels[i // size]: teams[i:i + size] for i in range(0, len(teams), size)}


def _play_all(graph):
    """Slot a wins every group match, so group order equals seed order."""
    controller = ProgressionController(graph)
    for match in graph:
        controller.apply_result(match.code, 1, 0)


def _group_stage(group_count=2, upper=2, lower=0, best=0):
    return StageConfig(
        format=FORMAT_ROUND_ROBIN, group_count=group_count,
        advance_upper_per_group=upper, advance_lower_per_group=lower,
        advance_best_remaining=best, index=1,
    )


class TestBuildStage:
    def test_multi_group_stage_needs_a_draw(self):
        with pytest.raises(InvalidStageConfigError):
            build_stage(_group_stage(), _teams(8))

    def test_single_group_builds_without_draw(self):
        graph = build_stage(_group_stage(group_count=1), _teams(5))
        assert len(graph) == 10
        assert set(graph.groups()) == {"A"}


class TestAdvanceStage:
    def test_groups_into_single_elimination(self):
        teams = _teams(8)
        groups = _groups(teams, 4)
        config = _group_stage()
        graph = build_stage(config, teams, groups=groups)
        _play_all(graph)

        result = advance_stage(graph, config, StageConfig(format=FORMAT_SINGLE_ELIMINATION, index=2), teams, groups)
        assert [t.team_id for t in result.upper] == [1, 5, 2, 6]
        assert [t.seed for t in result.upper] == [1, 2, 3, 4]
        assert sorted(result.advancement.eliminated) == [3, 4, 7, 8]

        nxt = result.next_graph
        assert nxt.stage_index == 2
        # Group-mates 1 and 2 start in opposite halves
        assert nxt.get("WB-R1-M1").team_ids == [1, 6]
        assert nxt.get("WB-R1-M2").team_ids == [5, 2]

    def test_incomplete_stage_cannot_advance(self):
        teams = _teams(8)
        groups = _groups(teams, 4)
        config = _group_stage()
        graph = build_stage(config, teams, groups=groups)
        with pytest.raises(InvalidTransitionError):
            advance_stage(graph, config, StageConfig(format=FORMAT_SINGLE_ELIMINATION, index=2), teams, groups)

    def test_lower_advancers_seed_losers_bracket(self):
        teams = _teams(8)
        groups = _groups(teams, 4)
        config = _group_stage(lower=1)
        graph = build_stage(config, teams, groups=groups)
        _play_all(graph)

        result = advance_stage(graph, config, StageConfig(format=FORMAT_DOUBLE_ELIMINATION, index=2), teams, groups)
        assert [t.team_id for t in result.lower] == [3, 7]
        lower_ids = {3, 7}
        wb_ids = {t for m in result.next_graph if m.branch == "winners" for t in m.team_ids}
        assert not wb_ids & lower_ids
        assert result.next_graph.lb_initial_rounds == 1

    def test_lone_lower_advancer_joins_upper_as_lowest_seed(self):
        teams = _teams(4)
        groups = {"A": teams}
        config = _group_stage(group_count=1, upper=2, lower=1)
        graph = build_stage(config, teams, groups=groups)
        _play_all(graph)

        result = advance_stage(graph, config, StageConfig(format=FORMAT_DOUBLE_ELIMINATION, index=2), teams, groups)
        assert result.lower == []
        assert [(t.team_id, t.seed) for t in result.upper] == [(1, 1), (2, 2), (3, 3)]

    def test_withdrawn_group_winner_is_replaced(self):
        teams = _teams(8)
        groups = _groups(teams, 4)
        config = _group_stage()
        graph = build_stage(config, teams, groups=groups)
        _play_all(graph)

        result = advance_stage(
            graph, config, StageConfig(format=FORMAT_SINGLE_ELIMINATION, index=2), teams, groups, withdrawn={1},
        )
        # Team 2 moves up to group A winner but ranks behind the unbeaten group B winner
        assert [t.team_id for t in result.upper] == [5, 2, 6, 3]
        assert 1 in result.advancement.eliminated
        assert all(1 not in m.team_ids for m in result.next_graph)

    def test_lower_advancers_need_double_elimination(self):
        teams = _teams(8)
        groups = _groups(teams, 4)
        config = _group_stage(lower=1)
        graph = build_stage(config, teams, groups=groups)
        _play_all(graph)
        with pytest.raises(InvalidStageConfigError):
            advance_stage(graph, config, StageConfig(format=FORMAT_SINGLE_ELIMINATION, index=2), teams, groups)

    def test_round_robin_next_stage_waits_for_draw(self):
        teams = _teams(8)
        groups = _groups(teams, 4)
        config = _group_stage()
        graph = build_stage(config, teams, groups=groups)
        _play_all(graph)

        nxt = StageConfig(format=FORMAT_ROUND_ROBIN, group_count=1, index=2)
        result = advance_stage(graph, config, nxt, teams, groups)
        assert result.next_graph is None
        assert len(result.upper) == 4

    def test_elimination_stage_cannot_feed(self):
        teams = _teams(4)
        config = StageConfig(format=FORMAT_SINGLE_ELIMINATION)
        graph = build_stage(config, teams)
        with pytest.raises(InvalidStageConfigError):
            advance_stage(graph, config, StageConfig(format=FORMAT_SINGLE_ELIMINATION, index=2), teams, {})


class TestStageConfigValidation:
    @pytest.mark.parametrize("kwargs", [
        {"format": "swiss"},
        {"format": FORMAT_ROUND_ROBIN, "group_count": 0},
        {"format": FORMAT_ROUND_ROBIN, "group_count": 27},
        {"format": FORMAT_ROUND_ROBIN, "group_count": 2, "advance_upper_per_group": -1},
        {"format": FORMAT_SINGLE_ELIMINATION, "best_of": 2},
        {"format": FORMAT_SINGLE_ELIMINATION, "group_count": 2},
        {"format": FORMAT_ROUND_ROBIN, "group_count": 2.5},
    ])
    def test_rejected(self, kwargs):
        with pytest.raises(InvalidStageConfigError):
            StageConfig(**kwargs)

    def test_plan_rejects_more_advancers_than_entrants(self):
        stages = [_group_stage(group_count=2, upper=5), StageConfig(format=FORMAT_SINGLE_ELIMINATION, index=2)]
        with pytest.raises(InvalidStageConfigError):
            validate_stage_plan(stages, 8)

    def test_plan_rejects_lower_path_without_double_elimination(self):
        stages = [_group_stage(lower=1), StageConfig(format=FORMAT_SINGLE_ELIMINATION, index=2)]
        with pytest.raises(InvalidStageConfigError):
            validate_stage_plan(stages, 8)

    def test_plan_rejects_more_groups_than_teams(self):
        with pytest.raises(InvalidStageConfigError):
            validate_stage_plan([_group_stage(group_count=5)], 4)

    def test_plan_rejects_elimination_feeding_a_stage(self):
        stages = [StageConfig(format=FORMAT_SINGLE_ELIMINATION), StageConfig(format=FORMAT_SINGLE_ELIMINATION, index=2)]
        with pytest.raises(InvalidStageConfigError):
            validate_stage_plan(stages, 8)
