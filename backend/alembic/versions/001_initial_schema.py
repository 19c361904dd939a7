"""Initial schema: tournaments, teams, stages, draws, matches, corrections, availability

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tournament",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("timezone", sa.String(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "team",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("seed", sa.Integer(), nullable=True),
        sa.Column("pot", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="approved"),
        sa.Column("registration_timestamp", sa.DateTime(), nullable=False),
        sa.Column("withdrawn_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
        sa.UniqueConstraint("tournament_id", "seed", name="uq_tournament_seed"),
        sa.UniqueConstraint("tournament_id", "name", name="uq_tournament_team_name"),
    )
    op.create_index("ix_team_tournament_id", "team", ["tournament_id"])

    op.create_table(
        "stage",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("stage_index", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False, server_default=""),
        sa.Column("format", sa.String(), nullable=False),
        sa.Column("best_of", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("final_best_of", sa.Integer(), nullable=True),
        sa.Column("group_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("advance_upper_per_group", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("advance_lower_per_group", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("advance_best_remaining", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(), nullable=False, server_default="configured"),
        sa.Column("lb_initial_rounds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
        sa.UniqueConstraint("tournament_id", "stage_index", name="uq_tournament_stage_index"),
    )
    op.create_index("ix_stage_tournament_id", "stage", ["tournament_id"])

    op.create_table(
        "stagegroupteam",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("stage_id", sa.Integer(), nullable=False),
        sa.Column("team_id", sa.Integer(), nullable=False),
        sa.Column("group_label", sa.String(), nullable=True),
        sa.Column("draw_order", sa.Integer(), nullable=True),
        sa.Column("pot", sa.Integer(), nullable=True),
        sa.Column("bracket_side", sa.String(), nullable=True),
        sa.Column("stage_seed", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["stage_id"], ["stage.id"]),
        sa.ForeignKeyConstraint(["team_id"], ["team.id"]),
        sa.UniqueConstraint("stage_id", "team_id", name="uq_stage_team"),
    )
    op.create_index("ix_stagegroupteam_stage_id", "stagegroupteam", ["stage_id"])
    op.create_index("ix_stagegroupteam_team_id", "stagegroupteam", ["team_id"])

    op.create_table(
        "groupdraw",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("stage_id", sa.Integer(), nullable=False),
        sa.Column("seed", sa.String(), nullable=True),
        sa.Column("mode", sa.String(), nullable=False),
        sa.Column("group_count", sa.Integer(), nullable=False),
        sa.Column("sequence_json", sa.JSON(), nullable=True),
        sa.Column("entrants_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["stage_id"], ["stage.id"]),
    )
    op.create_index("ix_groupdraw_stage_id", "groupdraw", ["stage_id"])

    op.create_table(
        "match",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("stage_id", sa.Integer(), nullable=False),
        sa.Column("match_code", sa.String(), nullable=False),
        sa.Column("branch", sa.String(), nullable=False),
        sa.Column("round_number", sa.Integer(), nullable=False),
        sa.Column("sequence_in_round", sa.Integer(), nullable=False),
        sa.Column("best_of", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("group_label", sa.String(), nullable=True),
        sa.Column("team_a_id", sa.Integer(), nullable=True),
        sa.Column("team_b_id", sa.Integer(), nullable=True),
        sa.Column("bye_a", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("bye_b", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("placeholder_side_a", sa.String(), nullable=False, server_default="TBD"),
        sa.Column("placeholder_side_b", sa.String(), nullable=False, server_default="TBD"),
        sa.Column("source_a_code", sa.String(), nullable=True),
        sa.Column("source_a_role", sa.String(), nullable=True),
        sa.Column("source_b_code", sa.String(), nullable=True),
        sa.Column("source_b_role", sa.String(), nullable=True),
        sa.Column("winner_to_code", sa.String(), nullable=True),
        sa.Column("winner_to_slot", sa.String(), nullable=True),
        sa.Column("loser_to_code", sa.String(), nullable=True),
        sa.Column("loser_to_slot", sa.String(), nullable=True),
        sa.Column("is_final", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("loser_placement", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("score_a", sa.Integer(), nullable=True),
        sa.Column("score_b", sa.Integer(), nullable=True),
        sa.Column("winner_team_id", sa.Integer(), nullable=True),
        sa.Column("is_forfeit", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_walkover", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("dispute_reason", sa.String(), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
        sa.ForeignKeyConstraint(["stage_id"], ["stage.id"]),
        sa.ForeignKeyConstraint(["team_a_id"], ["team.id"]),
        sa.ForeignKeyConstraint(["team_b_id"], ["team.id"]),
        sa.ForeignKeyConstraint(["winner_team_id"], ["team.id"]),
        sa.UniqueConstraint("stage_id", "match_code", name="uq_match_stage_code"),
    )
    op.create_index("ix_match_tournament_id", "match", ["tournament_id"])
    op.create_index("ix_match_stage_id", "match", ["stage_id"])

    op.create_table(
        "matchcorrection",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("match_id", sa.Integer(), nullable=False),
        sa.Column("previous_winner_id", sa.Integer(), nullable=True),
        sa.Column("new_winner_id", sa.Integer(), nullable=True),
        sa.Column("previous_score_a", sa.Integer(), nullable=True),
        sa.Column("previous_score_b", sa.Integer(), nullable=True),
        sa.Column("new_score_a", sa.Integer(), nullable=True),
        sa.Column("new_score_b", sa.Integer(), nullable=True),
        sa.Column("notes", sa.String(), nullable=False, server_default=""),
        sa.Column("resolved_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["match_id"], ["match.id"]),
    )
    op.create_index("ix_matchcorrection_match_id", "matchcorrection", ["match_id"])

    op.create_table(
        "teamavailability",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("team_id", sa.Integer(), nullable=False),
        sa.Column("stage_id", sa.Integer(), nullable=True),
        sa.Column("match_code", sa.String(), nullable=True),
        sa.Column("slot_start", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
        sa.ForeignKeyConstraint(["team_id"], ["team.id"]),
        sa.ForeignKeyConstraint(["stage_id"], ["stage.id"]),
    )
    op.create_index("ix_teamavailability_tournament_id", "teamavailability", ["tournament_id"])
    op.create_index("ix_teamavailability_team_id", "teamavailability", ["team_id"])


def downgrade() -> None:
    op.drop_index("ix_teamavailability_team_id", table_name="teamavailability")
    op.drop_index("ix_teamavailability_tournament_id", table_name="teamavailability")
    op.drop_table("teamavailability")
    op.drop_index("ix_matchcorrection_match_id", table_name="matchcorrection")
    op.drop_table("matchcorrection")
    op.drop_index("ix_match_stage_id", table_name="match")
    op.drop_index("ix_match_tournament_id", table_name="match")
    op.drop_table("match")
    op.drop_index("ix_groupdraw_stage_id", table_name="groupdraw")
    op.drop_table("groupdraw")
    op.drop_index("ix_stagegroupteam_team_id", table_name="stagegroupteam")
    op.drop_index("ix_stagegroupteam_stage_id", table_name="stagegroupteam")
    op.drop_table("stagegroupteam")
    op.drop_index("ix_stage_tournament_id", table_name="stage")
    op.drop_table("stage")
    op.drop_index("ix_team_tournament_id", table_name="team")
    op.drop_table("team")
    op.drop_table("tournament")
