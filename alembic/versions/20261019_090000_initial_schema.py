"""Initial schema: players, tournaments, matches, notifications, users

Revision ID: 5f1c2a7d9e30
Revises:
Create Date: 2026-10-19 09:00:00.000000+00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# Revision identifiers, used by Alembic.
revision: str = "5f1c2a7d9e30"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "players",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("wins", sa.Integer(), nullable=False),
        sa.Column("losses", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_players_rating", "players", ["rating"], unique=False)
    op.create_index("idx_players_name", "players", ["name"], unique=False)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
    )
    op.create_index("idx_users_active", "users", ["is_active"], unique=False)

    op.create_table(
        "tournaments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("format", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("rounds", sa.Integer(), nullable=False),
        sa.Column("group_count", sa.Integer(), nullable=True),
        sa.Column("advance_count", sa.Integer(), nullable=True),
        sa.Column("start_date", sa.DateTime(), nullable=True),
        sa.Column("end_date", sa.DateTime(), nullable=True),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("settled_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_tournaments_status", "tournaments", ["status"], unique=False)

    op.create_table(
        "tournament_players",
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("player_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournaments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["player_id"], ["players.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("tournament_id", "player_id"),
    )

    op.create_table(
        "matches",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("player1_id", sa.Integer(), nullable=False),
        sa.Column("player2_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("round", sa.Integer(), nullable=False),
        sa.Column("stage", sa.String(length=20), nullable=True),
        sa.Column("group_name", sa.String(length=50), nullable=True),
        sa.Column("bracket_position", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("player1_score", sa.Integer(), nullable=True),
        sa.Column("player2_score", sa.Integer(), nullable=True),
        sa.Column("best_of_three", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("player1_game1_score", sa.Integer(), nullable=True),
        sa.Column("player2_game1_score", sa.Integer(), nullable=True),
        sa.Column("player1_game2_score", sa.Integer(), nullable=True),
        sa.Column("player2_game2_score", sa.Integer(), nullable=True),
        sa.Column("player1_game3_score", sa.Integer(), nullable=True),
        sa.Column("player2_game3_score", sa.Integer(), nullable=True),
        sa.Column("player1_wins", sa.Integer(), nullable=False),
        sa.Column("player2_wins", sa.Integer(), nullable=False),
        sa.Column("current_game", sa.Integer(), nullable=False),
        sa.Column("player1_elo_delta", sa.Integer(), nullable=True),
        sa.Column("player2_elo_delta", sa.Integer(), nullable=True),
        sa.Column("winner_bonus", sa.Integer(), nullable=True),
        sa.Column("settled_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournaments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["player1_id"], ["players.id"]),
        sa.ForeignKeyConstraint(["player2_id"], ["players.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_matches_tournament", "matches", ["tournament_id"], unique=False)
    op.create_index(
        "idx_matches_tournament_stage_round",
        "matches",
        ["tournament_id", "stage", "round"],
        unique=False,
    )
    op.create_index("idx_matches_player1", "matches", ["player1_id"], unique=False)
    op.create_index("idx_matches_player2", "matches", ["player2_id"], unique=False)
    op.create_index("idx_matches_status", "matches", ["status"], unique=False)
    op.create_index("idx_matches_date", "matches", ["date"], unique=False)

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_notifications_created", "notifications", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("idx_notifications_created", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("idx_matches_date", table_name="matches")
    op.drop_index("idx_matches_status", table_name="matches")
    op.drop_index("idx_matches_player2", table_name="matches")
    op.drop_index("idx_matches_player1", table_name="matches")
    op.drop_index("idx_matches_tournament_stage_round", table_name="matches")
    op.drop_index("idx_matches_tournament", table_name="matches")
    op.drop_table("matches")
    op.drop_table("tournament_players")
    op.drop_index("idx_tournaments_status", table_name="tournaments")
    op.drop_table("tournaments")
    op.drop_index("idx_users_active", table_name="users")
    op.drop_table("users")
    op.drop_index("idx_players_name", table_name="players")
    op.drop_index("idx_players_rating", table_name="players")
    op.drop_table("players")
