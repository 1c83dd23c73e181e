"""Clubs, players, matches, rating ledger, notifications and badges."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _now():
    return sa.text("CURRENT_TIMESTAMP")


def upgrade() -> None:
    op.create_table(
        "club",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "player",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("club_id", sa.String(), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("current_elo", sa.Integer(), nullable=False, server_default="1200"),
        sa.Column("best_elo", sa.Integer(), nullable=False, server_default="1200"),
        sa.Column("matches_played", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("wins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("losses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_match_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.ForeignKeyConstraint(["club_id"], ["club.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "match",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("club_id", sa.String(), nullable=True),
        sa.Column("player1_id", sa.String(), nullable=False),
        sa.Column("player2_id", sa.String(), nullable=False),
        sa.Column("winner_id", sa.String(), nullable=False),
        sa.Column("score", sa.String(), nullable=False),
        sa.Column("match_format", sa.String(), nullable=False, server_default="two_sets"),
        sa.Column("played_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("player1_elo_before", sa.Integer(), nullable=False),
        sa.Column("player1_elo_after", sa.Integer(), nullable=False),
        sa.Column("player2_elo_before", sa.Integer(), nullable=False),
        sa.Column("player2_elo_after", sa.Integer(), nullable=False),
        sa.Column(
            "modifiers_applied",
            sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
            nullable=False,
        ),
        sa.Column("reported_by", sa.String(), nullable=False),
        sa.Column("validated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("validated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("validated_by", sa.String(), nullable=True),
        sa.Column("auto_validated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("auto_validate_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("contested", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("contested_by", sa.String(), nullable=True),
        sa.Column("contested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("contest_reason", sa.Text(), nullable=True),
        sa.Column("contest_resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("contest_resolution", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["club_id"], ["club.id"]),
        sa.ForeignKeyConstraint(["player1_id"], ["player.id"]),
        sa.ForeignKeyConstraint(["player2_id"], ["player.id"]),
        sa.ForeignKeyConstraint(["winner_id"], ["player.id"]),
        sa.ForeignKeyConstraint(["reported_by"], ["player.id"]),
        sa.ForeignKeyConstraint(["validated_by"], ["player.id"]),
        sa.ForeignKeyConstraint(["contested_by"], ["player.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_match_pending_deadline",
        "match",
        ["validated", "contested", "auto_validate_at"],
    )
    op.create_index("ix_match_contested_by_at", "match", ["contested_by", "contested_at"])

    op.create_table(
        "rating_ledger",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("player_id", sa.String(), nullable=False),
        sa.Column("match_id", sa.String(), nullable=False),
        sa.Column("elo_after", sa.Integer(), nullable=False),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.ForeignKeyConstraint(["player_id"], ["player.id"]),
        sa.ForeignKeyConstraint(["match_id"], ["match.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "player_id", "match_id", name="uq_rating_ledger_player_id_match_id"
        ),
    )
    op.create_index("ix_rating_ledger_match_id", "rating_ledger", ["match_id"])

    op.create_table(
        "notification",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("player_id", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["player_id"], ["player.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notification_player_id", "notification", ["player_id"])

    op.create_table(
        "badge",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("icon", sa.String(), nullable=True),
        sa.Column("category", sa.String(), nullable=False, server_default="milestone"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("rule", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "player_badge",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("player_id", sa.String(), nullable=False),
        sa.Column("badge_id", sa.String(), nullable=False),
        sa.Column("earned_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.ForeignKeyConstraint(["player_id"], ["player.id"]),
        sa.ForeignKeyConstraint(["badge_id"], ["badge.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "player_id", "badge_id", name="uq_player_badge_player_id_badge_id"
        ),
    )


def downgrade() -> None:
    op.drop_table("player_badge")
    op.drop_table("badge")
    op.drop_index("ix_notification_player_id", table_name="notification")
    op.drop_table("notification")
    op.drop_index("ix_rating_ledger_match_id", table_name="rating_ledger")
    op.drop_table("rating_ledger")
    op.drop_index("ix_match_contested_by_at", table_name="match")
    op.drop_index("ix_match_pending_deadline", table_name="match")
    op.drop_table("match")
    op.drop_table("player")
    op.drop_table("club")
