"""Track confirmation reminders and close resolved contests"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0002_match_reminder"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "match", sa.Column("reminder_sent_at", sa.DateTime(timezone=True), nullable=True)
    )
    # A resolved contest no longer holds the match back.
    op.execute(
        sa.text("UPDATE match SET contested = FALSE WHERE contest_resolved_at IS NOT NULL")
    )


def downgrade() -> None:
    with op.batch_alter_table("match") as batch_op:
        batch_op.drop_column("reminder_sent_at")
