"""habit tables

Revision ID: 0001_habit_tables
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_habit_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "cards",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "habit_properties",
        sa.Column(
            "card_id",
            sa.String(length=36),
            sa.ForeignKey("cards.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("dtstart_local", sa.String(length=32), nullable=False),
        sa.Column("tzid", sa.String(length=64), nullable=False),
        sa.Column("rrule", sa.Text(), nullable=False),
        sa.Column("rdates_json", sa.Text(), nullable=True),
        sa.Column("exdates_json", sa.Text(), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unit_label", sa.String(length=32), nullable=True),
        sa.Column("target_per_occurrence", sa.Float(), nullable=False, server_default="1"),
        sa.Column("adherence_target", sa.Float(), nullable=True),
        sa.Column("streak_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("longest_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'active'")),
        sa.Column("color_hex", sa.String(length=16), nullable=True),
        sa.Column("icon", sa.String(length=64), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "habit_instances_cache",
        sa.Column(
            "card_id",
            sa.String(length=36),
            sa.ForeignKey("cards.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("occurrence_key", sa.String(length=16), primary_key=True),
        sa.Column("start_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_exception", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_habit_instances_cache_card_start",
        "habit_instances_cache",
        ["card_id", "start_utc"],
    )

    op.create_table(
        "habit_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "card_id",
            sa.String(length=36),
            sa.ForeignKey("cards.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("occurrence_key", sa.String(length=16), nullable=False),
        sa.Column("done_quantity", sa.Float(), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("card_id", "occurrence_key", name="uq_habit_logs_card_occurrence"),
    )
    op.create_index("ix_habit_logs_card_id", "habit_logs", ["card_id"])
    op.create_index("ix_habit_logs_updated_at", "habit_logs", ["updated_at"])


def downgrade() -> None:
    op.drop_index("ix_habit_logs_updated_at", table_name="habit_logs")
    op.drop_index("ix_habit_logs_card_id", table_name="habit_logs")
    op.drop_table("habit_logs")
    op.drop_index("ix_habit_instances_cache_card_start", table_name="habit_instances_cache")
    op.drop_table("habit_instances_cache")
    op.drop_table("habit_properties")
    op.drop_table("cards")
