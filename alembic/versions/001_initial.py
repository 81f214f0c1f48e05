"""Initial schema: users, meetings, meeting_participants, meeting_sessions.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "meetings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("host_id", sa.Uuid(), nullable=False),
        sa.Column("max_capacity", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_meetings_host_id", "meetings", ["host_id"])
    op.create_index("ix_meetings_status_created_at", "meetings", ["status", "created_at"])

    # One row per (meeting, user); rejoining reopens it
    op.create_table(
        "meeting_participants",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("meeting_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("left_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("meeting_id", "user_id", name="uq_participant_meeting_user"),
    )
    op.create_index(
        "ix_participants_meeting_open", "meeting_participants", ["meeting_id", "left_at"]
    )

    op.create_table(
        "meeting_sessions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("token", sa.String(128), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("meeting_id", sa.Uuid(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_meeting_sessions_token", "meeting_sessions", ["token"], unique=True)
    op.create_index("ix_meeting_sessions_user_id", "meeting_sessions", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_meeting_sessions_user_id", table_name="meeting_sessions")
    op.drop_index("ix_meeting_sessions_token", table_name="meeting_sessions")
    op.drop_table("meeting_sessions")
    op.drop_index("ix_participants_meeting_open", table_name="meeting_participants")
    op.drop_table("meeting_participants")
    op.drop_index("ix_meetings_status_created_at", table_name="meetings")
    op.drop_index("ix_meetings_host_id", table_name="meetings")
    op.drop_table("meetings")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
