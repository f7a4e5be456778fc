"""Create the flow_sessions snapshot table.

Revision ID: 20261019_flow_sessions
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, TIMESTAMP, UUID

# revision identifiers, used by Alembic.
revision = "20261019_flow_sessions"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "flow_sessions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("session_id", sa.Text(), nullable=False, unique=True),
        sa.Column("experience_id", sa.Text(), nullable=False),
        sa.Column("event_id", sa.Text(), nullable=True),
        sa.Column("mode", sa.String(20), nullable=False),
        sa.Column("state", sa.String(20), nullable=False),
        sa.Column("effective_step_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_step_id", sa.Text(), nullable=True),
        sa.Column("data", JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("transform", JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column(
            "extras_seen", ARRAY(sa.Text()), nullable=False,
            server_default=sa.text("'{}'::text[]"),
        ),
        sa.Column(
            "slot_decisions", JSONB(), nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_at", TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", TIMESTAMP(timezone=True), nullable=False),
        sa.Column("completed_at", TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint(
            "state IN ('running', 'completed', 'aborted')", name="ck_flow_state",
        ),
        sa.CheckConstraint("mode IN ('guest', 'preview')", name="ck_flow_mode"),
        sa.CheckConstraint(
            "state = 'running' OR completed_at IS NOT NULL",
            name="ck_ended_has_completed_at",
        ),
    )
    op.create_index("ix_flow_sessions_experience_id", "flow_sessions", ["experience_id"])
    op.create_index("ix_flow_sessions_event_id", "flow_sessions", ["event_id"])
    op.create_index("ix_flow_sessions_state", "flow_sessions", ["state"])
    op.create_index("ix_flow_sessions_created_at", "flow_sessions", ["created_at"])
    op.create_index(
        "ix_flow_sessions_data_gin", "flow_sessions", ["data"], postgresql_using="gin",
    )


def downgrade() -> None:
    op.drop_index("ix_flow_sessions_data_gin", table_name="flow_sessions")
    op.drop_index("ix_flow_sessions_created_at", table_name="flow_sessions")
    op.drop_index("ix_flow_sessions_state", table_name="flow_sessions")
    op.drop_index("ix_flow_sessions_event_id", table_name="flow_sessions")
    op.drop_index("ix_flow_sessions_experience_id", table_name="flow_sessions")
    op.drop_table("flow_sessions")
