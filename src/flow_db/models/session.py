"""FlowSessionRecord ORM model — latest snapshot of one flow session.

One row per engine session, overwritten on every save.  JSONB columns hold
the collected step data and transform state so a single row is enough to
inspect or replay a run.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from flow_db.models.base import Base


class FlowSessionRecord(Base):
    """One row per flow session."""

    __tablename__ = "flow_sessions"

    # --- Primary key ---
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # --- Identity ---
    # Engine-generated (or host-supplied) session id
    session_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    experience_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    event_id: Mapped[str | None] = mapped_column(Text, nullable=True, index=True)

    # --- Lifecycle ---
    # "guest" or "preview"
    mode: Mapped[str] = mapped_column(String(20), nullable=False)
    # running / completed / aborted
    state: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    effective_step_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_step_id: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Collected data ---
    # Dict keyed by step id -> {"step_id", "step_type", "value", "answered_at"}
    data: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        server_default=text("'{}'::jsonb"),
    )
    # {"status", "result_ref", "error_info", "step_id", "job_id", "attempts", "progress"}
    transform: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        server_default=text("'{}'::jsonb"),
    )

    # --- Extras ---
    extras_seen: Mapped[list[str]] = mapped_column(
        ARRAY(Text),
        nullable=False,
        server_default=text("'{}'::text[]"),
    )
    # {"preEntryGate": true, "preReward": false}
    slot_decisions: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        server_default=text("'{}'::jsonb"),
    )

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    # --- Table-level constraints ---
    __table_args__ = (
        CheckConstraint(
            "state IN ('running', 'completed', 'aborted')",
            name="ck_flow_state",
        ),
        CheckConstraint(
            "mode IN ('guest', 'preview')",
            name="ck_flow_mode",
        ),
        # Ended sessions must record when they ended
        CheckConstraint(
            "state = 'running' OR completed_at IS NOT NULL",
            name="ck_ended_has_completed_at",
        ),
        # --- Indexes ---
        # TTL purge scans by age
        Index("ix_flow_sessions_created_at", "created_at"),
        # GIN index for JSONB lookups on collected data
        Index("ix_flow_sessions_data_gin", "data", postgresql_using="gin"),
    )

    def __repr__(self) -> str:
        return (
            f"<FlowSessionRecord(session={self.session_id!r}, "
            f"experience={self.experience_id!r}, state={self.state!r}, "
            f"index={self.effective_step_index})>"
        )
