"""SQLAlchemy table definitions.

These map to the frozen dataclass domain models in studyflow/models/.
Repos convert between rows and dataclasses; nothing outside
studyflow/repos/pg_*.py touches a Row class.

Modules and paths are static configuration (ModuleGraph) and have no
tables; progress rows reference modules by their unique name.
"""

from __future__ import annotations

import uuid

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from studyflow.db.engine import Base

# --- Progress ---


class ProgressRecordRow(Base):
    __tablename__ = "progress_records"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    module_name: Mapped[str] = mapped_column(String(100), primary_key=True)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="NOT_STARTED"
    )  # NOT_STARTED|IN_PROGRESS|COMPLETED
    responses: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    metadata_json: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    started_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_saved_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completed_at: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('NOT_STARTED', 'IN_PROGRESS', 'COMPLETED')",
            name="progress_records_status_check",
        ),
        CheckConstraint(
            "(status = 'COMPLETED') = (completed_at IS NOT NULL)",
            name="progress_records_completed_at_check",
        ),
        Index("ix_progress_records_user_id", "user_id"),
    )


class ParticipantStateRow(Base):
    """Per-participant pointer to the module they should be working on."""

    __tablename__ = "participant_state"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    active_module: Mapped[str | None] = mapped_column(String(100), nullable=True)
    updated_at: Mapped[int] = mapped_column(Integer, nullable=False)


# --- Consent ---


class ConsentVersionRow(Base):
    __tablename__ = "consent_versions"

    version: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="DRAFT"
    )  # DRAFT|ACTIVE|RETIRED
    content_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    effective_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    retired_at: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        # At most one ACTIVE version: partial unique index on the status value.
        Index(
            "uq_consent_versions_single_active",
            "status",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
        ),
    )


class ConsentRow(Base):
    __tablename__ = "consents"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    version: Mapped[str] = mapped_column(String(64), nullable=False)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    consented_at: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (UniqueConstraint("user_id", "version"),)


# --- Audit (append-only) ---


class AuditEventRow(Base):
    __tablename__ = "audit_events"

    # seq gives a total order within one second; ids are random UUIDs
    seq: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), unique=True, nullable=False, default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    occurred_at: Mapped[int] = mapped_column(Integer, nullable=False)
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_audit_events_user_id_seq", "user_id", "seq"),
        Index("ix_audit_events_event_type", "event_type"),
    )
