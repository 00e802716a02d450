"""
cluster_bootstrap.db.models

Persistence schema for provisioning state.

Responsibilities:
- ProvisioningRun: one orchestrated run with its checkpointed state.
- GateRecord: latest readiness gate status per run and service.
- JobMarker: completion markers for one-shot jobs (the reconciler).
- AuditEvent: append-only trail of what each run did.
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Enum, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy import Uuid as SAUuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cluster_bootstrap.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(tz=UTC).replace(tzinfo=None)


class RunStatus(enum.StrEnum):
    running = "RUNNING"
    completed = "COMPLETED"
    # Finished, but some service gate failed or the reconciler was rejected.
    degraded = "DEGRADED"
    failed = "FAILED"
    aborted = "ABORTED"


class ProvisioningRun(Base):
    __tablename__ = "provisioning_runs"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    actor: Mapped[str] = mapped_column(String(256), nullable=False)
    status: Mapped[RunStatus] = mapped_column(Enum(RunStatus), nullable=False, index=True)
    state: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    error_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow, onupdate=_utcnow)

    gates: Mapped[list[GateRecord]] = relationship(
        back_populates="run", cascade="all, delete-orphan"
    )


class GateRecord(Base):
    __tablename__ = "gate_records"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    run_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("provisioning_runs.id"), nullable=False, index=True
    )
    service_name: Mapped[str] = mapped_column(String(256), nullable=False)
    state: Mapped[str] = mapped_column(String(32), nullable=False)
    missing: Mapped[dict[str, str]] = mapped_column(JSON, nullable=False, default=dict)
    attempts: Mapped[int] = mapped_column(nullable=False, default=0)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow, onupdate=_utcnow)

    run: Mapped[ProvisioningRun] = relationship(back_populates="gates")

    __table_args__ = (UniqueConstraint("run_id", "service_name", name="uq_gate_run_service"),)


class JobMarker(Base):
    __tablename__ = "job_markers"

    job: Mapped[str] = mapped_column(String(128), primary_key=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    completed_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)


class AuditEvent(Base):
    __tablename__ = "audit_events"

    # Integer key keeps insertion order stable within one timestamp.
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    run_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), nullable=True, index=True
    )
    actor: Mapped[str] = mapped_column(String(256), nullable=False)
    event_type: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow, index=True)

    __table_args__ = (Index("ix_audit_run_created", "run_id", "created_at"),)


# --- Module Notes -----------------------------------------------------------
# Certificate and key bytes are never stored here; only paths and states.
