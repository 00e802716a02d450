"""
cluster_bootstrap.db.repositories.audit

Append-only audit trail of provisioning runs.

Responsibilities:
- Append events emitted by runs and one-shot jobs; rows are never updated.
- Read one run's trail in insertion order, optionally filtered by event type.
"""

from __future__ import annotations

import uuid
from collections.abc import Collection
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cluster_bootstrap.db.models import AuditEvent


class AuditRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(
        self,
        *,
        run_id: uuid.UUID | None,
        actor: str,
        event_type: str,
        details: dict[str, Any],
    ) -> AuditEvent:
        event = AuditEvent(
            run_id=run_id,
            actor=actor,
            event_type=event_type.upper(),
            details=dict(details),
        )
        self._session.add(event)
        # Flush so the autoincrement id (the ordering key) is assigned now.
        await self._session.flush()
        return event

    async def list_for_run(
        self,
        run_id: uuid.UUID,
        *,
        event_types: Collection[str] | None = None,
        limit: int = 500,
    ) -> list[AuditEvent]:
        stmt = select(AuditEvent).where(AuditEvent.run_id == run_id)
        if event_types:
            stmt = stmt.where(AuditEvent.event_type.in_([t.upper() for t in event_types]))
        stmt = stmt.order_by(AuditEvent.id).limit(limit)
        return list((await self._session.scalars(stmt)).all())
