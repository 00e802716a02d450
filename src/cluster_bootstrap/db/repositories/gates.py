"""
cluster_bootstrap.db.repositories.gates

Repository for `GateRecord` entities (latest status per run and service).
"""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cluster_bootstrap.db.models import GateRecord
from cluster_bootstrap.gate.gate import GateStatus


class GateRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(self, *, run_id: uuid.UUID, status: GateStatus) -> GateRecord:
        stmt = select(GateRecord).where(
            GateRecord.run_id == run_id, GateRecord.service_name == status.service_name
        )
        rec = (await self._session.execute(stmt)).scalar_one_or_none()
        if rec is None:
            rec = GateRecord(run_id=run_id, service_name=status.service_name)
            self._session.add(rec)
        rec.state = str(status.state)
        rec.missing = dict(status.missing)
        rec.attempts = status.attempts
        rec.error = status.error
        await self._session.flush()
        return rec

    async def list_for_run(self, run_id: uuid.UUID) -> list[GateRecord]:
        stmt = (
            select(GateRecord)
            .where(GateRecord.run_id == run_id)
            .order_by(GateRecord.service_name)
        )
        return list((await self._session.execute(stmt)).scalars().all())
