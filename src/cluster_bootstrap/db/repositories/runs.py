"""
cluster_bootstrap.db.repositories.runs

Repository for `ProvisioningRun` rows.

Responsibilities:
- Create runs in RUNNING state with their initial inputs.
- Overwrite the checkpointed state after each node, and the terminal status and error.
- Read a run back by id, the newest run, or the most recent few.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cluster_bootstrap.db.models import ProvisioningRun, RunStatus


class RunRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, actor: str, initial_state: dict[str, Any]) -> ProvisioningRun:
        run = ProvisioningRun(actor=actor, status=RunStatus.running, state=dict(initial_state))
        self._session.add(run)
        await self._session.flush()
        return run

    async def get(self, run_id: uuid.UUID) -> ProvisioningRun | None:
        return await self._session.get(ProvisioningRun, run_id)

    async def recent(self, *, limit: int = 20) -> list[ProvisioningRun]:
        stmt = (
            select(ProvisioningRun)
            .order_by(ProvisioningRun.created_at.desc(), ProvisioningRun.id)
            .limit(limit)
        )
        return list((await self._session.scalars(stmt)).all())

    async def latest(self) -> ProvisioningRun | None:
        runs = await self.recent(limit=1)
        return runs[0] if runs else None

    async def set_state(
        self,
        *,
        run_id: uuid.UUID,
        status: RunStatus | None = None,
        state: dict[str, Any] | None = None,
        error: str | None = None,
        error_type: str | None = None,
    ) -> ProvisioningRun:
        """
        Update only the given fields. A checkpoint replaces `state` wholesale; an error,
        once recorded, is not cleared by later checkpoints.
        """

        run = await self._session.get(ProvisioningRun, run_id)
        if run is None:
            raise LookupError(f"provisioning run {run_id} does not exist")
        if status is not None:
            run.status = status
        if state is not None:
            run.state = dict(state)
        if error is not None:
            run.error, run.error_type = error, error_type
        return run
