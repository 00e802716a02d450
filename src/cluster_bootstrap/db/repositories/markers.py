"""
cluster_bootstrap.db.repositories.markers

Repository for `JobMarker` entities.

Responsibilities:
- Answer "has this one-shot job completed on this host?" and record completion.
- Allow an operator to reset a marker so the job runs again.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from cluster_bootstrap.db.models import JobMarker


class MarkerRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def is_done(self, job: str) -> bool:
        return await self._session.get(JobMarker, job) is not None

    async def mark_done(self, job: str, details: dict[str, Any]) -> None:
        marker = await self._session.get(JobMarker, job)
        if marker is None:
            self._session.add(JobMarker(job=job, details=details))
        else:
            marker.details = details
        await self._session.flush()

    async def reset(self, job: str) -> bool:
        marker = await self._session.get(JobMarker, job)
        if marker is None:
            return False
        await self._session.delete(marker)
        await self._session.flush()
        return True
