from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cluster_bootstrap.api.deps import db_session, settings_dep
from cluster_bootstrap.db.repositories.runs import RunRepo
from cluster_bootstrap.settings import Settings

router = APIRouter()


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> dict[str, Any]:
    # Reading the newest run proves the schema exists, not just the connection.
    latest = await RunRepo(session).latest()
    return {
        "status": "ready",
        "latest_run_status": str(latest.status) if latest is not None else None,
        "secrets_dir_present": settings.secrets_dir.is_dir(),
    }
