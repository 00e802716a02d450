from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.status import HTTP_404_NOT_FOUND

from cluster_bootstrap.api.deps import db_session
from cluster_bootstrap.auth.deps import require_roles
from cluster_bootstrap.auth.models import Role
from cluster_bootstrap.db.models import ProvisioningRun
from cluster_bootstrap.db.repositories.audit import AuditRepo
from cluster_bootstrap.db.repositories.gates import GateRepo
from cluster_bootstrap.db.repositories.runs import RunRepo

router = APIRouter(
    prefix="/v1/runs",
    tags=["runs"],
    dependencies=[Depends(require_roles(Role.operator))],
)


class RunOut(BaseModel):
    id: uuid.UUID
    actor: str
    status: str
    error_type: str | None
    error: str | None
    degraded: list[str]
    started_services: list[str]
    endpoint: str | None
    created_at: datetime
    updated_at: datetime


class GateOut(BaseModel):
    service_name: str
    state: str
    missing: dict[str, str]
    attempts: int
    error: str | None


class AuditOut(BaseModel):
    event_type: str
    actor: str
    details: dict[str, Any]
    created_at: datetime


def _run_out(run: ProvisioningRun) -> RunOut:
    state = run.state or {}
    return RunOut(
        id=run.id,
        actor=run.actor,
        status=str(run.status),
        error_type=run.error_type,
        error=run.error,
        degraded=list(state.get("degraded", [])),
        started_services=list(state.get("started_services", [])),
        endpoint=state.get("endpoint"),
        created_at=run.created_at,
        updated_at=run.updated_at,
    )


async def _get_run(session: AsyncSession, run_id: uuid.UUID) -> ProvisioningRun:
    run = await RunRepo(session).get(run_id)
    if run is None:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Run not found")
    return run


@router.get("", response_model=list[RunOut])
async def recent_runs(
    limit: int = Query(default=20, ge=1, le=200),
    session: AsyncSession = Depends(db_session),
) -> list[RunOut]:
    return [_run_out(run) for run in await RunRepo(session).recent(limit=limit)]


@router.get("/latest", response_model=RunOut)
async def latest_run(session: AsyncSession = Depends(db_session)) -> RunOut:
    run = await RunRepo(session).latest()
    if run is None:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="No runs recorded")
    return _run_out(run)


@router.get("/{run_id}", response_model=RunOut)
async def get_run(run_id: uuid.UUID, session: AsyncSession = Depends(db_session)) -> RunOut:
    return _run_out(await _get_run(session, run_id))


@router.get("/{run_id}/gates", response_model=list[GateOut])
async def run_gates(
    run_id: uuid.UUID, session: AsyncSession = Depends(db_session)
) -> list[GateOut]:
    await _get_run(session, run_id)
    return [
        GateOut(
            service_name=g.service_name,
            state=g.state,
            missing=dict(g.missing or {}),
            attempts=g.attempts,
            error=g.error,
        )
        for g in await GateRepo(session).list_for_run(run_id)
    ]


@router.get("/{run_id}/audit", response_model=list[AuditOut])
async def run_audit(
    run_id: uuid.UUID,
    event_type: list[str] | None = Query(default=None),
    session: AsyncSession = Depends(db_session),
) -> list[AuditOut]:
    await _get_run(session, run_id)
    return [
        AuditOut(
            event_type=e.event_type,
            actor=e.actor,
            details=dict(e.details or {}),
            created_at=e.created_at,
        )
        for e in await AuditRepo(session).list_for_run(run_id, event_types=event_type)
    ]
