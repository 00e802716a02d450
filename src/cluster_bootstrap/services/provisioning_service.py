"""
cluster_bootstrap.services.provisioning_service

Provisioning run lifecycle service (transaction + persistence owner).

Responsibilities:
- Create runs and initialize provisioning state.
- Execute the LangGraph pipeline with durable per-node checkpointing.
- Persist gate transitions, the reconciler's completion marker, and audit events.
- Map the outcome to a run status: COMPLETED, DEGRADED, FAILED, or ABORTED.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from cluster_bootstrap.db.models import RunStatus
from cluster_bootstrap.db.repositories.audit import AuditRepo
from cluster_bootstrap.db.repositories.gates import GateRepo
from cluster_bootstrap.db.repositories.markers import MarkerRepo
from cluster_bootstrap.db.repositories.runs import RunRepo
from cluster_bootstrap.gate.gate import GateStatus
from cluster_bootstrap.observability.context import bind_run_context
from cluster_bootstrap.observability.logging import get_logger
from cluster_bootstrap.orchestrator.context import CaFactory
from cluster_bootstrap.orchestrator.graph import build_graph
from cluster_bootstrap.orchestrator.state import ProvisioningState
from cluster_bootstrap.services.supervisor import ServiceSupervisor
from cluster_bootstrap.services.wiring import (
    ApiClientFactory,
    admin_members,
    build_context,
    mtls_client,
)
from cluster_bootstrap.settings import Settings

log = get_logger(__name__)

_AGENT = "cluster-bootstrap"


class RunNotFoundError(LookupError):
    pass


class _CommittingMarkers:
    """MarkerRepo that commits each write, sharing the service's session lock."""

    def __init__(self, session: AsyncSession, lock: asyncio.Lock) -> None:
        self._session = session
        self._repo = MarkerRepo(session)
        self._lock = lock

    async def is_done(self, job: str) -> bool:
        async with self._lock:
            return await self._repo.is_done(job)

    async def mark_done(self, job: str, details: dict[str, Any]) -> None:
        async with self._lock:
            await self._repo.mark_done(job, details)
            await self._session.commit()


class ProvisioningService:
    def __init__(
        self,
        *,
        session: AsyncSession,
        settings: Settings,
        open_ca: CaFactory | None = None,
        api_client: ApiClientFactory = mtls_client,
        supervisor: ServiceSupervisor | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._session = session
        self._settings = settings
        self._open_ca = open_ca
        self._api_client = api_client
        self._supervisor = supervisor
        self._clock = clock
        self._sleep = sleep

        self._runs = RunRepo(session)
        self._gates = GateRepo(session)
        self._audit = AuditRepo(session)
        # One AsyncSession is shared by checkpoints, gate observers and the marker store.
        self._lock = asyncio.Lock()

    async def start(self, *, actor: str, members: list[str] | None = None) -> uuid.UUID:
        if members is None:
            members = admin_members(self._settings)
        initial_state: ProvisioningState = {
            "admin_members": list(members),
            "gates": {},
            "started_services": [],
            "degraded": [],
            "audit_log": [],
        }
        run = await self._runs.create(actor=actor, initial_state=dict(initial_state))
        await self._audit.add(
            run_id=run.id,
            actor=actor,
            event_type="RUN_CREATED",
            details={"admin_members": list(members)},
        )
        await self._session.commit()
        return run.id

    async def execute(self, *, run_id: uuid.UUID, actor: str) -> dict[str, Any]:
        run = await self._runs.get(run_id)
        if run is None:
            raise RunNotFoundError(str(run_id))

        ctx = build_context(
            self._settings,
            markers=_CommittingMarkers(self._session, self._lock),
            open_ca=self._open_ca,
            api_client=self._api_client,
            supervisor=self._supervisor,
            gate_observer=self._gate_observer(run.id),
            clock=self._clock,
            sleep=self._sleep,
        )
        graph = build_graph(ctx=ctx)

        state: ProvisioningState = dict(run.state or {})  # type: ignore[assignment]
        state["run_id"] = str(run.id)
        checkpoint: dict[str, Any] = {"state": state, "persisted": 0}

        with bind_run_context(run_id=str(run.id)):
            try:
                final_state = await asyncio.wait_for(
                    self._execute_with_checkpoints(graph=graph, run_id=run.id, checkpoint=checkpoint),
                    timeout=self._settings.run_deadline_seconds,
                )
            except (TimeoutError, asyncio.CancelledError) as e:
                # Nothing issued so far is rolled back; a later run reuses it.
                await self._finish_abnormally(
                    run_id=run.id,
                    status=RunStatus.aborted,
                    state=checkpoint["state"],
                    error=e,
                    reason="run deadline exceeded" if isinstance(e, TimeoutError) else "cancelled",
                )
                raise
            except Exception as e:
                await self._finish_abnormally(
                    run_id=run.id,
                    status=RunStatus.failed,
                    state=checkpoint["state"],
                    error=e,
                    reason=str(e),
                )
                raise

            degraded = list(final_state.get("degraded", []))
            status = RunStatus.degraded if degraded else RunStatus.completed
            async with self._lock:
                await self._runs.set_state(run_id=run.id, status=status, state=dict(final_state))
                await self._audit.add(
                    run_id=run.id,
                    actor=actor,
                    event_type=f"RUN_{status}",
                    details={"degraded": degraded},
                )
                await self._session.commit()
            log.info("run_finished", status=str(status), degraded=degraded)

        return {
            "status": str(status),
            "run_id": str(run.id),
            "degraded": degraded,
            "started_services": list(final_state.get("started_services", [])),
        }

    async def provision(self, *, actor: str, members: list[str] | None = None) -> dict[str, Any]:
        run_id = await self.start(actor=actor, members=members)
        return await self.execute(run_id=run_id, actor=actor)

    def _gate_observer(self, run_id: uuid.UUID) -> Callable[[GateStatus], Awaitable[None]]:
        async def _observe(status: GateStatus) -> None:
            async with self._lock:
                await self._gates.record(run_id=run_id, status=status)
                await self._session.commit()

        return _observe

    async def _finish_abnormally(
        self,
        *,
        run_id: uuid.UUID,
        status: RunStatus,
        state: ProvisioningState,
        error: BaseException,
        reason: str,
    ) -> None:
        log.error("run_" + str(status).lower(), error_type=type(error).__name__, error=reason)
        await self._session.rollback()
        await self._runs.set_state(
            run_id=run_id,
            status=status,
            state=dict(state),
            error=reason,
            error_type=type(error).__name__,
        )
        await self._audit.add(
            run_id=run_id,
            actor=_AGENT,
            event_type=f"RUN_{status}",
            details={"error": reason, "error_type": type(error).__name__},
        )
        await self._session.commit()

    async def _execute_with_checkpoints(
        self,
        *,
        graph: Any,
        run_id: uuid.UUID,
        checkpoint: dict[str, Any],
    ) -> ProvisioningState:
        """
        Persist the full run state after every node (stream_mode='values') and append the
        audit entries each node produced. `checkpoint` always holds the last persisted state.
        """

        last_state: ProvisioningState = checkpoint["state"]
        async for snapshot in graph.astream(last_state, stream_mode="values"):
            if not isinstance(snapshot, dict):
                continue
            last_state = snapshot  # type: ignore[assignment]

            async with self._lock:
                await self._runs.set_state(
                    run_id=run_id, status=RunStatus.running, state=dict(last_state)
                )
                entries = last_state.get("audit_log", [])
                for entry in entries[checkpoint["persisted"] :]:
                    await self._audit.add(
                        run_id=run_id,
                        actor=_AGENT,
                        event_type=str(entry.get("event", "UNKNOWN")),
                        details=dict(entry.get("details", {})),
                    )
                await self._session.commit()

            checkpoint["persisted"] = len(entries)
            checkpoint["state"] = last_state

        return last_state


# --- Module Notes -----------------------------------------------------------
# This service is the transaction boundary: nodes never touch the database. Gate
# observers and the reconciler's marker store write through the same session, so
# every write goes through `self._lock`.
