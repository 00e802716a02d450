"""
cluster_bootstrap.reconciler.reconciler

Authorization Reconciler (one-shot job).

Responsibilities:
- Wait for the cluster API, then make each desired role binding exist (create-only).
- Never update or delete a binding that already exists under the same name.
- Record completion so restarts do not re-run it unless the marker is reset or forced.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from cluster_bootstrap.gate.gate import BackoffPolicy
from cluster_bootstrap.observability.logging import get_logger
from cluster_bootstrap.reconciler.bindings import MONITORING_BINDINGS, RoleBinding
from cluster_bootstrap.reconciler.ensure import EnsureOutcome, ensure_exists
from cluster_bootstrap.reconciler.kube_client import ClusterApiClient

log = get_logger(__name__)

JOB_NAME = "authorization-reconcile"


class MarkerStore(Protocol):
    async def is_done(self, job: str) -> bool: ...

    async def mark_done(self, job: str, details: dict[str, Any]) -> None: ...


@dataclass(slots=True)
class ReconcileReport:
    skipped: bool = False
    outcomes: dict[str, EnsureOutcome] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"skipped": self.skipped, "outcomes": {k: str(v) for k, v in self.outcomes.items()}}


class AuthorizationReconciler:
    def __init__(
        self,
        *,
        client: ClusterApiClient,
        bindings: Sequence[RoleBinding] = MONITORING_BINDINGS,
        markers: MarkerStore | None = None,
        api_wait_seconds: float = 300.0,
        backoff: BackoffPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._bindings = tuple(bindings)
        self._markers = markers
        self._api_wait_seconds = api_wait_seconds
        self._backoff = backoff
        self._clock = clock
        self._sleep = sleep

    async def run(self, *, force: bool = False) -> ReconcileReport:
        if self._markers is not None and not force and await self._markers.is_done(JOB_NAME):
            log.info("reconcile_skipped", reason="already_done")
            return ReconcileReport(skipped=True)

        # A malformed descriptor is a permanent error: fail before touching the API.
        for binding in self._bindings:
            binding.validate()

        await self._client.wait_until_reachable(
            deadline=self._api_wait_seconds,
            backoff=self._backoff,
            clock=self._clock,
            sleep=self._sleep,
        )

        report = ReconcileReport()
        for binding in self._bindings:
            report.outcomes[binding.name] = await self._ensure(binding)

        if self._markers is not None:
            await self._markers.mark_done(JOB_NAME, report.to_dict())
        log.info("reconcile_done", **report.to_dict())
        return report

    async def _ensure(self, binding: RoleBinding) -> EnsureOutcome:
        async def exists() -> bool:
            return await self._client.get_cluster_role_binding(binding.name) is not None

        async def create() -> None:
            await self._client.create_cluster_role_binding(binding)

        return await ensure_exists(f"clusterrolebinding/{binding.name}", exists=exists, create=create)


# --- Module Notes -----------------------------------------------------------
# Transient failures (ApiUnavailableError) propagate unchanged: the supervisor's
# restart policy retries the job. No marker is written for a failed run.
