"""
cluster_bootstrap.services.wiring

Default collaborators for a provisioning run.

Responsibilities:
- Open the cfssl client and the cluster API client from settings.
- Resolve the administrator set (explicit list or the admin group).
- Assemble a `ProvisioningContext` with overridable boundaries.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from pathlib import Path

import httpx

from cluster_bootstrap.gate.gate import BackoffPolicy, Observer
from cluster_bootstrap.gate.requirements import DEFAULT_REQUIREMENTS
from cluster_bootstrap.identity.models import CertificateMaterial
from cluster_bootstrap.identity.registry import members_of_group
from cluster_bootstrap.orchestrator.context import (
    CaFactory,
    ProvisioningContext,
    ReconcilerFactory,
)
from cluster_bootstrap.pki.ca import CfsslClient
from cluster_bootstrap.pki.issuance import MaterialLayout
from cluster_bootstrap.reconciler.kube_client import ClusterApiClient, client_from_material
from cluster_bootstrap.reconciler.reconciler import AuthorizationReconciler, MarkerStore
from cluster_bootstrap.services.supervisor import ServiceSupervisor, SystemctlSupervisor
from cluster_bootstrap.settings import Settings


def admin_members(settings: Settings) -> list[str]:
    if settings.admin_members is not None:
        return list(settings.admin_members)
    return members_of_group(settings.admin_group)


def gate_backoff(settings: Settings) -> BackoffPolicy:
    return BackoffPolicy(
        initial=settings.gate_poll_initial_seconds,
        maximum=settings.gate_poll_max_seconds,
        multiplier=settings.gate_poll_multiplier,
    )


def cfssl_factory(settings: Settings) -> CaFactory:
    @asynccontextmanager
    async def _open(auth_key: bytes | None) -> AsyncIterator[CfsslClient]:
        # Before the first run the CA cert is not on disk yet; fall back to system trust.
        verify: str | bool = str(settings.ca_cert) if settings.ca_cert.exists() else True
        async with httpx.AsyncClient(
            base_url=settings.ca_url,
            verify=verify,
            timeout=settings.ca_timeout_seconds,
        ) as http:
            yield CfsslClient(http=http, auth_key=auth_key)

    return _open


# (reconciler identity material, CA cert path, endpoint) -> cluster API client
ApiClientFactory = Callable[[CertificateMaterial, Path | None, str], httpx.AsyncClient]


def mtls_client(material: CertificateMaterial, ca_path: Path | None, endpoint: str) -> httpx.AsyncClient:
    return client_from_material(material, endpoint=endpoint, ca_path=ca_path)


def reconciler_factory(
    settings: Settings,
    *,
    markers: MarkerStore | None,
    api_client: ApiClientFactory = mtls_client,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> ReconcilerFactory:
    @asynccontextmanager
    async def _open(
        material: CertificateMaterial, ca_path: Path | None, endpoint: str
    ) -> AsyncIterator[AuthorizationReconciler]:
        async with api_client(material, ca_path, endpoint) as http:
            yield AuthorizationReconciler(
                client=ClusterApiClient(http=http),
                markers=markers,
                api_wait_seconds=settings.api_wait_seconds,
                backoff=gate_backoff(settings),
                clock=clock,
                sleep=sleep,
            )

    return _open


def build_context(
    settings: Settings,
    *,
    markers: MarkerStore | None = None,
    open_ca: CaFactory | None = None,
    api_client: ApiClientFactory = mtls_client,
    supervisor: ServiceSupervisor | None = None,
    gate_observer: Observer | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> ProvisioningContext:
    return ProvisioningContext(
        settings=settings,
        layout=MaterialLayout(settings.secrets_dir, enforce_ownership=settings.enforce_ownership),
        requirements=DEFAULT_REQUIREMENTS,
        open_ca=open_ca or cfssl_factory(settings),
        open_reconciler=reconciler_factory(
            settings, markers=markers, api_client=api_client, clock=clock, sleep=sleep
        ),
        supervisor=supervisor or SystemctlSupervisor(),
        gate_observer=gate_observer,
        clock=clock,
        sleep=sleep,
    )
