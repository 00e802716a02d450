"""
cluster_bootstrap.orchestrator.context

Collaborators handed to graph nodes.

Responsibilities:
- Bundle settings, file layout, readiness table and the external boundaries (CA, supervisor,
  cluster API) so nodes stay free of wiring decisions and tests can swap any of them.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from pathlib import Path

from cluster_bootstrap.gate.gate import Observer
from cluster_bootstrap.gate.requirements import ReadinessRequirement
from cluster_bootstrap.identity.models import CertificateMaterial
from cluster_bootstrap.pki.ca import CertificateAuthority
from cluster_bootstrap.pki.issuance import MaterialLayout
from cluster_bootstrap.reconciler.reconciler import AuthorizationReconciler
from cluster_bootstrap.services.supervisor import ServiceSupervisor
from cluster_bootstrap.settings import Settings

# auth key (or None) -> CA client
CaFactory = Callable[[bytes | None], AbstractAsyncContextManager[CertificateAuthority]]
# (reconciler identity material, CA cert path, endpoint) -> reconciler
ReconcilerFactory = Callable[
    [CertificateMaterial, Path | None, str], AbstractAsyncContextManager[AuthorizationReconciler]
]


@dataclass(slots=True)
class ProvisioningContext:
    settings: Settings
    layout: MaterialLayout
    requirements: tuple[ReadinessRequirement, ...]
    open_ca: CaFactory
    open_reconciler: ReconcilerFactory
    supervisor: ServiceSupervisor
    gate_observer: Observer | None = None
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
