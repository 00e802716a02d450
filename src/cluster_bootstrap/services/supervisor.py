"""
cluster_bootstrap.services.supervisor

Process supervisor boundary.

Responsibilities:
- Start a dependent service once its readiness gate is satisfied.
"""

from __future__ import annotations

import asyncio
from typing import Protocol

from cluster_bootstrap.gate.units import service_unit_name
from cluster_bootstrap.observability.logging import get_logger

log = get_logger(__name__)


class SupervisorError(Exception):
    pass


class ServiceSupervisor(Protocol):
    async def start(self, service: str) -> None: ...


class SystemctlSupervisor:
    def __init__(self, *, systemctl: str = "systemctl") -> None:
        self._systemctl = systemctl

    async def start(self, service: str) -> None:
        unit = service_unit_name(service)
        proc = await asyncio.create_subprocess_exec(
            self._systemctl,
            "start",
            unit,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise SupervisorError(
                f"{self._systemctl} start {unit} exited {proc.returncode}: "
                f"{stderr.decode(errors='replace').strip()}"
            )
        log.info("service_started", unit=unit)
