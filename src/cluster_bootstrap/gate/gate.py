"""
cluster_bootstrap.gate.gate

Readiness Gate state machine.

Responsibilities:
- Decide, per poll tick, whether every certificate a service needs is present and well-formed.
- Poll with bounded exponential backoff until SATISFIED or the deadline passes (FAILED).
- Attribute failures to the specific missing identity; never fail unrelated services.
"""

from __future__ import annotations

import asyncio
import enum
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field

from cluster_bootstrap.errors import ReadinessTimeoutError
from cluster_bootstrap.gate.requirements import ReadinessRequirement
from cluster_bootstrap.identity.models import Identity
from cluster_bootstrap.observability.context import bind_run_context
from cluster_bootstrap.observability.logging import get_logger
from cluster_bootstrap.pki import fs
from cluster_bootstrap.pki.issuance import MaterialLayout

log = get_logger(__name__)


class GateState(enum.StrEnum):
    pending = "PENDING"
    satisfied = "SATISFIED"
    failed = "FAILED"


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    initial: float = 1.0
    maximum: float = 15.0
    multiplier: float = 2.0

    def delay(self, attempt: int) -> float:
        return min(self.maximum, self.initial * (self.multiplier ** max(attempt, 0)))


@dataclass(slots=True)
class GateStatus:
    service_name: str
    state: GateState = GateState.pending
    # identity name -> why it does not count as present yet
    missing: dict[str, str] = field(default_factory=dict)
    attempts: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "service_name": self.service_name,
            "state": str(self.state),
            "missing": dict(self.missing),
            "attempts": self.attempts,
            "error": self.error,
        }


class CertificateCheck:
    """
    Structural check of issued material: cert non-empty, key non-empty, private mode,
    and owned by the identity's key owner when ownership is enforced.
    """

    def __init__(self, layout: MaterialLayout, identities: Mapping[str, Identity]) -> None:
        self._layout = layout
        self._identities = identities

    def problem(self, name: str) -> str | None:
        identity = self._identities.get(name)
        if identity is None:
            return "unknown identity"
        material = self._layout.material_for(identity)
        if not fs.non_empty(material.cert_path):
            return "certificate missing or empty"
        key_problem = fs.private_file_problem(
            material.key_path, owner=self._layout.key_owner(identity)
        )
        if key_problem is not None:
            return f"key {key_problem}"
        return None


Observer = Callable[[GateStatus], Awaitable[None]]


class ReadinessGate:
    def __init__(
        self,
        requirement: ReadinessRequirement,
        *,
        check: CertificateCheck,
        deadline: float,
        backoff: BackoffPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        observer: Observer | None = None,
    ) -> None:
        self._requirement = requirement
        self._check = check
        self._deadline = deadline
        self._backoff = backoff or BackoffPolicy()
        self._clock = clock
        self._sleep = sleep
        self._observer = observer
        self._status = GateStatus(service_name=requirement.service_name)

    @property
    def requirement(self) -> ReadinessRequirement:
        return self._requirement

    @property
    def state(self) -> GateState:
        return self._status.state

    @property
    def status(self) -> GateStatus:
        return self._status

    def reset(self) -> None:
        self._status = GateStatus(service_name=self._requirement.service_name)

    def evaluate(self) -> dict[str, str]:
        """One tick: every identity is checked again, earlier results are not trusted."""

        missing: dict[str, str] = {}
        for name in self._requirement.required_identities:
            problem = self._check.problem(name)
            if problem is not None:
                missing[name] = problem
        self._status.missing = missing
        self._status.attempts += 1
        return missing

    async def wait(self) -> GateStatus:
        """
        Block until SATISFIED; raise ReadinessTimeoutError (state FAILED) at the deadline.
        """

        service = self._requirement.service_name
        if self._status.state is GateState.satisfied:
            return self._status
        if self._status.state is GateState.failed:
            missing = list(self._status.missing) or list(self._requirement.required_identities)
            raise ReadinessTimeoutError(service, missing[0], missing)

        with bind_run_context(gate=service):
            started = self._clock()
            attempt = 0
            while True:
                missing = self.evaluate()
                if not missing:
                    self._status.state = GateState.satisfied
                    log.info("gate_satisfied", attempts=self._status.attempts)
                    await self._notify()
                    return self._status

                remaining = self._deadline - (self._clock() - started)
                if remaining <= 0:
                    first = next(iter(missing))
                    err = ReadinessTimeoutError(service, first, list(missing))
                    self._status.state = GateState.failed
                    self._status.error = str(err)
                    log.warning("gate_failed", missing=missing, attempts=self._status.attempts)
                    await self._notify()
                    raise err

                if attempt == 0:
                    await self._notify()
                await self._sleep(min(self._backoff.delay(attempt), remaining))
                attempt += 1

    async def _notify(self) -> None:
        if self._observer is not None:
            await self._observer(self._status)


async def wait_for_all(
    gates: Sequence[ReadinessGate],
    *,
    on_satisfied: Observer | None = None,
) -> dict[str, GateStatus]:
    """
    Poll every gate concurrently; a failed gate only fails its own service.

    `on_satisfied` runs as soon as each gate is satisfied, without waiting for the others.
    """

    async def _one(gate: ReadinessGate) -> GateStatus:
        status = await gate.wait()
        if on_satisfied is not None:
            await on_satisfied(status)
        return status

    results = await asyncio.gather(*(_one(g) for g in gates), return_exceptions=True)
    statuses: dict[str, GateStatus] = {}
    for gate, result in zip(gates, results, strict=True):
        if isinstance(result, ReadinessTimeoutError):
            statuses[gate.requirement.service_name] = gate.status
        elif isinstance(result, BaseException):
            raise result
        else:
            statuses[gate.requirement.service_name] = result
    return statuses


# --- Module Notes -----------------------------------------------------------
# A gate restarted by the supervisor starts again from PENDING (`reset` or a new
# instance); nothing about earlier polls is persisted or assumed.
