"""
cluster_bootstrap.gate.units

Declarative unit graph consumed by the process supervisor.

Responsibilities:
- Model units and their requires/after edges as plain data.
- Build the graph: token -> per-identity issuance -> per-service gate -> service -> reconciler.
- Validate it (no dangling edges, no cycles) and export it as JSON or systemd unit files.
"""

from __future__ import annotations

import shlex
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from graphlib import CycleError, TopologicalSorter
from typing import Any

from cluster_bootstrap.gate.requirements import API_SERVICE, ReadinessRequirement
from cluster_bootstrap.identity.models import Identity

TOKEN_UNIT = "bootstrap-token.service"
BUNDLES_UNIT = "connection-bundles.service"
RECONCILE_UNIT = "authorization-reconcile.service"
DEFAULT_TARGET = "multi-user.target"

# Exit code of `cluster-bootstrap reconcile` when the API rejected a binding; an
# unreachable API (any other failure) is retried by the supervisor.
RECONCILE_REJECTED_EXIT = 8


def service_unit_name(service: str) -> str:
    return f"{service}.service"


def issuance_unit_name(identity: str) -> str:
    return f"issue-cert-{identity}.service"


def gate_unit_name(service: str) -> str:
    return f"wait-for-certs-{service}.service"


@dataclass(frozen=True, slots=True)
class RestartPolicy:
    """Retry on failure, except for exit codes that mean retrying cannot help."""

    delay_seconds: int = 15
    prevent_exit_codes: tuple[int, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "delay_seconds": self.delay_seconds,
            "prevent_exit_codes": list(self.prevent_exit_codes),
        }


RECONCILE_RESTART = RestartPolicy(prevent_exit_codes=(RECONCILE_REJECTED_EXIT,))


@dataclass(slots=True)
class Unit:
    name: str
    description: str = ""
    requires: tuple[str, ...] = ()
    after: tuple[str, ...] = ()
    exec_start: Sequence[str] | None = None
    # Drop-ins extend a unit owned by someone else (the dependent service).
    drop_in: bool = False
    wanted_by: tuple[str, ...] = ()
    # Supervisor restart policy; None means the unit runs once and stays failed.
    restart: RestartPolicy | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "requires": list(self.requires),
            "after": list(self.after),
            "exec_start": list(self.exec_start) if self.exec_start else None,
            "drop_in": self.drop_in,
            "wanted_by": list(self.wanted_by),
            "restart": self.restart.to_dict() if self.restart else None,
        }


class UnitGraph:
    def __init__(self) -> None:
        self._units: dict[str, Unit] = {}

    def add(self, unit: Unit) -> Unit:
        if unit.name in self._units:
            raise ValueError(f"unit {unit.name!r} defined twice")
        self._units[unit.name] = unit
        return unit

    def __getitem__(self, name: str) -> Unit:
        return self._units[name]

    def __contains__(self, name: object) -> bool:
        return name in self._units

    def __iter__(self) -> Iterator[Unit]:
        return iter(self._units.values())

    def __len__(self) -> int:
        return len(self._units)

    def validate(self, *, external: Iterable[str] = ()) -> None:
        known = set(self._units) | set(external)
        for unit in self._units.values():
            dangling = [n for n in (*unit.requires, *unit.after) if n not in known]
            if dangling:
                raise ValueError(f"unit {unit.name!r} references unknown units: {dangling}")
        try:
            self.order()
        except CycleError as e:
            raise ValueError(f"unit graph has a cycle: {e.args[1]}") from e

    def order(self) -> list[str]:
        sorter: TopologicalSorter[str] = TopologicalSorter()
        for unit in self._units.values():
            deps = [n for n in dict.fromkeys((*unit.requires, *unit.after)) if n in self._units]
            sorter.add(unit.name, *deps)
        return list(sorter.static_order())

    def to_dict(self) -> dict[str, Any]:
        return {"units": [self._units[n].to_dict() for n in self.order()]}


def build_unit_graph(
    identities: Mapping[str, Identity],
    requirements: Sequence[ReadinessRequirement],
    *,
    executable: Sequence[str] = ("cluster-bootstrap",),
    api_service: str = API_SERVICE,
    reconciler_identity: str = "cluster-admin",
    reconcile_restart: RestartPolicy = RECONCILE_RESTART,
) -> UnitGraph:
    graph = UnitGraph()
    exe = list(executable)

    graph.add(
        Unit(
            name=TOKEN_UNIT,
            description="Derive the CA bootstrap token",
            exec_start=[*exe, "derive-token"],
        )
    )

    for name in identities:
        graph.add(
            Unit(
                name=issuance_unit_name(name),
                description=f"Issue certificate for {name}",
                requires=(TOKEN_UNIT,),
                after=(TOKEN_UNIT,),
                exec_start=[*exe, "issue", name],
            )
        )

    bundled = tuple(issuance_unit_name(n) for n, i in identities.items() if i.needs_bundle)
    graph.add(
        Unit(
            name=BUNDLES_UNIT,
            description="Write per-identity connection bundles",
            requires=bundled,
            after=bundled,
            exec_start=[*exe, "synthesize-bundles"],
            wanted_by=(DEFAULT_TARGET,),
        )
    )

    for req in requirements:
        # Only this requirement's issuance units: unrelated certificate sets stay parallel.
        issuers = tuple(issuance_unit_name(n) for n in req.required_identities)
        gate = graph.add(
            Unit(
                name=gate_unit_name(req.service_name),
                description=f"Wait for certificates of {req.service_name}",
                requires=issuers,
                after=issuers,
                exec_start=[*exe, "wait-for-certs", req.service_name],
            )
        )
        graph.add(
            Unit(
                name=service_unit_name(req.service_name),
                requires=(gate.name,),
                after=(gate.name,),
                drop_in=True,
            )
        )

    api_unit = service_unit_name(api_service)
    if api_unit in graph:
        reconciler_deps = (api_unit, issuance_unit_name(reconciler_identity))
        graph.add(
            Unit(
                name=RECONCILE_UNIT,
                description="Create monitoring role bindings",
                requires=reconciler_deps,
                after=reconciler_deps,
                exec_start=[*exe, "reconcile"],
                wanted_by=(DEFAULT_TARGET,),
                restart=reconcile_restart,
            )
        )

    graph.validate()
    return graph


def render_systemd(unit: Unit) -> str:
    lines = ["[Unit]"]
    if unit.description and not unit.drop_in:
        lines.append(f"Description={unit.description}")
    if unit.requires:
        lines.append(f"Requires={' '.join(unit.requires)}")
    if unit.after:
        lines.append(f"After={' '.join(unit.after)}")
    if not unit.drop_in:
        lines += ["", "[Service]", "Type=oneshot", "RemainAfterExit=yes"]
        if unit.exec_start:
            lines.append(f"ExecStart={shlex.join(unit.exec_start)}")
        if unit.restart is not None:
            lines += ["Restart=on-failure", f"RestartSec={unit.restart.delay_seconds}"]
            if unit.restart.prevent_exit_codes:
                codes = " ".join(str(c) for c in unit.restart.prevent_exit_codes)
                lines.append(f"RestartPreventExitStatus={codes}")
        if unit.wanted_by:
            lines += ["", "[Install]", f"WantedBy={' '.join(unit.wanted_by)}"]
    return "\n".join(lines) + "\n"


def unit_files(graph: UnitGraph) -> dict[str, str]:
    """Relative file name -> content, ready to drop under /etc/systemd/system."""

    files: dict[str, str] = {}
    for unit in graph:
        path = f"{unit.name}.d/wait-for-certs.conf" if unit.drop_in else unit.name
        files[path] = render_systemd(unit)
    return files


# --- Module Notes -----------------------------------------------------------
# The graph is built from configuration only; nothing here touches the filesystem
# or the supervisor. The CLI writes `unit_files` out, the status API serves `to_dict`.
