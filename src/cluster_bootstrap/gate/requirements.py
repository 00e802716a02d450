"""
cluster_bootstrap.gate.requirements

Which certificates each dependent service needs before it may start.

Responsibilities:
- Define `ReadinessRequirement` (service -> ordered set of identity names).
- Hold the default table for a master node.
- Reject requirements that reference identities the registry does not know.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from cluster_bootstrap.errors import IdentityError
from cluster_bootstrap.identity.models import Identity

API_SERVICE = "kube-apiserver"


@dataclass(frozen=True, slots=True)
class ReadinessRequirement:
    service_name: str
    required_identities: tuple[str, ...]

    @classmethod
    def of(cls, service_name: str, identities: Iterable[str]) -> ReadinessRequirement:
        # Ordered set: first occurrence wins.
        return cls(service_name=service_name, required_identities=tuple(dict.fromkeys(identities)))


DEFAULT_REQUIREMENTS: tuple[ReadinessRequirement, ...] = (
    ReadinessRequirement.of("etcd", ["etcd"]),
    ReadinessRequirement.of("flannel", ["flannel-client"]),
    ReadinessRequirement.of("kube-addon-manager", ["kube-addon-manager"]),
    ReadinessRequirement.of(
        API_SERVICE,
        [
            "kube-apiserver",
            "kube-apiserver-kubelet-client",
            "kube-apiserver-etcd-client",
            "service-account",
        ],
    ),
    ReadinessRequirement.of("kube-proxy", ["kube-proxy-client"]),
    ReadinessRequirement.of(
        "kube-controller-manager",
        [
            "kube-controller-manager",
            "kube-controller-manager-client",
            "service-account",
        ],
    ),
)


def validate_requirements(
    requirements: Sequence[ReadinessRequirement],
    identities: Mapping[str, Identity],
) -> None:
    seen: set[str] = set()
    for req in requirements:
        if req.service_name in seen:
            raise IdentityError(f"service {req.service_name!r} has more than one requirement")
        seen.add(req.service_name)
        if not req.required_identities:
            raise IdentityError(f"service {req.service_name!r} requires no identities")
        unknown = [n for n in req.required_identities if n not in identities]
        if unknown:
            raise IdentityError(
                f"service {req.service_name!r} requires unknown identities: {', '.join(unknown)}"
            )


def requirement_for(
    requirements: Sequence[ReadinessRequirement], service_name: str
) -> ReadinessRequirement:
    for req in requirements:
        if req.service_name == service_name:
            return req
    raise KeyError(service_name)
