"""
cluster_bootstrap.reconciler.bindings

Desired-state role binding descriptors.

Responsibilities:
- Describe ClusterRoleBindings as immutable data and render them as API manifests.
- Hold the fixed set of bindings the reconciler makes exist (monitoring read-only access).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from cluster_bootstrap.errors import ReconciliationError

RBAC_GROUP = "rbac.authorization.k8s.io"


@dataclass(frozen=True, slots=True)
class RoleRef:
    name: str
    kind: str = "ClusterRole"
    api_group: str = RBAC_GROUP


@dataclass(frozen=True, slots=True)
class Subject:
    name: str
    kind: str = "User"
    namespace: str | None = None

    def to_manifest(self) -> dict[str, Any]:
        out: dict[str, Any] = {"kind": self.kind, "name": self.name}
        if self.kind == "ServiceAccount":
            out["namespace"] = self.namespace or "default"
        elif self.kind in ("User", "Group"):
            out["apiGroup"] = RBAC_GROUP
        return out


@dataclass(frozen=True, slots=True)
class RoleBinding:
    name: str
    role_ref: RoleRef
    subjects: tuple[Subject, ...]

    def validate(self) -> None:
        if not self.name:
            raise ReconciliationError("<unnamed>", "binding has no name")
        if not self.role_ref.name:
            raise ReconciliationError(self.name, "binding has no role reference")
        if not self.subjects:
            raise ReconciliationError(self.name, "binding has no subjects")

    def to_manifest(self) -> dict[str, Any]:
        return {
            "apiVersion": f"{RBAC_GROUP}/v1",
            "kind": "ClusterRoleBinding",
            "metadata": {"name": self.name},
            "roleRef": {
                "apiGroup": self.role_ref.api_group,
                "kind": self.role_ref.kind,
                "name": self.role_ref.name,
            },
            "subjects": [s.to_manifest() for s in self.subjects],
        }


MONITORING_BINDINGS: tuple[RoleBinding, ...] = (
    RoleBinding(name="sensu", role_ref=RoleRef(name="view"), subjects=(Subject(name="sensu"),)),
)


def cluster_admin_binding(service_account: str, *, namespace: str = "default") -> RoleBinding:
    return RoleBinding(
        name=f"cluster-admin-{service_account}",
        role_ref=RoleRef(name="cluster-admin"),
        subjects=(Subject(name=service_account, kind="ServiceAccount", namespace=namespace),),
    )
