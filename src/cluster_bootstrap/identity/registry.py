"""
cluster_bootstrap.identity.registry

Identity Registry: enumerates every principal that needs a certificate.

Responsibilities:
- Turn administrative group members into cluster-admin identities.
- Merge them with the fixed table of built-in system and component identities.
- Reject duplicate and malformed names before anything is issued.
"""

from __future__ import annotations

import grp
import re
from collections.abc import Iterable, Sequence

from cluster_bootstrap.errors import DuplicateIdentityError, IdentityError
from cluster_bootstrap.identity.models import Identity, IdentityKind

MASTERS_ORG = "system:masters"

# Names become file names (<name>.pem, <name>.kubeconfig) and unit names.
_NAME_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")

# In-cluster names the API server certificate is always valid for.
_APISERVER_INTERNAL_HOSTS = (
    "kubernetes",
    "kubernetes.default",
    "kubernetes.default.svc",
    "kubernetes.default.svc.cluster.local",
    "10.0.0.1",
    "127.0.0.1",
)


def admin_identity(member: str) -> Identity:
    return Identity(
        name=member,
        common_name=member,
        organization_fields={"O": MASTERS_ORG},
        private_key_owner=member,
        kind=IdentityKind.admin,
    )


def builtin_identities(addresses: Sequence[str] = ()) -> tuple[Identity, ...]:
    """
    Fixed identities every master needs, independent of group membership.

    `addresses` are the externally reachable API names; they become extra
    subject alternative names on the API server certificate.
    """

    def component(name: str, cn: str, owner: str = "kubernetes", **fields: str) -> Identity:
        return Identity(
            name=name,
            common_name=cn,
            organization_fields=dict(fields),
            private_key_owner=owner,
            kind=IdentityKind.component,
        )

    apiserver_hosts = tuple(dict.fromkeys([*addresses, *_APISERVER_INTERNAL_HOSTS]))

    return (
        Identity(
            name="cluster-admin",
            common_name="cluster-admin",
            organization_fields={"O": MASTERS_ORG},
            private_key_owner="root",
            kind=IdentityKind.system,
        ),
        Identity(
            name="sensu",
            common_name="sensu",
            organization_fields={"O": "default:sensu"},
            private_key_owner="sensuclient",
            kind=IdentityKind.system,
        ),
        component("etcd", "etcd.local", owner="etcd"),
        component("flannel-client", "flannel-client", owner="flannel"),
        component("kube-addon-manager", "system:kube-addon-manager"),
        Identity(
            name="kube-apiserver",
            common_name="kubernetes",
            private_key_owner="kubernetes",
            kind=IdentityKind.component,
            hosts=apiserver_hosts,
        ),
        component("kube-apiserver-kubelet-client", "system:kube-apiserver", O=MASTERS_ORG),
        component("kube-apiserver-etcd-client", "etcd-client"),
        component("service-account", "system:service-account-signer"),
        component("kube-proxy-client", "system:kube-proxy", O="system:node-proxier"),
        component("kube-controller-manager", "kube-controller-manager"),
        component("kube-controller-manager-client", "system:kube-controller-manager"),
    )


def members_of_group(group: str) -> list[str]:
    try:
        entry = grp.getgrnam(group)
    except KeyError:
        return []
    return sorted(entry.gr_mem)


def list_identities(
    admin_members: Iterable[str],
    builtin: Iterable[Identity] | None = None,
) -> dict[str, Identity]:
    """
    Pure function of the admin member list and the built-in table.

    Returns identities keyed by name, admin members first in the given order.
    """

    identities: dict[str, Identity] = {}
    table = builtin_identities() if builtin is None else builtin
    for identity in [*(admin_identity(m) for m in admin_members), *table]:
        _validate(identity)
        if identity.name in identities:
            raise DuplicateIdentityError(identity.name)
        identities[identity.name] = identity
    return identities


def is_valid_name(name: str) -> bool:
    return bool(_NAME_RE.match(name or ""))


def _validate(identity: Identity) -> None:
    if not is_valid_name(identity.name):
        raise IdentityError(f"malformed identity name {identity.name!r}")
    if not identity.common_name:
        raise IdentityError(f"identity {identity.name!r} has no common name")
    if not identity.private_key_owner:
        raise IdentityError(f"identity {identity.name!r} has no private key owner")


# --- Module Notes -----------------------------------------------------------
# An admin account named like a built-in identity (e.g. "sensu") is a configuration
# error: both would claim the same certificate and bundle paths.
