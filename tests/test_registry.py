"""
tests.test_registry

Identity Registry: one identity per unique name, admin mapping, malformed input.
"""

from __future__ import annotations

import pytest

from cluster_bootstrap.errors import DuplicateIdentityError, IdentityError
from cluster_bootstrap.identity.models import Identity, IdentityKind
from cluster_bootstrap.identity.registry import (
    MASTERS_ORG,
    admin_identity,
    builtin_identities,
    list_identities,
)


def test_admin_members_become_cluster_admins_first() -> None:
    identities = list_identities(["alice", "bob"], builtin_identities())

    names = list(identities)
    assert names[:2] == ["alice", "bob"]
    alice = identities["alice"]
    assert alice.kind is IdentityKind.admin
    assert alice.organization_fields == {"O": MASTERS_ORG}
    assert alice.private_key_owner == "alice"


def test_one_identity_per_unique_name() -> None:
    identities = list_identities(["alice"], builtin_identities())
    assert len(identities) == len({i.name for i in identities.values()})
    assert {"cluster-admin", "sensu", "kube-apiserver", "service-account"} <= set(identities)


def test_duplicate_admin_member_is_rejected() -> None:
    with pytest.raises(DuplicateIdentityError) as exc:
        list_identities(["alice", "alice"], builtin_identities())
    assert "alice" in str(exc.value)


def test_admin_named_like_builtin_is_rejected() -> None:
    with pytest.raises(DuplicateIdentityError):
        list_identities(["sensu"], builtin_identities())


@pytest.mark.parametrize("name", ["", "../etc", "has space", "-leading-dash"])
def test_malformed_names_are_rejected(name: str) -> None:
    with pytest.raises(IdentityError):
        list_identities([name], ())


def test_monitoring_identity_is_owned_by_sensu_client() -> None:
    sensu = list_identities([], builtin_identities())["sensu"]
    assert sensu.common_name == "sensu"
    assert sensu.organization_fields == {"O": "default:sensu"}
    assert sensu.private_key_owner == "sensuclient"
    assert sensu.needs_bundle


def test_api_server_certificate_covers_every_address() -> None:
    apiserver = list_identities([], builtin_identities(["x.example", "y.example"]))["kube-apiserver"]
    assert apiserver.hosts[:2] == ("x.example", "y.example")
    assert "kubernetes.default.svc" in apiserver.hosts
    assert not apiserver.needs_bundle


def test_identity_round_trips_through_run_state() -> None:
    original = admin_identity("carol")
    assert Identity.from_dict(original.to_dict()) == original
