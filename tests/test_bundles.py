"""
tests.test_bundles

Bundle Synthesizer and resolver: first address wins, self-contained output, per-account lookup.
"""

from __future__ import annotations

import base64
import json
import stat

import pytest
import pytest_asyncio

from cluster_bootstrap.bundles.resolver import bundle_principal, resolve_bundle, shell_init
from cluster_bootstrap.bundles.synthesizer import (
    bundle_path,
    load_bundle,
    select_endpoint,
    synthesize,
    synthesize_all,
)
from cluster_bootstrap.errors import NoBundleForPrincipalError
from cluster_bootstrap.identity.registry import builtin_identities, list_identities
from cluster_bootstrap.pki.issuance import IssuanceAdapter, MaterialLayout


@pytest_asyncio.fixture
async def issued(tmp_path, fake_ca):
    identities = list_identities(["alice"], builtin_identities(["x.example"]))
    adapter = IssuanceAdapter(
        ca=fake_ca, layout=MaterialLayout(tmp_path / "secrets", enforce_ownership=False)
    )
    materials = await adapter.issue_all(identities.values())
    return identities, materials


def test_first_address_is_canonical() -> None:
    assert select_endpoint(["x.example", "y.example"], 6443) == "https://x.example:6443"
    with pytest.raises(ValueError):
        select_endpoint([], 6443)


@pytest.mark.asyncio
async def test_every_bundle_uses_the_first_address(tmp_path, issued) -> None:
    identities, materials = issued
    addresses = ["x.example", "y.example"]
    written = synthesize_all(
        identities,
        materials,
        endpoint=select_endpoint(addresses, 6443),
        directory=tmp_path / "kube",
        enforce_ownership=False,
    )
    # Reordering afterwards does not touch what was written.
    addresses.reverse()

    assert set(written) == {"alice", "cluster-admin", "sensu"}
    for path in written.values():
        assert load_bundle(path).endpoint == "https://x.example:6443"
        assert stat.S_IMODE(path.stat().st_mode) == 0o600


@pytest.mark.asyncio
async def test_bundle_embeds_certificate_and_key(issued) -> None:
    identities, materials = issued
    bundle = synthesize(
        identities["alice"],
        materials["alice"],
        "https://x.example:6443",
        certificate_authority=b"CA-BYTES",
    )
    doc = bundle.to_kubeconfig()

    user = doc["users"][0]["user"]
    assert base64.b64decode(user["client-certificate-data"]) == materials["alice"].read_cert()
    assert base64.b64decode(user["client-key-data"]) == materials["alice"].read_key()
    cluster = doc["clusters"][0]["cluster"]
    assert cluster["server"] == "https://x.example:6443"
    assert base64.b64decode(cluster["certificate-authority-data"]) == b"CA-BYTES"
    assert doc["current-context"] == "alice@local"
    assert json.loads(bundle.render()) == doc


def test_superuser_resolves_the_administrative_bundle(tmp_path) -> None:
    bundle_path(tmp_path, "cluster-admin").write_text("{}")
    bundle_path(tmp_path, "alice").write_text("{}")

    assert resolve_bundle(tmp_path, account="root", uid=0, admin_bundle="cluster-admin") == (
        tmp_path / "cluster-admin.kubeconfig"
    )
    assert resolve_bundle(tmp_path, account="alice", uid=1000, admin_bundle="cluster-admin") == (
        tmp_path / "alice.kubeconfig"
    )
    assert bundle_principal(account="alice", uid=0, admin_bundle="cluster-admin") == "cluster-admin"


def test_account_without_bundle_fails_resolution(tmp_path) -> None:
    with pytest.raises(NoBundleForPrincipalError) as exc:
        resolve_bundle(tmp_path, account="mallory", uid=1001, admin_bundle="cluster-admin")
    assert exc.value.principal == "mallory"


@pytest.mark.parametrize("account", ["../outside", "..", "", "a/b"])
def test_account_names_cannot_leave_the_bundle_directory(tmp_path, account) -> None:
    bundles = tmp_path / "kubeconfig"
    bundles.mkdir()
    (tmp_path / "outside.kubeconfig").write_text("{}")
    (bundles / "a").mkdir()
    (bundles / "a" / "b.kubeconfig").write_text("{}")

    with pytest.raises(NoBundleForPrincipalError):
        resolve_bundle(bundles, account=account, uid=1001, admin_bundle="cluster-admin")


def test_shell_init_mirrors_resolution(tmp_path) -> None:
    snippet = shell_init(tmp_path, admin_bundle="cluster-admin")
    assert f"KUBECONFIG={tmp_path}/cluster-admin.kubeconfig" in snippet
    assert f"KUBECONFIG={tmp_path}/$USER.kubeconfig" in snippet
