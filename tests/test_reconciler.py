"""
tests.test_reconciler

Authorization Reconciler against an in-memory cluster API (httpx.MockTransport).
"""

from __future__ import annotations

from typing import Any

import pytest

from cluster_bootstrap.errors import ApiUnavailableError, ReconciliationError
from cluster_bootstrap.gate.gate import BackoffPolicy
from cluster_bootstrap.reconciler.bindings import (
    MONITORING_BINDINGS,
    RoleBinding,
    RoleRef,
    Subject,
)
from cluster_bootstrap.reconciler.ensure import EnsureOutcome, ensure_exists
from cluster_bootstrap.reconciler.kube_client import ClusterApiClient
from cluster_bootstrap.reconciler.reconciler import JOB_NAME, AuthorizationReconciler

SENSU_PATH = "/apis/rbac.authorization.k8s.io/v1/clusterrolebindings/sensu"


class MemoryMarkers:
    def __init__(self) -> None:
        self.done: dict[str, dict[str, Any]] = {}

    async def is_done(self, job: str) -> bool:
        return job in self.done

    async def mark_done(self, job: str, details: dict[str, Any]) -> None:
        self.done[job] = details


def make_reconciler(http, clock, *, markers=None, bindings=MONITORING_BINDINGS):
    return AuthorizationReconciler(
        client=ClusterApiClient(http=http),
        bindings=bindings,
        markers=markers,
        api_wait_seconds=10.0,
        backoff=BackoffPolicy(initial=1.0, maximum=2.0),
        clock=clock,
        sleep=clock.sleep,
    )


@pytest.mark.asyncio
async def test_absent_binding_is_created_once(cluster_api, clock) -> None:
    async with cluster_api.client() as http:
        reconciler = make_reconciler(http, clock)
        first = await reconciler.run()
        second = await reconciler.run()

    assert first.outcomes == {"sensu": EnsureOutcome.created}
    assert second.outcomes == {"sensu": EnsureOutcome.existed}
    assert cluster_api.posts == [SENSU_PATH]
    created = cluster_api.objects[SENSU_PATH]
    assert created["roleRef"]["name"] == "view"
    assert created["subjects"] == [
        {"kind": "User", "name": "sensu", "apiGroup": "rbac.authorization.k8s.io"}
    ]


@pytest.mark.asyncio
async def test_existing_binding_with_other_role_is_left_alone(cluster_api, clock) -> None:
    existing = {
        "kind": "ClusterRoleBinding",
        "metadata": {"name": "sensu"},
        "roleRef": {"kind": "ClusterRole", "name": "cluster-admin"},
        "subjects": [{"kind": "User", "name": "someone-else"}],
    }
    cluster_api.objects[SENSU_PATH] = dict(existing)

    async with cluster_api.client() as http:
        report = await make_reconciler(http, clock).run()

    assert report.outcomes == {"sensu": EnsureOutcome.existed}
    assert cluster_api.posts == []
    assert cluster_api.objects[SENSU_PATH] == existing


@pytest.mark.asyncio
async def test_conflict_between_check_and_create_counts_as_success(cluster_api, clock) -> None:
    cluster_api.race.add("sensu")
    async with cluster_api.client() as http:
        report = await make_reconciler(http, clock).run()
    assert report.outcomes == {"sensu": EnsureOutcome.raced}


@pytest.mark.asyncio
async def test_permanent_rejection_is_reported(cluster_api, clock) -> None:
    cluster_api.reject["sensu"] = 422
    markers = MemoryMarkers()
    async with cluster_api.client() as http:
        with pytest.raises(ReconciliationError) as exc:
            await make_reconciler(http, clock, markers=markers).run()

    assert exc.value.status_code == 422
    assert "invalid roleRef" in str(exc.value)
    assert JOB_NAME not in markers.done


@pytest.mark.asyncio
async def test_malformed_descriptor_fails_before_any_request(cluster_api, clock) -> None:
    broken = (RoleBinding(name="broken", role_ref=RoleRef(name="view"), subjects=()),)
    async with cluster_api.client() as http:
        with pytest.raises(ReconciliationError):
            await make_reconciler(http, clock, bindings=broken).run()
    assert cluster_api.posts == []


@pytest.mark.asyncio
async def test_waits_for_the_api_to_become_ready(cluster_api, clock) -> None:
    cluster_api.unready = 2
    async with cluster_api.client() as http:
        report = await make_reconciler(http, clock).run()
    assert report.outcomes == {"sensu": EnsureOutcome.created}
    assert clock.sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_unreachable_api_is_transient(cluster_api, clock) -> None:
    cluster_api.unready = 1000
    async with cluster_api.client() as http:
        with pytest.raises(ApiUnavailableError):
            await make_reconciler(http, clock).run()
    assert cluster_api.posts == []


@pytest.mark.asyncio
async def test_completion_marker_skips_later_runs(cluster_api, clock) -> None:
    markers = MemoryMarkers()
    async with cluster_api.client() as http:
        await make_reconciler(http, clock, markers=markers).run()
        assert JOB_NAME in markers.done

        del cluster_api.objects[SENSU_PATH]
        skipped = await make_reconciler(http, clock, markers=markers).run()
        assert skipped.skipped
        assert SENSU_PATH not in cluster_api.objects

        forced = await make_reconciler(http, clock, markers=markers).run(force=True)
        assert forced.outcomes == {"sensu": EnsureOutcome.created}


@pytest.mark.asyncio
async def test_ensure_exists_only_creates_when_absent() -> None:
    calls: list[str] = []

    async def create() -> None:
        calls.append("create")

    async def present() -> bool:
        return True

    async def absent() -> bool:
        return False

    assert await ensure_exists("k", exists=present, create=create) is EnsureOutcome.existed
    assert await ensure_exists("k", exists=absent, create=create) is EnsureOutcome.created
    assert calls == ["create"]


def test_service_account_subject_carries_namespace() -> None:
    assert Subject(name="ci", kind="ServiceAccount").to_manifest() == {
        "kind": "ServiceAccount",
        "name": "ci",
        "namespace": "default",
    }
