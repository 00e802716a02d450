"""
tests.test_reducers

How node updates fold into the run state.
"""

from __future__ import annotations

from cluster_bootstrap.orchestrator.reducers import (
    append_events,
    latest_gate_snapshots,
    union_ordered,
)


def test_replayed_service_start_is_listed_once() -> None:
    assert union_ordered(["etcd", "flannel"], ["flannel", "kube-apiserver"]) == [
        "etcd",
        "flannel",
        "kube-apiserver",
    ]
    assert union_ordered(None, None) == []


def test_audit_entries_keep_their_order() -> None:
    first = [{"event": "ISSUED"}]
    assert append_events(first, [{"event": "BUNDLES_WRITTEN"}]) == [
        {"event": "ISSUED"},
        {"event": "BUNDLES_WRITTEN"},
    ]
    assert append_events(None, first) == first


def test_newest_gate_snapshot_wins_per_service() -> None:
    earlier = {"etcd": {"state": "PENDING"}, "flannel": {"state": "PENDING"}}
    merged = latest_gate_snapshots(earlier, {"etcd": {"state": "SATISFIED"}})
    assert merged == {"etcd": {"state": "SATISFIED"}, "flannel": {"state": "PENDING"}}
    assert earlier["etcd"] == {"state": "PENDING"}
