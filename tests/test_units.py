"""
tests.test_units

Unit graph: gate wiring, narrow dependencies, validation, and systemd rendering.
"""

from __future__ import annotations

import pytest

from cluster_bootstrap.gate.requirements import DEFAULT_REQUIREMENTS
from cluster_bootstrap.gate.units import (
    BUNDLES_UNIT,
    RECONCILE_REJECTED_EXIT,
    RECONCILE_UNIT,
    TOKEN_UNIT,
    Unit,
    UnitGraph,
    build_unit_graph,
    gate_unit_name,
    issuance_unit_name,
    render_systemd,
    service_unit_name,
    unit_files,
)
from cluster_bootstrap.identity.registry import builtin_identities, list_identities


def upstream(graph: UnitGraph, name: str) -> set[str]:
    seen: set[str] = set()
    stack = [name]
    while stack:
        current = stack.pop()
        if current not in graph:
            continue
        unit = graph[current]
        for dep in (*unit.requires, *unit.after):
            if dep not in seen:
                seen.add(dep)
                stack.append(dep)
    return seen


@pytest.fixture
def graph() -> UnitGraph:
    return build_unit_graph(list_identities(["alice"], builtin_identities()), DEFAULT_REQUIREMENTS)


def test_service_requires_and_follows_its_gate(graph) -> None:
    service = graph[service_unit_name("kube-proxy")]
    gate = gate_unit_name("kube-proxy")
    assert service.drop_in
    assert gate in service.requires and gate in service.after


def test_gate_depends_on_exactly_its_issuance_units(graph) -> None:
    gate = graph[gate_unit_name("kube-controller-manager")]
    expected = {
        issuance_unit_name("kube-controller-manager"),
        issuance_unit_name("kube-controller-manager-client"),
        issuance_unit_name("service-account"),
    }
    assert set(gate.requires) == expected
    assert set(gate.after) == expected
    assert gate.exec_start == ["cluster-bootstrap", "wait-for-certs", "kube-controller-manager"]


def test_unrelated_certificate_sets_stay_parallel(graph) -> None:
    etcd_chain = upstream(graph, service_unit_name("etcd"))
    assert issuance_unit_name("kube-proxy-client") not in etcd_chain
    assert issuance_unit_name("etcd") in etcd_chain
    assert TOKEN_UNIT in etcd_chain


def test_reconciler_runs_after_the_api_service(graph) -> None:
    reconcile = graph[RECONCILE_UNIT]
    assert service_unit_name("kube-apiserver") in reconcile.requires
    assert gate_unit_name("kube-apiserver") in upstream(graph, RECONCILE_UNIT)
    assert issuance_unit_name("cluster-admin") in reconcile.after


def test_bundles_wait_for_bundled_identities_only(graph) -> None:
    bundles = graph[BUNDLES_UNIT]
    assert issuance_unit_name("alice") in bundles.requires
    assert issuance_unit_name("etcd") not in bundles.requires


def test_order_is_topological(graph) -> None:
    order = graph.order()
    assert order.index(TOKEN_UNIT) < order.index(issuance_unit_name("etcd"))
    assert order.index(gate_unit_name("etcd")) < order.index(service_unit_name("etcd"))


def test_validation_rejects_dangling_and_cyclic_edges() -> None:
    dangling = UnitGraph()
    dangling.add(Unit(name="a.service", requires=("missing.service",)))
    with pytest.raises(ValueError, match="unknown units"):
        dangling.validate()
    dangling.validate(external=("missing.service",))

    cyclic = UnitGraph()
    cyclic.add(Unit(name="a.service", after=("b.service",)))
    cyclic.add(Unit(name="b.service", after=("a.service",)))
    with pytest.raises(ValueError, match="cycle"):
        cyclic.validate()

    with pytest.raises(ValueError, match="twice"):
        cyclic.add(Unit(name="a.service"))


def test_systemd_rendering(graph) -> None:
    files = unit_files(graph)

    gate = files[gate_unit_name("etcd")]
    assert "Type=oneshot" in gate
    assert "RemainAfterExit=yes" in gate
    assert "ExecStart=cluster-bootstrap wait-for-certs etcd" in gate

    drop_in = files["etcd.service.d/wait-for-certs.conf"]
    assert drop_in == render_systemd(graph[service_unit_name("etcd")])
    assert "[Service]" not in drop_in
    assert f"Requires={gate_unit_name('etcd')}" in drop_in

    # Unreachable API: the supervisor retries. Rejected binding: it does not.
    reconcile = files[RECONCILE_UNIT]
    assert "Restart=on-failure" in reconcile
    assert "RestartSec=15" in reconcile
    assert f"RestartPreventExitStatus={RECONCILE_REJECTED_EXIT}" in reconcile
    assert "Restart=" not in gate


def test_json_export_lists_every_unit(graph) -> None:
    exported = graph.to_dict()["units"]
    assert len(exported) == len(graph)
    assert exported[0]["name"] == TOKEN_UNIT
