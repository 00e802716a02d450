"""
tests.test_gate

Readiness Gate state machine, driven by a fake clock.
"""

from __future__ import annotations

import os
import pwd

import pytest

from cluster_bootstrap.errors import ReadinessTimeoutError
from cluster_bootstrap.gate.gate import (
    BackoffPolicy,
    CertificateCheck,
    GateState,
    GateStatus,
    ReadinessGate,
    wait_for_all,
)
from cluster_bootstrap.gate.requirements import ReadinessRequirement
from cluster_bootstrap.identity.models import Identity, IdentityKind
from cluster_bootstrap.pki import fs
from cluster_bootstrap.pki.issuance import MaterialLayout

IDENTITIES = {
    n: Identity(name=n, common_name=n, kind=IdentityKind.component) for n in ("a", "b", "c")
}


@pytest.fixture
def layout(tmp_path) -> MaterialLayout:
    return MaterialLayout(tmp_path, enforce_ownership=False)


def write_material(layout: MaterialLayout, name: str) -> None:
    material = layout.material_for(IDENTITIES[name])
    fs.write_public_file(material.cert_path, f"cert {name}".encode())
    fs.write_private_file(material.key_path, f"key {name}".encode(), owner=None)


def make_gate(
    layout, clock, requirement, *, deadline=10.0, observer=None, sleep=None
) -> ReadinessGate:
    return ReadinessGate(
        requirement,
        check=CertificateCheck(layout, IDENTITIES),
        deadline=deadline,
        backoff=BackoffPolicy(initial=1.0, maximum=4.0),
        clock=clock,
        sleep=sleep or clock.sleep,
        observer=observer,
    )


def test_backoff_is_bounded() -> None:
    policy = BackoffPolicy(initial=1.0, maximum=4.0, multiplier=2.0)
    assert [policy.delay(n) for n in range(5)] == [1.0, 2.0, 4.0, 4.0, 4.0]


@pytest.mark.asyncio
async def test_fails_attributing_the_identity_still_missing(layout, clock) -> None:
    requirement = ReadinessRequirement.of("svc", ["a", "b"])
    write_material(layout, "a")
    gate = make_gate(layout, clock, requirement)

    with pytest.raises(ReadinessTimeoutError) as exc:
        await gate.wait()

    assert gate.state is GateState.failed
    assert exc.value.identity == "b"
    assert exc.value.service == "svc"
    assert gate.status.missing == {"b": "certificate missing or empty"}
    assert clock.now == pytest.approx(10.0)

    # Written after the deadline: the failed gate stays failed.
    write_material(layout, "b")
    with pytest.raises(ReadinessTimeoutError):
        await gate.wait()
    assert gate.state is GateState.failed


@pytest.mark.asyncio
async def test_pending_until_every_identity_is_present(layout, clock) -> None:
    requirement = ReadinessRequirement.of("svc", ["a", "b"])
    write_material(layout, "a")
    seen: list[GateState] = []

    async def observe(status: GateStatus) -> None:
        seen.append(status.state)

    async def sleep_then_issue_b(seconds: float) -> None:
        await clock.sleep(seconds)
        if clock.now >= 3.0:
            write_material(layout, "b")

    gate = make_gate(layout, clock, requirement, observer=observe, sleep=sleep_then_issue_b)
    status = await gate.wait()

    assert status.state is GateState.satisfied
    assert seen == [GateState.pending, GateState.satisfied]
    assert status.missing == {}
    assert status.attempts == 3


@pytest.mark.asyncio
async def test_each_tick_rechecks_from_scratch(layout, clock) -> None:
    requirement = ReadinessRequirement.of("svc", ["a"])
    write_material(layout, "a")
    gate = make_gate(layout, clock, requirement)

    assert gate.evaluate() == {}
    layout.material_for(IDENTITIES["a"]).key_path.write_bytes(b"")
    assert gate.evaluate() == {"a": "key empty"}


@pytest.mark.asyncio
async def test_world_readable_key_does_not_count(layout, clock) -> None:
    write_material(layout, "a")
    layout.material_for(IDENTITIES["a"]).key_path.chmod(0o644)
    gate = make_gate(layout, clock, ReadinessRequirement.of("svc", ["a"]), deadline=2.0)

    with pytest.raises(ReadinessTimeoutError):
        await gate.wait()
    assert gate.status.missing["a"].startswith("key mode 0644")


@pytest.mark.asyncio
async def test_restart_begins_from_pending(layout, clock) -> None:
    gate = make_gate(layout, clock, ReadinessRequirement.of("svc", ["a"]), deadline=1.0)
    with pytest.raises(ReadinessTimeoutError):
        await gate.wait()

    gate.reset()
    assert gate.state is GateState.pending
    write_material(layout, "a")
    assert (await gate.wait()).state is GateState.satisfied


@pytest.mark.asyncio
async def test_failed_gate_only_fails_its_own_service(layout, clock) -> None:
    write_material(layout, "a")
    ready = make_gate(layout, clock, ReadinessRequirement.of("ready", ["a"]))
    blocked = make_gate(layout, clock, ReadinessRequirement.of("blocked", ["a", "c"]))
    started: list[str] = []

    async def start(status: GateStatus) -> None:
        started.append(status.service_name)

    statuses = await wait_for_all([ready, blocked], on_satisfied=start)

    assert statuses["ready"].state is GateState.satisfied
    assert statuses["blocked"].state is GateState.failed
    assert "'c'" in (statuses["blocked"].error or "")
    assert started == ["ready"]


def current_account() -> str:
    return pwd.getpwuid(os.getuid()).pw_name


def other_account() -> str:
    for name in ("nobody", "root", "daemon"):
        try:
            if pwd.getpwnam(name).pw_uid != os.getuid():
                return name
        except KeyError:
            continue
    pytest.skip("no second local account to own the key")


def test_key_must_belong_to_its_owner(tmp_path) -> None:
    key = tmp_path / "k-key.pem"
    fs.write_private_file(key, b"key", owner=None)

    assert fs.private_file_problem(key, owner=current_account()) is None
    assert fs.private_file_problem(key, owner=None) is None
    problem = fs.private_file_problem(key, owner=other_account())
    assert problem is not None and problem.startswith(f"owned by uid {os.getuid()}")


@pytest.mark.asyncio
async def test_gate_waits_for_keys_owned_by_the_right_account(tmp_path, clock) -> None:
    enforcing = MaterialLayout(tmp_path, enforce_ownership=True)
    owners = {"mine": current_account(), "theirs": other_account()}
    identities = {
        name: Identity(name=name, common_name=name, private_key_owner=owner)
        for name, owner in owners.items()
    }
    for identity in identities.values():
        material = enforcing.material_for(identity)
        fs.write_public_file(material.cert_path, b"cert")
        fs.write_private_file(material.key_path, b"key", owner=None)

    def gate_for(name: str) -> ReadinessGate:
        return ReadinessGate(
            ReadinessRequirement.of(f"svc-{name}", [name]),
            check=CertificateCheck(enforcing, identities),
            deadline=5.0,
            backoff=BackoffPolicy(initial=1.0, maximum=2.0),
            clock=clock,
            sleep=clock.sleep,
        )

    assert (await gate_for("mine").wait()).state is GateState.satisfied

    wrong_owner = gate_for("theirs")
    with pytest.raises(ReadinessTimeoutError):
        await wrong_owner.wait()
    assert wrong_owner.state is GateState.failed
    assert wrong_owner.status.missing["theirs"].startswith("key owned by uid")
