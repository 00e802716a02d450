from __future__ import annotations

from pathlib import Path
from typing import Any

from cluster_bootstrap.bundles.synthesizer import select_endpoint, synthesize_all
from cluster_bootstrap.errors import ApiUnavailableError, ReconciliationError
from cluster_bootstrap.gate.gate import (
    CertificateCheck,
    GateState,
    GateStatus,
    ReadinessGate,
    wait_for_all,
)
from cluster_bootstrap.gate.requirements import API_SERVICE, validate_requirements
from cluster_bootstrap.identity.models import CertificateMaterial, Identity
from cluster_bootstrap.identity.registry import builtin_identities, list_identities
from cluster_bootstrap.observability.logging import get_logger
from cluster_bootstrap.orchestrator.context import ProvisioningContext
from cluster_bootstrap.orchestrator.state import ProvisioningState
from cluster_bootstrap.pki.issuance import IssuanceAdapter
from cluster_bootstrap.pki.token import TokenDeriver, auth_key_from_token, load_token
from cluster_bootstrap.services.supervisor import SupervisorError
from cluster_bootstrap.services.wiring import gate_backoff

log = get_logger(__name__)


def _event(event: str, **details: Any) -> list[dict[str, Any]]:
    return [{"event": event, "details": details}]


def _identities(state: ProvisioningState) -> dict[str, Identity]:
    return {n: Identity.from_dict(d) for n, d in state.get("identities", {}).items()}


def _materials(state: ProvisioningState, identities: dict[str, Identity]) -> dict[str, CertificateMaterial]:
    return {
        n: CertificateMaterial(
            identity=identities[n], cert_path=Path(m["cert_path"]), key_path=Path(m["key_path"])
        )
        for n, m in state.get("materials", {}).items()
    }


async def entry_node(state: ProvisioningState) -> dict[str, Any]:
    if not str(state.get("run_id", "")).strip():
        raise ValueError("Missing run_id")
    members = state.get("admin_members", [])
    if not isinstance(members, list):
        raise ValueError("admin_members must be a list")
    return {"audit_log": _event("ENTRY", admin_members=list(members))}


async def registry_node(state: ProvisioningState, *, ctx: ProvisioningContext) -> dict[str, Any]:
    identities = list_identities(
        state.get("admin_members", []),
        builtin_identities(ctx.settings.addresses),
    )
    # Unknown identities in the readiness table are a configuration error, caught before issuance.
    validate_requirements(ctx.requirements, identities)
    return {
        "identities": {n: i.to_dict() for n, i in identities.items()},
        "audit_log": _event("REGISTRY", identities=list(identities)),
    }


async def token_node(state: ProvisioningState, *, ctx: ProvisioningContext) -> dict[str, Any]:
    settings = ctx.settings
    deriver = TokenDeriver(
        path=settings.token_path,
        owner=settings.token_owner,
        length=settings.token_length,
        enforce_ownership=settings.enforce_ownership,
    )
    token = deriver.derive_from_file(settings.password_file)
    recorded = {"path": str(token.path), "owner": token.owner, "mode": f"{token.mode:04o}"}
    return {"token": recorded, "audit_log": _event("TOKEN_DERIVED", **recorded)}


async def issuance_node(state: ProvisioningState, *, ctx: ProvisioningContext) -> dict[str, Any]:
    identities = _identities(state)
    auth_key = auth_key_from_token(load_token(ctx.settings.token_path))

    async with ctx.open_ca(auth_key) as ca:
        adapter = IssuanceAdapter(ca=ca, layout=ctx.layout, profile=ctx.settings.ca_profile)
        # Any IssuanceError propagates: the run never continues with a partial identity set.
        materials = await adapter.issue_all(identities.values())
        ca_cert = await adapter.ensure_ca_certificate(ctx.settings.ca_cert)

    return {
        "materials": {n: m.to_dict() for n, m in materials.items()},
        "ca_cert": str(ca_cert) if ca_cert else None,
        "audit_log": _event("ISSUED", identities=list(materials)),
    }


async def bundles_node(state: ProvisioningState, *, ctx: ProvisioningContext) -> dict[str, Any]:
    settings = ctx.settings
    identities = _identities(state)
    materials = _materials(state, identities)
    endpoint = select_endpoint(settings.addresses, settings.apiserver_port)
    ca_cert = state.get("ca_cert")

    written = synthesize_all(
        identities,
        materials,
        endpoint=endpoint,
        directory=settings.kubeconfig_dir,
        enforce_ownership=settings.enforce_ownership,
        certificate_authority=Path(ca_cert).read_bytes() if ca_cert else None,
    )
    return {
        "endpoint": endpoint,
        "bundles": {n: str(p) for n, p in written.items()},
        "audit_log": _event("BUNDLES_WRITTEN", endpoint=endpoint, principals=list(written)),
    }


async def gates_node(state: ProvisioningState, *, ctx: ProvisioningContext) -> dict[str, Any]:
    settings = ctx.settings
    check = CertificateCheck(ctx.layout, _identities(state))
    backoff = gate_backoff(settings)
    gates = [
        ReadinessGate(
            req,
            check=check,
            deadline=settings.gate_deadline_seconds,
            backoff=backoff,
            clock=ctx.clock,
            sleep=ctx.sleep,
            observer=ctx.gate_observer,
        )
        for req in ctx.requirements
    ]

    started: list[str] = []
    degraded: list[str] = []

    async def start_service(status: GateStatus) -> None:
        if not settings.start_services:
            return
        try:
            await ctx.supervisor.start(status.service_name)
        except SupervisorError as e:
            log.error("service_start_failed", service=status.service_name, error=str(e))
            degraded.append(f"{status.service_name}: {e}")
            return
        started.append(status.service_name)

    statuses = await wait_for_all(gates, on_satisfied=start_service)

    for name, status in statuses.items():
        if status.state is GateState.failed:
            degraded.append(status.error or f"{name}: readiness gate failed")

    api = statuses.get(API_SERVICE)
    api_ready = (
        api is not None
        and api.state is GateState.satisfied
        and (API_SERVICE in started or not settings.start_services)
    )
    return {
        "gates": {n: s.to_dict() for n, s in statuses.items()},
        "started_services": started,
        "api_ready": api_ready,
        "degraded": degraded,
        "audit_log": _event(
            "GATES_EVALUATED",
            states={n: str(s.state) for n, s in statuses.items()},
            started=started,
        ),
    }


async def reconcile_node(state: ProvisioningState, *, ctx: ProvisioningContext) -> dict[str, Any]:
    settings = ctx.settings
    identities = _identities(state)
    materials = _materials(state, identities)
    material = materials[settings.reconciler_identity]
    ca_cert = state.get("ca_cert")

    try:
        async with ctx.open_reconciler(
            material, Path(ca_cert) if ca_cert else None, state["endpoint"]
        ) as reconciler:
            report = await reconciler.run()
    except (ReconciliationError, ApiUnavailableError) as e:
        # Reported, not rolled back: the services stay up, only the binding is missing.
        log.error("reconcile_failed", error=str(e))
        return {
            "reconcile": {"error": str(e), "error_type": type(e).__name__},
            "degraded": [f"reconcile: {e}"],
            "audit_log": _event("RECONCILE_FAILED", error=str(e)),
        }

    return {
        "reconcile": report.to_dict(),
        "audit_log": _event("RECONCILED", **report.to_dict()),
    }


def route_after_gates(state: ProvisioningState) -> str:
    if state.get("api_ready"):
        return "reconcile"
    return "finish"


async def finish_node(state: ProvisioningState) -> dict[str, Any]:
    degraded = list(state.get("degraded", []))
    return {
        "audit_log": _event(
            "FINISH",
            status="DEGRADED" if degraded else "COMPLETED",
            degraded=degraded,
        )
    }
