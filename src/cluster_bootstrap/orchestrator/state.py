"""
cluster_bootstrap.orchestrator.state

Typed state schema of a provisioning run.

Responsibilities:
- Define the contract between nodes (inputs/outputs).
- Keep every value JSON-friendly so each checkpoint can be stored as-is.
"""

from __future__ import annotations

from typing import Annotated, Any, TypedDict

from cluster_bootstrap.orchestrator.reducers import (
    append_events,
    latest_gate_snapshots,
    union_ordered,
)


class ProvisioningState(TypedDict, total=False):
    run_id: str

    # Inputs
    admin_members: list[str]

    # Registry -> issuance -> bundles
    identities: dict[str, dict[str, Any]]
    token: dict[str, Any]
    materials: dict[str, dict[str, str]]
    ca_cert: str | None
    endpoint: str
    bundles: dict[str, str]

    # Readiness
    gates: Annotated[dict[str, dict[str, Any]], latest_gate_snapshots]
    started_services: Annotated[list[str], union_ordered]
    api_ready: bool

    # Authorization
    reconcile: dict[str, Any]

    # Reasons the run finished in a degraded state
    degraded: Annotated[list[str], union_ordered]

    audit_log: Annotated[list[dict[str, Any]], append_events]


# --- Module Notes -----------------------------------------------------------
# Secrets never enter the state: the token node records path/owner/mode only, and the
# issuance node re-reads the token file it needs.
