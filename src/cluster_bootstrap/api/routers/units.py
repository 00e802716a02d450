from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from cluster_bootstrap.api.deps import settings_dep
from cluster_bootstrap.auth.deps import require_roles
from cluster_bootstrap.auth.models import Role
from cluster_bootstrap.gate.requirements import DEFAULT_REQUIREMENTS
from cluster_bootstrap.gate.units import build_unit_graph
from cluster_bootstrap.identity.registry import builtin_identities, list_identities
from cluster_bootstrap.services.wiring import admin_members
from cluster_bootstrap.settings import Settings

router = APIRouter(prefix="/v1/units", tags=["units"])


@router.get("", dependencies=[Depends(require_roles(Role.operator))])
async def unit_graph(settings: Settings = Depends(settings_dep)) -> dict[str, Any]:
    identities = list_identities(admin_members(settings), builtin_identities(settings.addresses))
    graph = build_unit_graph(
        identities,
        DEFAULT_REQUIREMENTS,
        reconciler_identity=settings.reconciler_identity,
    )
    return graph.to_dict()
