from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from starlette.status import HTTP_404_NOT_FOUND

from cluster_bootstrap.api.deps import settings_dep
from cluster_bootstrap.auth.deps import get_principal
from cluster_bootstrap.auth.models import Principal
from cluster_bootstrap.bundles.resolver import resolve_bundle
from cluster_bootstrap.bundles.synthesizer import load_bundle
from cluster_bootstrap.errors import NoBundleForPrincipalError
from cluster_bootstrap.settings import Settings

router = APIRouter(prefix="/v1/bundles", tags=["bundles"])


class BundleOut(BaseModel):
    principal: str
    path: str
    endpoint: str


@router.get("/self", response_model=BundleOut)
async def own_bundle(
    principal: Principal = Depends(get_principal),
    settings: Settings = Depends(settings_dep),
) -> BundleOut:
    # Superusers resolve like uid 0. Key material is never served over HTTP, only its location.
    try:
        path = resolve_bundle(
            settings.kubeconfig_dir,
            account=principal.subject,
            uid=0 if principal.is_superuser else -1,
            admin_bundle=settings.admin_bundle,
        )
    except NoBundleForPrincipalError as e:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail=str(e)) from e
    bundle = load_bundle(path)
    return BundleOut(principal=bundle.principal, path=str(path), endpoint=bundle.endpoint)
