"""
cluster_bootstrap.auth.deps

Bearer-token authentication for the status API.

Responsibilities:
- Turn an `Authorization: Bearer` header into a `Principal`, or answer 401.
- `require_roles(...)` builds a dependency that answers 403 unless the principal holds
  every listed role; `admin` holds all of them.
"""

from __future__ import annotations

from typing import Any

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.status import HTTP_401_UNAUTHORIZED, HTTP_403_FORBIDDEN

from cluster_bootstrap.api.deps import settings_dep
from cluster_bootstrap.auth.jwt import JwtConfig, JwtValidationError, decode_and_validate
from cluster_bootstrap.auth.models import Principal, Role
from cluster_bootstrap.settings import Settings

_bearer = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def principal_from_claims(claims: dict[str, Any]) -> Principal:
    subject = claims.get("sub")
    roles = claims.get("roles", [])
    if not isinstance(subject, str) or not subject:
        raise _unauthorized("token has no subject")
    if not isinstance(roles, list):
        raise _unauthorized("token roles must be a list")
    return Principal(subject=subject, roles=frozenset(map(str, roles)))


def get_principal(
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
    settings: Settings = Depends(settings_dep),
) -> Principal:
    if creds is None or not creds.credentials:
        raise _unauthorized("missing bearer token")
    try:
        claims = decode_and_validate(cfg=JwtConfig.from_settings(settings), token=creds.credentials)
    except JwtValidationError as e:
        raise _unauthorized(f"invalid token: {e}") from e
    return principal_from_claims(claims)


def require_roles(*required: str | Role):
    needed = frozenset(str(r) for r in required)

    def _dep(principal: Principal = Depends(get_principal)) -> Principal:
        if not principal.holds(needed):
            raise HTTPException(
                status_code=HTTP_403_FORBIDDEN,
                detail=f"requires role(s): {', '.join(sorted(needed))}",
            )
        return principal

    return _dep
