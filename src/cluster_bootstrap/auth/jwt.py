"""
cluster_bootstrap.auth.jwt

Bearer tokens for the status API.

Responsibilities:
- Mint short-lived tokens for operators (`cluster-bootstrap status-token`, tests).
- Validate tokens with every registered claim required (iss/aud/exp/iat/sub).
- Load the signing secret from settings or from a root-only file on the master.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from jwt import InvalidTokenError

from cluster_bootstrap.auth.models import Role
from cluster_bootstrap.settings import Settings

REQUIRED_CLAIMS = ("exp", "iat", "iss", "aud", "sub")


class JwtValidationError(Exception):
    pass


@dataclass(frozen=True, slots=True)
class JwtConfig:
    alg: str
    issuer: str
    audience: str
    secret: str = ""
    ttl: timedelta = timedelta(minutes=15)

    @classmethod
    def from_settings(cls, settings: Settings) -> JwtConfig:
        secret = settings.jwt_secret
        if settings.jwt_secret_file is not None:
            secret = settings.jwt_secret_file.read_text().strip()
        return cls(
            alg=settings.jwt_alg,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            secret=secret,
            ttl=timedelta(minutes=settings.jwt_ttl_minutes),
        )


def issue_token(
    *,
    cfg: JwtConfig,
    subject: str,
    roles: Iterable[str],
    ttl: timedelta | None = None,
) -> str:
    granted = sorted({str(Role(r)) for r in roles})
    issued_at = datetime.now(tz=UTC)
    claims: dict[str, Any] = {
        "iss": cfg.issuer,
        "aud": cfg.audience,
        "sub": subject,
        "roles": granted,
        "iat": issued_at,
        "exp": issued_at + (ttl or cfg.ttl),
    }
    return jwt.encode(claims, cfg.secret, algorithm=cfg.alg)


def decode_and_validate(*, cfg: JwtConfig, token: str) -> dict[str, Any]:
    try:
        return jwt.decode(
            token,
            cfg.secret,
            algorithms=[cfg.alg],
            issuer=cfg.issuer,
            audience=cfg.audience,
            options={"require": list(REQUIRED_CLAIMS)},
        )
    except InvalidTokenError as e:
        raise JwtValidationError(str(e)) from e


# --- Module Notes -----------------------------------------------------------
# `Role(r)` raises ValueError for a role the API does not know; minting such a
# token is an operator mistake, not something to sign silently.
