"""
cluster_bootstrap.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide env-driven settings for provisioning, gating, reconciliation and the status API.
- Hide secrets from repr/logging (JWT secret, directory password path contents never loaded here).
- Offer a cached settings instance for the CLI and dependency injection.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CLUSTER_BOOTSTRAP_", case_sensitive=False)

    env: Literal["dev", "test", "prod"] = "prod"
    service_name: str = "cluster-bootstrap"
    log_level: str = "INFO"

    # Status API
    api_host: str = "127.0.0.1"
    api_port: int = 8441
    jwt_alg: str = "HS256"
    jwt_issuer: str = "cluster-bootstrap"
    jwt_audience: str = "cluster-bootstrap-status"
    jwt_secret: str = Field(default="dev-secret-change-me", repr=False)
    # When set, the signing secret is read from this file instead (e.g. under secrets_dir).
    jwt_secret_file: Path | None = None
    jwt_ttl_minutes: int = Field(default=15, ge=1)

    # Persistence (runs, gate records, one-shot job markers)
    database_url: str = "sqlite+aiosqlite:////var/lib/cluster-bootstrap/state.db"

    # Identities
    admin_group: str = "sudo-srv"
    # Explicit members win over the group database lookup.
    admin_members: list[str] | None = None

    # PKI
    secrets_dir: Path = Path("/var/lib/kubernetes/secrets")
    ca_url: str = "https://localhost:8888"
    ca_profile: str = "default"
    ca_cert: Path = Path("/var/lib/kubernetes/secrets/ca.pem")
    ca_timeout_seconds: float = 30.0
    enforce_ownership: bool = True

    # Connection bundles
    kubeconfig_dir: Path = Path("/etc/kubernetes")
    addresses: list[str] = Field(default_factory=lambda: ["kubernetes.local"])
    apiserver_port: int = 6443
    admin_bundle: str = "cluster-admin"

    # Bootstrap token
    password_file: Path | None = None
    token_path: Path = Path("/var/lib/cfssl/apitoken.secret")
    token_owner: str = "cfssl"
    token_length: int = Field(default=32, ge=8, le=32)

    # Readiness gate
    gate_deadline_seconds: float = 600.0
    gate_poll_initial_seconds: float = 1.0
    gate_poll_max_seconds: float = 15.0
    gate_poll_multiplier: float = 2.0

    # Authorization reconciler
    api_wait_seconds: float = 300.0
    reconciler_identity: str = "cluster-admin"

    # Provisioning run
    run_deadline_seconds: float = 1800.0
    start_services: bool = True

    @field_validator("token_length")
    @classmethod
    def _token_length_is_even(cls, value: int) -> int:
        # The stored token is hex-decoded into the CA auth key.
        if value % 2:
            raise ValueError("token_length must be even")
        return value

    @field_validator("addresses")
    @classmethod
    def _addresses_not_empty(cls, value: list[str]) -> list[str]:
        # The first entry is the canonical API address for every bundle.
        cleaned = [a.strip() for a in value if a.strip()]
        if not cleaned:
            raise ValueError("addresses must contain at least one entry")
        return cleaned


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Lists (addresses, admin_members) are read from the environment as JSON arrays,
# e.g. CLUSTER_BOOTSTRAP_ADDRESSES='["kubernetes.rg.example", "master.example"]'.
