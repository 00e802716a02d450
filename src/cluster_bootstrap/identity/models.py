"""
cluster_bootstrap.identity.models

Identity domain models.

Responsibilities:
- Define `Identity` (a principal that needs a client certificate).
- Define `CertificateMaterial` (where an identity's issued pair lives on disk).
- Provide plain-dict conversion for checkpointed run state.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


class IdentityKind(enum.StrEnum):
    admin = "ADMIN"
    system = "SYSTEM"
    # Control-plane components consume their certificates directly; no bundle.
    component = "COMPONENT"


@dataclass(frozen=True, slots=True)
class Identity:
    name: str
    common_name: str
    organization_fields: dict[str, str] = field(default_factory=dict, hash=False)
    private_key_owner: str = "root"
    kind: IdentityKind = IdentityKind.system
    hosts: tuple[str, ...] = field(default=(), hash=False)

    @property
    def needs_bundle(self) -> bool:
        return self.kind is not IdentityKind.component

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "common_name": self.common_name,
            "organization_fields": dict(self.organization_fields),
            "private_key_owner": self.private_key_owner,
            "kind": str(self.kind),
            "hosts": list(self.hosts),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Identity:
        return cls(
            name=str(data["name"]),
            common_name=str(data["common_name"]),
            organization_fields=dict(data.get("organization_fields") or {}),
            private_key_owner=str(data.get("private_key_owner") or "root"),
            kind=IdentityKind(data.get("kind") or IdentityKind.system),
            hosts=tuple(data.get("hosts") or ()),
        )


@dataclass(frozen=True, slots=True)
class CertificateMaterial:
    identity: Identity
    cert_path: Path
    key_path: Path

    def read_cert(self) -> bytes:
        return self.cert_path.read_bytes()

    def read_key(self) -> bytes:
        return self.key_path.read_bytes()

    def to_dict(self) -> dict[str, str]:
        return {"cert_path": str(self.cert_path), "key_path": str(self.key_path)}


# --- Module Notes -----------------------------------------------------------
# Identities are created once per run from configuration and never mutated.
