"""
cluster_bootstrap.bundles.synthesizer

Connection Bundle Synthesizer.

Responsibilities:
- Pick the canonical API endpoint for the run (first configured address wins).
- Combine an identity's certificate material and the endpoint into a self-contained kubeconfig.
- Persist one bundle per identity, readable only by that identity's key owner.
"""

from __future__ import annotations

import base64
import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from cluster_bootstrap.identity.models import CertificateMaterial, Identity
from cluster_bootstrap.observability.logging import get_logger
from cluster_bootstrap.pki import fs

log = get_logger(__name__)

CLUSTER_NAME = "local"


def select_endpoint(addresses: Sequence[str], port: int) -> str:
    if not addresses:
        raise ValueError("at least one API address is required")
    return f"https://{addresses[0]}:{port}"


def bundle_path(directory: Path, principal: str) -> Path:
    return Path(directory) / f"{principal}.kubeconfig"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


@dataclass(frozen=True, slots=True)
class ConnectionBundle:
    principal: str
    endpoint: str
    cert: bytes = field(repr=False)
    key: bytes = field(repr=False)
    certificate_authority: bytes | None = field(default=None, repr=False)

    def to_kubeconfig(self) -> dict[str, Any]:
        cluster: dict[str, Any] = {"server": self.endpoint}
        if self.certificate_authority:
            cluster["certificate-authority-data"] = _b64(self.certificate_authority)
        context = f"{self.principal}@{CLUSTER_NAME}"
        return {
            "apiVersion": "v1",
            "kind": "Config",
            "clusters": [{"name": CLUSTER_NAME, "cluster": cluster}],
            "users": [
                {
                    "name": self.principal,
                    "user": {
                        "client-certificate-data": _b64(self.cert),
                        "client-key-data": _b64(self.key),
                    },
                }
            ],
            "contexts": [
                {"name": context, "context": {"cluster": CLUSTER_NAME, "user": self.principal}}
            ],
            "current-context": context,
        }

    def render(self) -> str:
        # kubectl reads JSON kubeconfigs as well as YAML.
        return json.dumps(self.to_kubeconfig(), indent=2, sort_keys=True) + "\n"

    @classmethod
    def from_kubeconfig(cls, doc: Mapping[str, Any]) -> ConnectionBundle:
        cluster = doc["clusters"][0]["cluster"]
        user = doc["users"][0]
        ca = cluster.get("certificate-authority-data")
        return cls(
            principal=str(user["name"]),
            endpoint=str(cluster["server"]),
            cert=base64.b64decode(user["user"]["client-certificate-data"]),
            key=base64.b64decode(user["user"]["client-key-data"]),
            certificate_authority=base64.b64decode(ca) if ca else None,
        )


def synthesize(
    identity: Identity,
    material: CertificateMaterial,
    endpoint: str,
    *,
    certificate_authority: bytes | None = None,
) -> ConnectionBundle:
    return ConnectionBundle(
        principal=identity.name,
        endpoint=endpoint,
        cert=material.read_cert(),
        key=material.read_key(),
        certificate_authority=certificate_authority,
    )


def write_bundle(bundle: ConnectionBundle, directory: Path, *, owner: str | None) -> Path:
    path = bundle_path(directory, bundle.principal)
    # The bundle embeds the private key, so it gets the key's protection.
    fs.write_private_file(path, bundle.render().encode(), owner=owner)
    return path


def load_bundle(path: Path) -> ConnectionBundle:
    return ConnectionBundle.from_kubeconfig(json.loads(Path(path).read_text()))


def synthesize_all(
    identities: Mapping[str, Identity],
    materials: Mapping[str, CertificateMaterial],
    *,
    endpoint: str,
    directory: Path,
    enforce_ownership: bool = True,
    certificate_authority: bytes | None = None,
) -> dict[str, Path]:
    written: dict[str, Path] = {}
    for name, identity in identities.items():
        if not identity.needs_bundle:
            continue
        bundle = synthesize(
            identity,
            materials[name],
            endpoint,
            certificate_authority=certificate_authority,
        )
        owner = identity.private_key_owner if enforce_ownership else None
        written[name] = write_bundle(bundle, directory, owner=owner)
        log.info("bundle_written", principal=name, endpoint=endpoint)
    return written


# --- Module Notes -----------------------------------------------------------
# Bundles are regenerated on every run, so a changed endpoint or reissued
# certificate is picked up without any diffing.
