"""
cluster_bootstrap.pki.issuance

Certificate Issuance Adapter.

Responsibilities:
- Map each identity to its deterministic cert/key paths under the secrets directory.
- Reuse existing material; otherwise request a pair from the CA and write it securely.
- Stop the run at the first identity that cannot be issued.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from cluster_bootstrap.errors import IssuanceError
from cluster_bootstrap.identity.models import CertificateMaterial, Identity
from cluster_bootstrap.observability.context import bind_run_context
from cluster_bootstrap.observability.logging import get_logger
from cluster_bootstrap.pki import fs
from cluster_bootstrap.pki.ca import (
    CaCertificateSource,
    CertificateAuthority,
    CertificateRequest,
)

log = get_logger(__name__)


class MaterialLayout:
    """
    Where an identity's pair lives, and who must own the key.
    """

    def __init__(self, secrets_dir: Path, *, enforce_ownership: bool = True) -> None:
        self.secrets_dir = Path(secrets_dir)
        self.enforce_ownership = enforce_ownership

    def material_for(self, identity: Identity) -> CertificateMaterial:
        return CertificateMaterial(
            identity=identity,
            cert_path=self.secrets_dir / f"{identity.name}.pem",
            key_path=self.secrets_dir / f"{identity.name}-key.pem",
        )

    def key_owner(self, identity: Identity) -> str | None:
        return identity.private_key_owner if self.enforce_ownership else None

    def existing(self, identity: Identity) -> CertificateMaterial | None:
        material = self.material_for(identity)
        if fs.non_empty(material.cert_path) and fs.non_empty(material.key_path):
            return material
        return None


class IssuanceAdapter:
    def __init__(
        self,
        *,
        ca: CertificateAuthority,
        layout: MaterialLayout,
        profile: str = "default",
    ) -> None:
        self._ca = ca
        self._layout = layout
        self._profile = profile

    @property
    def layout(self) -> MaterialLayout:
        return self._layout

    async def issue(self, identity: Identity) -> CertificateMaterial:
        with bind_run_context(identity=identity.name):
            owner = self._layout.key_owner(identity)
            found = self._layout.existing(identity)
            if found is not None:
                # Reuse keeps the bytes; only ownership/mode are re-asserted.
                try:
                    fs.restrict_file(found.key_path, owner=owner)
                except (OSError, LookupError) as e:
                    raise IssuanceError(identity.name, f"cannot restrict key: {e}") from e
                log.info("certificate_reused", path=str(found.cert_path))
                return found

            material = self._layout.material_for(identity)
            request = CertificateRequest.from_identity(identity, profile=self._profile)
            issued = await self._ca.issue(request)
            if not issued.cert or not issued.key:
                raise IssuanceError(identity.name, "CA returned empty material")

            try:
                # Key first: a cert without its key is never considered issued.
                fs.write_private_file(material.key_path, issued.key, owner=owner)
                fs.write_public_file(material.cert_path, issued.cert)
            except (OSError, LookupError) as e:
                raise IssuanceError(identity.name, f"cannot write material: {e}") from e

            log.info("certificate_issued", path=str(material.cert_path))
            return material

    async def issue_all(self, identities: Iterable[Identity]) -> dict[str, CertificateMaterial]:
        materials: dict[str, CertificateMaterial] = {}
        for identity in identities:
            materials[identity.name] = await self.issue(identity)
        return materials

    async def ensure_ca_certificate(self, path: Path) -> Path | None:
        """
        Fetch the CA certificate once so bundles and API clients can verify the server.

        Returns None when it is absent and the CA client has no way to provide it.
        """

        if fs.non_empty(path):
            return path
        if not isinstance(self._ca, CaCertificateSource):
            log.warning("ca_certificate_unavailable", path=str(path))
            return None
        cert = await self._ca.fetch_ca_certificate(profile=self._profile)
        try:
            fs.write_public_file(path, cert)
        except OSError as e:
            raise IssuanceError("ca", f"cannot write CA certificate: {e}") from e
        log.info("ca_certificate_fetched", path=str(path))
        return path


# --- Module Notes -----------------------------------------------------------
# Issuance is sequential: one writer per path, and an aborted run leaves every
# completed pair in place for the next run to reuse.
