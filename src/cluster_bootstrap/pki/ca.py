"""
cluster_bootstrap.pki.ca

CA client boundary.

Responsibilities:
- Define the request/response types exchanged with the external certificate authority.
- Provide a cfssl client: local key + CSR generation, authenticated signing over HTTP.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import ipaddress
import json
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from cluster_bootstrap.errors import IssuanceError
from cluster_bootstrap.identity.models import Identity

_NAME_OIDS = {
    "C": NameOID.COUNTRY_NAME,
    "ST": NameOID.STATE_OR_PROVINCE_NAME,
    "L": NameOID.LOCALITY_NAME,
    "O": NameOID.ORGANIZATION_NAME,
    "OU": NameOID.ORGANIZATIONAL_UNIT_NAME,
}


@dataclass(frozen=True, slots=True)
class CertificateRequest:
    name: str
    common_name: str
    organization_fields: dict[str, str] = field(default_factory=dict, hash=False)
    private_key_owner: str = "root"
    hosts: tuple[str, ...] = ()
    profile: str = "default"

    @classmethod
    def from_identity(cls, identity: Identity, *, profile: str = "default") -> CertificateRequest:
        return cls(
            name=identity.name,
            common_name=identity.common_name,
            organization_fields=dict(identity.organization_fields),
            private_key_owner=identity.private_key_owner,
            hosts=identity.hosts,
            profile=profile,
        )


@dataclass(frozen=True, slots=True)
class IssuedCertificate:
    cert: bytes
    key: bytes = field(repr=False)


class CertificateAuthority(Protocol):
    async def issue(self, request: CertificateRequest) -> IssuedCertificate: ...


@runtime_checkable
class CaCertificateSource(Protocol):
    """A CA client that can also hand out the CA's own certificate."""

    async def fetch_ca_certificate(self, *, profile: str = "default") -> bytes: ...


def build_csr(request: CertificateRequest) -> tuple[bytes, bytes]:
    """
    Generate an EC P-256 key and a CSR carrying CN, organization fields and SANs.

    Returns `(csr_pem, key_pem)`.
    """

    attrs = [x509.NameAttribute(NameOID.COMMON_NAME, request.common_name)]
    for key, value in request.organization_fields.items():
        oid = _NAME_OIDS.get(key.upper())
        if oid is None:
            raise IssuanceError(request.name, f"unsupported subject field {key!r}")
        attrs.append(x509.NameAttribute(oid, value))

    private_key = ec.generate_private_key(ec.SECP256R1())
    builder = x509.CertificateSigningRequestBuilder().subject_name(x509.Name(attrs))
    if request.hosts:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([_san(h) for h in request.hosts]),
            critical=False,
        )
    csr = builder.sign(private_key, hashes.SHA256())
    key_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return csr.public_bytes(serialization.Encoding.PEM), key_pem


def _san(host: str) -> x509.GeneralName:
    try:
        return x509.IPAddress(ipaddress.ip_address(host))
    except ValueError:
        return x509.DNSName(host)


class CfsslClient:
    """
    cfssl remote signer.

    With an auth key the request goes to `authsign` wrapped in an HMAC-SHA256 token
    (cfssl "standard" auth provider); without one it goes to the plain `sign` endpoint.
    """

    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        auth_key: bytes | None = None,
        label: str | None = None,
    ) -> None:
        self._http = http
        self._auth_key = auth_key
        self._label = label

    async def issue(self, request: CertificateRequest) -> IssuedCertificate:
        csr_pem, key_pem = build_csr(request)
        sign_request: dict[str, Any] = {
            "certificate_request": csr_pem.decode(),
            "profile": request.profile,
            "hosts": list(request.hosts),
        }
        if self._label:
            sign_request["label"] = self._label

        if self._auth_key is not None:
            raw = json.dumps(sign_request).encode()
            token = hmac.new(self._auth_key, raw, hashlib.sha256).digest()
            path = "/api/v1/cfssl/authsign"
            body: dict[str, Any] = {
                "token": base64.b64encode(token).decode(),
                "request": base64.b64encode(raw).decode(),
            }
        else:
            path = "/api/v1/cfssl/sign"
            body = sign_request

        result = await self._call(request.name, path, body)
        cert = result.get("certificate")
        if not cert:
            raise IssuanceError(request.name, "CA response carried no certificate")
        return IssuedCertificate(cert=str(cert).encode(), key=key_pem)

    async def fetch_ca_certificate(self, *, profile: str = "default") -> bytes:
        body: dict[str, Any] = {"profile": profile}
        if self._label:
            body["label"] = self._label
        result = await self._call("ca", "/api/v1/cfssl/info", body)
        cert = result.get("certificate")
        if not cert:
            raise IssuanceError("ca", "CA info response carried no certificate")
        return str(cert).encode()

    async def _call(self, name: str, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            r = await self._http.post(path, json=body)
        except httpx.HTTPError as e:
            raise IssuanceError(name, f"CA unreachable: {e}") from e

        try:
            data = r.json()
        except ValueError:
            data = {}
        if r.status_code >= 400 or not data.get("success"):
            errors = data.get("errors") or []
            detail = "; ".join(str(e.get("message", e)) for e in errors if e) or f"HTTP {r.status_code}"
            raise IssuanceError(name, f"CA rejected request: {detail}")
        result = data.get("result")
        return result if isinstance(result, dict) else {}


# --- Module Notes -----------------------------------------------------------
# The private key never leaves this host: only the CSR is sent to the CA.
