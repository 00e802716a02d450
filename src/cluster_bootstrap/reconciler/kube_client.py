"""
cluster_bootstrap.reconciler.kube_client

HTTP client boundary for the cluster API.

Responsibilities:
- Build mutual-TLS httpx clients from certificate material or a connection bundle.
- Expose the few read/create calls the reconciler needs.
- Classify failures: conflict (already exists), transient (unavailable), permanent (rejected).
"""

from __future__ import annotations

import asyncio
import ssl
import tempfile
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import httpx

from cluster_bootstrap.bundles.synthesizer import ConnectionBundle
from cluster_bootstrap.errors import ApiUnavailableError, ReconciliationError
from cluster_bootstrap.gate.gate import BackoffPolicy
from cluster_bootstrap.identity.models import CertificateMaterial
from cluster_bootstrap.observability.logging import get_logger
from cluster_bootstrap.pki import fs
from cluster_bootstrap.reconciler.bindings import RoleBinding
from cluster_bootstrap.reconciler.ensure import AlreadyExistsError

log = get_logger(__name__)

_RBAC = "/apis/rbac.authorization.k8s.io/v1"


def tls_context(
    *,
    cert_path: Path,
    key_path: Path,
    ca_path: Path | None = None,
    ca_data: bytes | None = None,
) -> ssl.SSLContext:
    if ca_data:
        ctx = ssl.create_default_context(cadata=ca_data.decode())
    elif ca_path is not None:
        ctx = ssl.create_default_context(cafile=str(ca_path))
    else:
        ctx = ssl.create_default_context()
    ctx.load_cert_chain(certfile=str(cert_path), keyfile=str(key_path))
    return ctx


def client_from_material(
    material: CertificateMaterial,
    *,
    endpoint: str,
    ca_path: Path | None,
    timeout: float = 10.0,
) -> httpx.AsyncClient:
    ctx = tls_context(cert_path=material.cert_path, key_path=material.key_path, ca_path=ca_path)
    return httpx.AsyncClient(base_url=endpoint, verify=ctx, timeout=timeout)


def client_from_bundle(bundle: ConnectionBundle, *, timeout: float = 10.0) -> httpx.AsyncClient:
    # ssl only loads client certs from files; they live just long enough to be read.
    with tempfile.TemporaryDirectory(prefix="cluster-bootstrap-") as tmp:
        cert_path = Path(tmp) / "client.pem"
        key_path = Path(tmp) / "client-key.pem"
        fs.write_private_file(cert_path, bundle.cert, owner=None)
        fs.write_private_file(key_path, bundle.key, owner=None)
        ctx = tls_context(
            cert_path=cert_path, key_path=key_path, ca_data=bundle.certificate_authority
        )
    return httpx.AsyncClient(base_url=bundle.endpoint, verify=ctx, timeout=timeout)


class ClusterApiClient:
    def __init__(self, *, http: httpx.AsyncClient) -> None:
        self._http = http

    async def ready(self) -> bool:
        try:
            r = await self._http.get("/readyz")
        except httpx.TransportError:
            return False
        return r.status_code == 200

    async def wait_until_reachable(
        self,
        *,
        deadline: float,
        backoff: BackoffPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        policy = backoff or BackoffPolicy()
        started = clock()
        attempt = 0
        while not await self.ready():
            remaining = deadline - (clock() - started)
            if remaining <= 0:
                raise ApiUnavailableError(f"cluster API not ready after {deadline:.0f}s")
            log.info("api_not_ready", attempt=attempt)
            await sleep(min(policy.delay(attempt), remaining))
            attempt += 1

    async def get_cluster_role_binding(self, name: str) -> dict[str, Any] | None:
        return await self._get(f"{_RBAC}/clusterrolebindings/{name}", name=name)

    async def create_cluster_role_binding(self, binding: RoleBinding) -> dict[str, Any]:
        return await self._create(
            f"{_RBAC}/clusterrolebindings", binding.to_manifest(), name=binding.name
        )

    async def get_service_account(self, namespace: str, name: str) -> dict[str, Any] | None:
        return await self._get(f"/api/v1/namespaces/{namespace}/serviceaccounts/{name}", name=name)

    async def create_service_account(self, namespace: str, name: str) -> dict[str, Any]:
        body = {
            "apiVersion": "v1",
            "kind": "ServiceAccount",
            "metadata": {"name": name, "namespace": namespace},
        }
        return await self._create(
            f"/api/v1/namespaces/{namespace}/serviceaccounts", body, name=name
        )

    async def get_secret(self, namespace: str, name: str) -> dict[str, Any] | None:
        return await self._get(f"/api/v1/namespaces/{namespace}/secrets/{name}", name=name)

    async def create_secret(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        name = str(body.get("metadata", {}).get("name", ""))
        return await self._create(f"/api/v1/namespaces/{namespace}/secrets", body, name=name)

    async def _get(self, path: str, *, name: str) -> dict[str, Any] | None:
        try:
            r = await self._http.get(path)
        except httpx.TransportError as e:
            raise ApiUnavailableError(f"GET {path} failed: {e}") from e
        if r.status_code == 404:
            return None
        _raise_for(r, name=name)
        return r.json()

    async def _create(self, path: str, body: dict[str, Any], *, name: str) -> dict[str, Any]:
        try:
            r = await self._http.post(path, json=body)
        except httpx.TransportError as e:
            raise ApiUnavailableError(f"POST {path} failed: {e}") from e
        _raise_for(r, name=name)
        return r.json()


def _raise_for(r: httpx.Response, *, name: str) -> None:
    if r.status_code < 400:
        return
    if r.status_code == 409:
        raise AlreadyExistsError(name)
    if r.status_code >= 500 or r.status_code == 429:
        raise ApiUnavailableError(f"cluster API answered {r.status_code} for {name!r}")
    raise ReconciliationError(name, _status_message(r), status_code=r.status_code)


def _status_message(r: httpx.Response) -> str:
    # The API server answers errors with a `Status` object carrying a message.
    try:
        data = r.json()
    except ValueError:
        return f"HTTP {r.status_code}"
    if isinstance(data, dict) and data.get("message"):
        return f"HTTP {r.status_code}: {data['message']}"
    return f"HTTP {r.status_code}"


# --- Module Notes -----------------------------------------------------------
# Callers own the httpx client lifetime (`async with client_from_material(...)`).
