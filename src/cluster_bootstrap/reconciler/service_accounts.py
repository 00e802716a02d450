"""
cluster_bootstrap.reconciler.service_accounts

Service-account kubeconfigs for handing cluster-admin access to tools outside the host.

Responsibilities:
- Make the service account, its cluster-admin binding and its token secret exist.
- Produce a kubeconfig that authenticates with the service-account token.
"""

from __future__ import annotations

import asyncio
import base64
import time
from collections.abc import Awaitable, Callable
from typing import Any

from cluster_bootstrap.bundles.synthesizer import ConnectionBundle
from cluster_bootstrap.errors import ReconciliationError
from cluster_bootstrap.reconciler.bindings import cluster_admin_binding
from cluster_bootstrap.reconciler.ensure import ensure_exists
from cluster_bootstrap.reconciler.kube_client import ClusterApiClient

TOKEN_SECRET_TYPE = "kubernetes.io/service-account-token"


def token_secret_name(account: str) -> str:
    return f"{account}-token"


async def ensure_service_account_access(
    client: ClusterApiClient, *, name: str, namespace: str = "default"
) -> None:
    binding = cluster_admin_binding(name, namespace=namespace)
    secret_name = token_secret_name(name)

    async def account_exists() -> bool:
        return await client.get_service_account(namespace, name) is not None

    async def binding_exists() -> bool:
        return await client.get_cluster_role_binding(binding.name) is not None

    async def secret_exists() -> bool:
        return await client.get_secret(namespace, secret_name) is not None

    await ensure_exists(
        f"serviceaccount/{namespace}/{name}",
        exists=account_exists,
        create=lambda: client.create_service_account(namespace, name),
    )
    await ensure_exists(
        f"clusterrolebinding/{binding.name}",
        exists=binding_exists,
        create=lambda: client.create_cluster_role_binding(binding),
    )
    await ensure_exists(
        f"secret/{namespace}/{secret_name}",
        exists=secret_exists,
        create=lambda: client.create_secret(
            namespace,
            {
                "apiVersion": "v1",
                "kind": "Secret",
                "metadata": {
                    "name": secret_name,
                    "namespace": namespace,
                    "annotations": {"kubernetes.io/service-account.name": name},
                },
                "type": TOKEN_SECRET_TYPE,
            },
        ),
    )


async def wait_for_token(
    client: ClusterApiClient,
    *,
    name: str,
    namespace: str = "default",
    timeout: float = 30.0,
    interval: float = 1.0,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> str:
    # The token controller fills `data.token` asynchronously after the secret is created.
    secret_name = token_secret_name(name)
    started = clock()
    while True:
        secret = await client.get_secret(namespace, secret_name) or {}
        encoded = (secret.get("data") or {}).get("token")
        if encoded:
            return base64.b64decode(encoded).decode()
        if clock() - started >= timeout:
            raise ReconciliationError(secret_name, "token was not populated in time")
        await sleep(interval)


def token_kubeconfig(base: ConnectionBundle, *, name: str, token: str) -> dict[str, Any]:
    doc = base.to_kubeconfig()
    context = f"{name}@{doc['clusters'][0]['name']}"
    doc["users"] = [{"name": name, "user": {"token": token}}]
    doc["contexts"] = [
        {"name": context, "context": {"cluster": doc["clusters"][0]["name"], "user": name}}
    ]
    doc["current-context"] = context
    return doc


async def make_token_kubeconfig(
    client: ClusterApiClient,
    *,
    name: str,
    base: ConnectionBundle,
    namespace: str = "default",
    timeout: float = 30.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> dict[str, Any]:
    await ensure_service_account_access(client, name=name, namespace=namespace)
    token = await wait_for_token(client, name=name, namespace=namespace, timeout=timeout, sleep=sleep)
    return token_kubeconfig(base, name=name, token=token)
