"""
tests.conftest

Shared fixtures: settings rooted in a temporary directory, and fakes for the CA,
the process supervisor, the clock, and the cluster API.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
import pytest

from cluster_bootstrap.errors import IssuanceError
from cluster_bootstrap.pki.ca import CertificateRequest, IssuedCertificate
from cluster_bootstrap.services.supervisor import SupervisorError
from cluster_bootstrap.settings import Settings


class FakeCA:
    def __init__(self, *, reject: set[str] | None = None) -> None:
        self.requests: list[CertificateRequest] = []
        self.reject = reject or set()
        self.auth_keys: list[bytes | None] = []

    async def issue(self, request: CertificateRequest) -> IssuedCertificate:
        self.requests.append(request)
        if request.name in self.reject:
            raise IssuanceError(request.name, "CA rejected request: policy")
        serial = len(self.requests)
        return IssuedCertificate(
            cert=f"-----CERT {request.common_name} #{serial}-----\n".encode(),
            key=f"-----KEY {request.name} #{serial}-----\n".encode(),
        )

    @asynccontextmanager
    async def open(self, auth_key: bytes | None) -> AsyncIterator[FakeCA]:
        self.auth_keys.append(auth_key)
        yield self


class FakeClock:
    """Monotonic clock that only moves when someone sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        # Let other gates run their tick.
        await asyncio.sleep(0)


class FakeSupervisor:
    def __init__(self, *, failing: set[str] | None = None) -> None:
        self.started: list[str] = []
        self.failing = failing or set()

    async def start(self, service: str) -> None:
        if service in self.failing:
            raise SupervisorError(f"{service}.service failed to start")
        self.started.append(service)


class FakeClusterApi:
    """
    In-memory subset of the cluster API served through httpx.MockTransport.

    `race` names objects that GET reports absent but POST finds present (409).
    `reject` maps object names to an HTTP status returned on POST.
    """

    def __init__(self, *, unready: int = 0) -> None:
        self.objects: dict[str, dict[str, Any]] = {}
        self.posts: list[str] = []
        self.race: set[str] = set()
        self.reject: dict[str, int] = {}
        self.unready = unready
        self.auto_token = "c2VjcmV0LXRva2Vu"  # "secret-token"

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/readyz":
            if self.unready > 0:
                self.unready -= 1
                return httpx.Response(503, text="not ready")
            return httpx.Response(200, text="ok")

        if request.method == "GET":
            obj = self.objects.get(path)
            if obj is None:
                return httpx.Response(404, json={"kind": "Status", "message": "not found"})
            return httpx.Response(200, json=obj)

        if request.method == "POST":
            body = json.loads(request.content)
            name = body["metadata"]["name"]
            target = f"{path}/{name}"
            self.posts.append(target)
            if name in self.reject:
                return httpx.Response(
                    self.reject[name], json={"kind": "Status", "message": "invalid roleRef"}
                )
            if target in self.objects or name in self.race:
                return httpx.Response(409, json={"kind": "Status", "message": "already exists"})
            if body.get("kind") == "Secret":
                body = {**body, "data": {"token": self.auto_token}}
            self.objects[target] = body
            return httpx.Response(201, json=body)

        return httpx.Response(405)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(self.handler), base_url="https://api.example.test:6443"
        )


@pytest.fixture
def settings(tmp_path) -> Settings:
    password = tmp_path / "ldap" / "password"
    password.parent.mkdir()
    password.write_text("directory-pw\n")
    return Settings(
        env="test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'state.db'}",
        admin_members=["alice"],
        secrets_dir=tmp_path / "secrets",
        ca_cert=tmp_path / "secrets" / "ca.pem",
        kubeconfig_dir=tmp_path / "kubernetes",
        addresses=["api.example.test", "10.0.0.5"],
        password_file=password,
        token_path=tmp_path / "cfssl" / "apitoken.secret",
        enforce_ownership=False,
        gate_deadline_seconds=20.0,
        gate_poll_initial_seconds=1.0,
        gate_poll_max_seconds=4.0,
        api_wait_seconds=10.0,
        run_deadline_seconds=30.0,
    )


@pytest.fixture
def fake_ca() -> FakeCA:
    return FakeCA()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def supervisor() -> FakeSupervisor:
    return FakeSupervisor()


@pytest.fixture
def cluster_api() -> FakeClusterApi:
    return FakeClusterApi()
