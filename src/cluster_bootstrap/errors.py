"""
cluster_bootstrap.errors

Error taxonomy shared by all provisioning components.

Responsibilities:
- Name every failure the run can surface, attributed to the identity/service/binding involved.
- Let callers distinguish fatal (run-halting) failures from per-service and transient ones.
"""

from __future__ import annotations

from collections.abc import Sequence


class BootstrapError(Exception):
    pass


class IdentityError(BootstrapError):
    pass


class DuplicateIdentityError(IdentityError):
    def __init__(self, name: str) -> None:
        super().__init__(f"identity {name!r} is defined more than once")
        self.name = name


class IssuanceError(BootstrapError):
    def __init__(self, identity: str, reason: str) -> None:
        super().__init__(f"certificate issuance for {identity!r} failed: {reason}")
        self.identity = identity
        self.reason = reason


class BundleResolutionError(BootstrapError):
    pass


class NoBundleForPrincipalError(BundleResolutionError):
    def __init__(self, principal: str) -> None:
        super().__init__(f"no connection bundle for principal {principal!r}")
        self.principal = principal


class ReadinessTimeoutError(BootstrapError):
    def __init__(self, service: str, identity: str, missing: Sequence[str] = ()) -> None:
        super().__init__(
            f"service {service!r} not started: certificate for {identity!r} "
            "did not become available before the deadline"
        )
        self.service = service
        self.identity = identity
        self.missing = tuple(missing) or (identity,)


class TokenDerivationError(BootstrapError):
    pass


class ReconciliationError(BootstrapError):
    def __init__(self, name: str, reason: str, *, status_code: int | None = None) -> None:
        super().__init__(f"reconciliation of {name!r} rejected: {reason}")
        self.name = name
        self.reason = reason
        self.status_code = status_code


class ApiUnavailableError(BootstrapError):
    """The cluster API could not be reached; retrying later may succeed."""


# --- Module Notes -----------------------------------------------------------
# Identity, token and issuance errors halt the run before any service starts.
# ReadinessTimeoutError fails one service; ReconciliationError degrades the run.
