"""
cluster_bootstrap.reconciler.ensure

Create-if-absent primitive shared by role bindings, service accounts and token secrets.
"""

from __future__ import annotations

import enum
from collections.abc import Awaitable, Callable

from cluster_bootstrap.observability.logging import get_logger

log = get_logger(__name__)


class AlreadyExistsError(Exception):
    """Create was rejected because the object exists (HTTP 409)."""


class EnsureOutcome(enum.StrEnum):
    created = "CREATED"
    existed = "EXISTED"
    # Someone else created it between our check and our write.
    raced = "RACED"


async def ensure_exists(
    key: str,
    *,
    exists: Callable[[], Awaitable[bool]],
    create: Callable[[], Awaitable[object]],
) -> EnsureOutcome:
    if await exists():
        log.info("ensure_existed", key=key)
        return EnsureOutcome.existed
    try:
        await create()
    except AlreadyExistsError:
        log.info("ensure_raced", key=key)
        return EnsureOutcome.raced
    log.info("ensure_created", key=key)
    return EnsureOutcome.created
