"""
cluster_bootstrap.observability.context

Run-scoped logging context.

Responsibilities:
- Bind provisioning metadata (run id, unit, identity) into structlog contextvars.
- Restore the previous context when the scope ends, so nested scopes compose.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog


@contextmanager
def bind_run_context(**values: Any) -> Iterator[None]:
    tokens = structlog.contextvars.bind_contextvars(
        **{k: v for k, v in values.items() if v is not None}
    )
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
