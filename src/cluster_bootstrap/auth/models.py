"""
cluster_bootstrap.auth.models

Callers of the status API and the roles they may hold.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


class Role(enum.StrEnum):
    # Run, gate and audit status; the unit graph.
    operator = "operator"
    # Everything, and resolves bundles as uid 0.
    admin = "admin"


SUPERUSER_ROLE = Role.admin


@dataclass(frozen=True, slots=True)
class Principal:
    # Local account name; bundle lookups resolve against it.
    subject: str
    roles: frozenset[str]

    @property
    def is_superuser(self) -> bool:
        return SUPERUSER_ROLE in self.roles

    def holds(self, required: frozenset[str]) -> bool:
        return self.is_superuser or required <= self.roles
