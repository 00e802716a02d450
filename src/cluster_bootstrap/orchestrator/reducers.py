"""
cluster_bootstrap.orchestrator.reducers

How LangGraph folds the partial updates a node returns into the run state.

Responsibilities:
- Audit entries accumulate in order, never replaced.
- Service names and degradation reasons accumulate without repeats, so a resumed
  run that replays a node does not list a service as started twice.
- Gate snapshots are keyed by service; the newest snapshot of a service wins.
"""

from __future__ import annotations

from typing import Any


def append_events(
    earlier: list[dict[str, Any]] | None, newer: list[dict[str, Any]] | None
) -> list[dict[str, Any]]:
    return [*(earlier or []), *(newer or [])]


def union_ordered(earlier: list[str] | None, newer: list[str] | None) -> list[str]:
    """Order-preserving union: first occurrence wins its position."""

    merged = list(earlier or [])
    seen = set(merged)
    for item in newer or []:
        if item not in seen:
            seen.add(item)
            merged.append(item)
    return merged


def latest_gate_snapshots(
    earlier: dict[str, dict[str, Any]] | None, newer: dict[str, dict[str, Any]] | None
) -> dict[str, dict[str, Any]]:
    snapshots = dict(earlier or {})
    for service, snapshot in (newer or {}).items():
        snapshots[service] = dict(snapshot)
    return snapshots
