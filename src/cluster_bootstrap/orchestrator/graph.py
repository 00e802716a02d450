from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from cluster_bootstrap.orchestrator.context import ProvisioningContext
from cluster_bootstrap.orchestrator.nodes import (
    bundles_node,
    entry_node,
    finish_node,
    gates_node,
    issuance_node,
    reconcile_node,
    registry_node,
    route_after_gates,
    token_node,
)
from cluster_bootstrap.orchestrator.state import ProvisioningState


def build_graph(*, ctx: ProvisioningContext):
    """
    Returns a compiled LangGraph runnable for one provisioning run.
    """

    try:
        from langgraph.graph import END, StateGraph  # type: ignore[import-not-found]
    except ImportError as e:  # pragma: no cover
        raise RuntimeError("LangGraph is not available. Install the package dependencies.") from e

    graph = StateGraph(ProvisioningState)

    graph.add_node("entry", entry_node)
    graph.add_node("build_registry", _bind_ctx(registry_node, ctx))
    graph.add_node("derive_token", _bind_ctx(token_node, ctx))
    graph.add_node("issue_certificates", _bind_ctx(issuance_node, ctx))
    graph.add_node("write_bundles", _bind_ctx(bundles_node, ctx))
    graph.add_node("await_gates", _bind_ctx(gates_node, ctx))
    graph.add_node("reconcile_bindings", _bind_ctx(reconcile_node, ctx))
    graph.add_node("finish", finish_node)

    graph.set_entry_point("entry")

    # build_registry before derive_token: identity errors are the cheapest fatal check.
    graph.add_edge("entry", "build_registry")
    graph.add_edge("build_registry", "derive_token")
    graph.add_edge("derive_token", "issue_certificates")
    graph.add_edge("issue_certificates", "write_bundles")
    graph.add_edge("write_bundles", "await_gates")

    # Node names must not collide with state keys (token, bundles, gates, reconcile).
    graph.add_conditional_edges(
        "await_gates",
        route_after_gates,
        {"reconcile": "reconcile_bindings", "finish": "finish"},
    )
    graph.add_edge("reconcile_bindings", "finish")
    graph.add_edge("finish", END)

    return graph.compile()


def _bind_ctx(
    fn: Callable[..., Awaitable[dict[str, Any]]],
    ctx: ProvisioningContext,
) -> Callable[[ProvisioningState], Awaitable[dict[str, Any]]]:
    async def _wrapped(state: ProvisioningState) -> dict[str, Any]:
        return await fn(state, ctx=ctx)

    return _wrapped
