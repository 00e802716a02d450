"""
cluster_bootstrap.orchestrator

Provisioning run orchestration (LangGraph state machine).

Responsibilities:
- Typed run state, reducers, nodes, routing, and graph compilation.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Call sites should go through `services.provisioning_service`, which owns persistence.
