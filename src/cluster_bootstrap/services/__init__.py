"""
cluster_bootstrap.services

Service layer.

Responsibilities:
- Provisioning run lifecycle (transaction + persistence owner).
- Default wiring of external collaborators (CA, cluster API, process supervisor).
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# The CLI and the status API call into this layer; orchestration details stay in `orchestrator`.
