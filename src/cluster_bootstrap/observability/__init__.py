"""
cluster_bootstrap.observability

Log enrichment for runs, gates and API requests.

Responsibilities:
- JSON logging setup with secret scrubbing (`logging`).
- Run/gate context binding (`context`) and request context (`middleware`).
"""
