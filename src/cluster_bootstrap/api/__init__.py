"""
cluster_bootstrap.api

Read-only status API (FastAPI).

Responsibilities:
- Expose run, gate, audit and unit-graph status to operators.
- Let a caller resolve which connection bundle belongs to them.
"""

# Package marker.
