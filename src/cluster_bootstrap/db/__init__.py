"""
cluster_bootstrap.db

Local state database of a master: runs, gate records, job markers, audit trail.

Responsibilities:
- Declarative base with pinned constraint names, models, engine/session factories.
"""
