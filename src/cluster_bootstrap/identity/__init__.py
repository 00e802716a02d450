"""
cluster_bootstrap.identity

Identity package.

Responsibilities:
- Principal data model and the registry that enumerates them.
"""

# Package marker.
