"""
cluster_bootstrap.bundles

Connection bundle package.

Responsibilities:
- Synthesize per-identity kubeconfig bundles and resolve the right one for a caller.
"""

# Package marker.
