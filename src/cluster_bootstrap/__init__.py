"""
cluster_bootstrap

Bootstraps the control plane of a cluster master: identities, certificates, connection
bundles, readiness gating and the monitoring role bindings.
"""

__all__ = ["__version__"]

__version__ = "0.3.0"
