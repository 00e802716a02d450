"""
cluster_bootstrap.reconciler

Authorization reconciliation package.

Responsibilities:
- Cluster API client (mutual TLS), create-if-absent primitive, desired role bindings.
- The one-shot reconciler and the service-account kubeconfig helper.
"""

# Package marker.
