"""
cluster_bootstrap.pki

PKI package (client side only; the CA itself is external).

Responsibilities:
- CA client boundary, certificate issuance adapter, bootstrap token derivation.
- Secure file writes for keys and tokens.
"""

# Package marker.
