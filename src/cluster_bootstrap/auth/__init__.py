"""
cluster_bootstrap.auth

Bearer-token authentication and the operator/admin roles of the status API.
"""
