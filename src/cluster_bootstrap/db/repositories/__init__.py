"""
cluster_bootstrap.db.repositories

One repository per table: runs, gates, markers, audit.
"""


# --- Module Notes -----------------------------------------------------------
# Repositories flush but never commit; the provisioning service and the CLI own the
# transaction.
