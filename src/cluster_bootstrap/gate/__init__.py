"""
cluster_bootstrap.gate

Readiness gate package.

Responsibilities:
- Static readiness requirements per dependent service.
- The PENDING/SATISFIED/FAILED gate state machine and its poller.
- The declarative unit graph handed to the process supervisor.
"""

# Package marker.
