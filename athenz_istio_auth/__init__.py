"""Sync Athenz domains into Istio RBAC custom resources."""

__version__ = "0.1.0"
