"""Reconciliation loops, work queue and watch caches."""
