"""Athenz domain access."""

from .client import AthenzDomainClient
from .models import Assertion, Domain, Policy, Role

__all__ = ["AthenzDomainClient", "Domain", "Role", "Policy", "Assertion"]
