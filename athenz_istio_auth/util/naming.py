"""
Name conversions between Athenz and Kubernetes.

Athenz domains use '.' as the separator and may contain '-'; namespaces may
only contain '-'. A literal '-' in a domain is doubled so the mapping can be
reversed:

    athenz.domain    <-> athenz-domain
    my-team.prod     <-> my--team-prod
"""

from typing import Optional

SUBJECT_SA_SEPARATOR = "/sa/"


def namespace_to_domain(namespace: str) -> str:
    """Convert a Kubernetes namespace name to an Athenz domain name."""
    dotted = namespace.replace("-", ".")
    return dotted.replace("..", "-")


def domain_to_namespace(domain: str) -> str:
    """Convert an Athenz domain name to a Kubernetes namespace name."""
    doubled = domain.replace("-", "--")
    return doubled.replace(".", "-")


def member_to_subject(member: str) -> Optional[str]:
    """
    Render an Athenz principal as an Istio subject user.

    The principal is split on its last '.', so ``user.foo`` becomes
    ``user/sa/foo`` and ``my.domain.svc`` becomes ``my.domain/sa/svc``.
    Returns None when the member has no domain part.
    """
    domain, sep, name = member.rpartition(".")
    if not sep or not domain or not name:
        return None
    return f"{domain}{SUBJECT_SA_SEPARATOR}{name}"
