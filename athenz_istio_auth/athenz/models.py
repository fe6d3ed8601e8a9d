"""
Read-only snapshot of an Athenz domain.

Only the parts needed to derive Istio RBAC objects are kept: roles with
their members and policy assertions.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

from athenz_istio_auth.exceptions import AuthorityError

ROLE_SEPARATOR = ":role."


class AssertionEffect(str, Enum):
    ALLOW = "ALLOW"
    DENY = "DENY"


@dataclass
class Assertion:
    """Binds a role to an action on a resource"""

    role: str
    action: str
    resource: str
    effect: str = AssertionEffect.ALLOW.value

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Assertion":
        return cls(
            role=data.get("role", ""),
            action=data.get("action", ""),
            resource=data.get("resource", ""),
            effect=(data.get("effect") or AssertionEffect.ALLOW.value).upper(),
        )


@dataclass
class Policy:
    name: str
    assertions: List[Assertion] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Policy":
        return cls(
            name=data.get("name", ""),
            assertions=[
                Assertion.from_dict(a) for a in data.get("assertions") or []
            ],
        )


@dataclass
class Role:
    """Athenz role, name is fully qualified: <domain>:role.<simple-name>"""

    name: str
    members: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Role":
        role_members = data.get("roleMembers")
        if role_members:
            members = [m["memberName"] for m in role_members if m.get("memberName")]
        else:
            members = list(data.get("members") or [])

        return cls(name=data.get("name", ""), members=members)

    def simple_name(self, domain: str) -> str:
        """Role name with the '<domain>:role.' prefix removed"""
        prefix = domain + ROLE_SEPARATOR
        if self.name.startswith(prefix):
            return self.name[len(prefix):]
        return self.name


@dataclass
class Domain:
    name: str
    roles: List[Role] = field(default_factory=list)
    policies: List[Policy] = field(default_factory=list)

    def assertions_for(self, role: Role) -> List[Assertion]:
        """All assertions across the domain's policies that reference role"""
        return [
            assertion
            for policy in self.policies
            for assertion in policy.assertions
            if assertion.role == role.name
        ]

    @classmethod
    def from_signed_domain(cls, signed_domain: Dict[str, Any]) -> "Domain":
        """Build a domain from an Athenz SignedDomain document"""
        if not isinstance(signed_domain, dict):
            raise AuthorityError("Signed domain must be a dictionary")

        data = signed_domain.get("domain")
        if not isinstance(data, dict) or not data.get("name"):
            raise AuthorityError("Signed domain has no domain data")

        try:
            roles = [Role.from_dict(r) for r in data.get("roles") or []]

            contents = (data.get("policies") or {}).get("contents") or {}
            policies = [Policy.from_dict(p) for p in contents.get("policies") or []]
        except (AttributeError, KeyError, TypeError) as e:
            raise AuthorityError(
                f"Malformed signed domain {data.get('name')}: {e}"
            ) from e

        return cls(name=data["name"], roles=roles, policies=policies)
