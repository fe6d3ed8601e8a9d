"""
Typed Istio RBAC objects.

Each kind has its own spec class, so callers never inspect an untyped
payload. Spec classes compare structurally (dataclass equality), which is
what the managers use to decide whether an update is needed.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type

from athenz_istio_auth.exceptions import InvalidSpecError

SERVICE_ROLE_KIND = "ServiceRole"
DEFAULT_RBAC_CONFIG_NAME = "default"


class RbacMode:
    OFF = "OFF"
    ON = "ON"
    ON_WITH_INCLUSION = "ON_WITH_INCLUSION"
    ON_WITH_EXCLUSION = "ON_WITH_EXCLUSION"


def _string_list(data: Dict[str, Any], key: str) -> List[str]:
    value = data.get(key) or []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise InvalidSpecError(f"'{key}' must be a list of strings")
    return list(value)


def _string_map(data: Dict[str, Any], key: str) -> Dict[str, str]:
    value = data.get(key) or {}
    if not isinstance(value, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in value.items()
    ):
        raise InvalidSpecError(f"'{key}' must be a map of strings")
    return dict(value)


def _constraints(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Rule constraints: [{key: str, values: [str, ...]}, ...]"""
    value = data.get("constraints") or []
    if not isinstance(value, list):
        raise InvalidSpecError("'constraints' must be a list")

    constraints = []
    for constraint in value:
        if not isinstance(constraint, dict) or not isinstance(
            constraint.get("key"), str
        ):
            raise InvalidSpecError("Constraint must have a string key")
        constraints.append(
            {"key": constraint["key"], "values": _string_list(constraint, "values")}
        )
    return constraints


# ============================================================================
# SERVICE ROLE
# ============================================================================


@dataclass
class AccessRule:
    services: List[str]
    methods: List[str]
    paths: List[str] = field(default_factory=list)
    constraints: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"services": self.services, "methods": self.methods}
        if self.paths:
            data["paths"] = self.paths
        if self.constraints:
            data["constraints"] = self.constraints
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccessRule":
        if not isinstance(data, dict):
            raise InvalidSpecError("Access rule must be a dictionary")
        return cls(
            services=_string_list(data, "services"),
            methods=_string_list(data, "methods"),
            paths=_string_list(data, "paths"),
            constraints=_constraints(data),
        )


@dataclass
class ServiceRoleSpec:
    rules: List[AccessRule] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"rules": [r.to_dict() for r in self.rules]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceRoleSpec":
        rules = data.get("rules") or []
        if not isinstance(rules, list):
            raise InvalidSpecError("'rules' must be a list")
        return cls(rules=[AccessRule.from_dict(r) for r in rules])


# ============================================================================
# SERVICE ROLE BINDING
# ============================================================================


@dataclass
class RoleRef:
    name: str
    kind: str = SERVICE_ROLE_KIND

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "name": self.name}


@dataclass
class Subject:
    user: str = ""
    properties: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"user": self.user}
        if self.properties:
            data["properties"] = self.properties
        return data


@dataclass
class ServiceRoleBindingSpec:
    role_ref: RoleRef
    subjects: List[Subject] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "roleRef": self.role_ref.to_dict(),
            "subjects": [s.to_dict() for s in self.subjects],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceRoleBindingSpec":
        role_ref = data.get("roleRef")
        if not isinstance(role_ref, dict) or not role_ref.get("name"):
            raise InvalidSpecError("Binding must reference a role by name")

        raw_subjects = data.get("subjects") or []
        if not isinstance(raw_subjects, list):
            raise InvalidSpecError("'subjects' must be a list")

        subjects = []
        for subject in raw_subjects:
            if not isinstance(subject, dict):
                raise InvalidSpecError("Subject must be a dictionary")
            user = subject.get("user", "")
            if not isinstance(user, str):
                raise InvalidSpecError("Subject user must be a string")
            subjects.append(
                Subject(user=user, properties=_string_map(subject, "properties"))
            )

        return cls(
            role_ref=RoleRef(
                name=role_ref["name"], kind=role_ref.get("kind", SERVICE_ROLE_KIND)
            ),
            subjects=subjects,
        )


# ============================================================================
# CLUSTER RBAC CONFIG
# ============================================================================


@dataclass
class RbacConfigTarget:
    services: List[str] = field(default_factory=list)
    namespaces: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"services": self.services}
        if self.namespaces:
            data["namespaces"] = self.namespaces
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["RbacConfigTarget"]:
        if data is None:
            return None
        if not isinstance(data, dict):
            raise InvalidSpecError("Rbac config target must be a dictionary")
        return cls(
            services=_string_list(data, "services"),
            namespaces=_string_list(data, "namespaces"),
        )


@dataclass
class RbacConfigSpec:
    mode: str = RbacMode.OFF
    inclusion: Optional[RbacConfigTarget] = None
    exclusion: Optional[RbacConfigTarget] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"mode": self.mode}
        if self.inclusion is not None:
            data["inclusion"] = self.inclusion.to_dict()
        if self.exclusion is not None:
            data["exclusion"] = self.exclusion.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RbacConfigSpec":
        return cls(
            mode=data.get("mode", RbacMode.OFF),
            inclusion=RbacConfigTarget.from_dict(data.get("inclusion")),
            exclusion=RbacConfigTarget.from_dict(data.get("exclusion")),
        )

    @classmethod
    def with_inclusion(cls, services: List[str]) -> "RbacConfigSpec":
        return cls(
            mode=RbacMode.ON_WITH_INCLUSION,
            inclusion=RbacConfigTarget(services=list(services)),
        )


# ============================================================================
# SCHEMAS AND CONFIG OBJECTS
# ============================================================================


@dataclass(frozen=True)
class ConfigSchema:
    """Describes one custom resource kind in the policy store"""

    kind: str
    plural: str
    spec_type: Type
    cluster_scoped: bool = False


SERVICE_ROLE = ConfigSchema("ServiceRole", "serviceroles", ServiceRoleSpec)
SERVICE_ROLE_BINDING = ConfigSchema(
    "ServiceRoleBinding", "servicerolebindings", ServiceRoleBindingSpec
)
CLUSTER_RBAC_CONFIG = ConfigSchema(
    "ClusterRbacConfig", "clusterrbacconfigs", RbacConfigSpec, cluster_scoped=True
)


@dataclass
class ConfigMeta:
    schema: ConfigSchema
    name: str
    namespace: str = ""
    resource_version: Optional[str] = None

    @property
    def key(self) -> str:
        """Index key used by the reconciler: <name>-<namespace>"""
        return f"{self.name}-{self.namespace}"


@dataclass
class Config:
    """A live or proposed object: identity plus a typed spec"""

    meta: ConfigMeta
    spec: Any

    @property
    def name(self) -> str:
        return self.meta.name

    @property
    def namespace(self) -> str:
        return self.meta.namespace

    @property
    def resource_version(self) -> Optional[str]:
        return self.meta.resource_version


@dataclass
class ReconcileEntry:
    """Live object seen at the start of a pass and whether it is still wanted"""

    config: Config
    processed: bool = False
