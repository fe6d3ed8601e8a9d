"""Istio RBAC objects and their managers."""

from .models import (CLUSTER_RBAC_CONFIG, SERVICE_ROLE, SERVICE_ROLE_BINDING,
                     Config, ConfigMeta, RbacConfigSpec,
                     ServiceRoleBindingSpec, ServiceRoleSpec)
from .servicerole import ServiceRoleManager
from .servicerolebinding import ServiceRoleBindingManager
from .store import IstioConfigStore

__all__ = [
    "SERVICE_ROLE",
    "SERVICE_ROLE_BINDING",
    "CLUSTER_RBAC_CONFIG",
    "Config",
    "ConfigMeta",
    "ServiceRoleSpec",
    "ServiceRoleBindingSpec",
    "RbacConfigSpec",
    "ServiceRoleManager",
    "ServiceRoleBindingManager",
    "IstioConfigStore",
]
