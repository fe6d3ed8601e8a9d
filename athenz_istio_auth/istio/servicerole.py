"""
ServiceRole management.

A ServiceRole is derived from one Athenz role and the assertions that
reference it. Assertions are grouped by the path part of their resource
(``<role-ref>:<path>``); each group becomes one access rule on the
service ``<service-account>.<namespace>.<dns-suffix>``, where the service
account is the last dot segment of the role name.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Tuple

from athenz_istio_auth.athenz.models import Assertion
from athenz_istio_auth.exceptions import MalformedRoleNameError
from athenz_istio_auth.istio.models import (SERVICE_ROLE, AccessRule, Config,
                                            ConfigMeta, ReconcileEntry,
                                            ServiceRoleSpec)

SERVICE_ROLE_PREFIX = "service.role."
EMPTY_PATH = "empty-path"


def service_role_name(role_name: str) -> str:
    """Name of the ServiceRole object for a canonical role name"""
    if role_name.startswith(SERVICE_ROLE_PREFIX):
        return role_name[len(SERVICE_ROLE_PREFIX):]
    return role_name


def service_account(role_name: str) -> str:
    """Last dot segment of a role name, ex: service.role.domain.sa -> sa"""
    head, sep, sa = role_name.rpartition(".")
    if not sep:
        raise MalformedRoleNameError(
            f"Error splitting role {role_name} on . character"
        )
    if not sa:
        raise MalformedRoleNameError(f"Could not get sa from role: {role_name}")
    return sa


def assertion_path(assertion: Assertion) -> str:
    """Path following the first ':' of the resource, or EMPTY_PATH"""
    _, _, path = assertion.resource.partition(":")
    return path or EMPTY_PATH


class ServiceRoleManager:
    """Creates, updates and deletes ServiceRole objects in the store"""

    def __init__(self, store):
        self.store = store

    def get_service_role_map(self) -> Dict[str, ReconcileEntry]:
        """Index of all ServiceRoles by <name>-<namespace>"""
        return {
            config.meta.key: ReconcileEntry(config=config)
            for config in self.store.list(SERVICE_ROLE)
        }

    def compute_desired(
        self,
        namespace: str,
        dns_suffix: str,
        role_name: str,
        assertions: Iterable[Assertion],
    ) -> Tuple[ConfigMeta, ServiceRoleSpec]:
        """Build the ServiceRole identity and spec for a role"""
        sa = service_account(role_name)
        service = f"{sa}.{namespace}.{dns_suffix}"

        path_to_methods: Dict[str, List[str]] = defaultdict(list)
        for assertion in assertions:
            path_to_methods[assertion_path(assertion)].append(
                assertion.action.upper()
            )

        rules = []
        # Sorted so that the same input always renders the same spec
        for path in sorted(path_to_methods, key=lambda p: (p != EMPTY_PATH, p)):
            methods = sorted(path_to_methods[path])
            if path == EMPTY_PATH:
                rules.append(AccessRule(services=[service], methods=methods))
            else:
                rules.append(
                    AccessRule(services=[service], methods=methods, paths=[path])
                )

        meta = ConfigMeta(
            schema=SERVICE_ROLE, name=service_role_name(role_name), namespace=namespace
        )
        return meta, ServiceRoleSpec(rules=rules)

    def create_service_role(
        self,
        namespace: str,
        dns_suffix: str,
        role_name: str,
        assertions: Iterable[Assertion],
    ) -> Config:
        meta, spec = self.compute_desired(namespace, dns_suffix, role_name, assertions)
        return self.store.create(Config(meta=meta, spec=spec))

    def update_service_role(
        self,
        current: Config,
        dns_suffix: str,
        role_name: str,
        assertions: Iterable[Assertion],
    ) -> bool:
        """Write the desired spec if it differs; returns whether a write happened"""
        meta, spec = self.compute_desired(
            current.namespace, dns_suffix, role_name, assertions
        )
        if spec == current.spec:
            return False

        meta.resource_version = current.resource_version
        self.store.update(Config(meta=meta, spec=spec))
        return True

    def delete_service_role(self, name: str, namespace: str) -> None:
        self.store.delete(SERVICE_ROLE, name, namespace)
