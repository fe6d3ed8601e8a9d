"""ServiceRoleBinding management."""

from typing import Dict, Iterable, Tuple

from athenz_istio_auth.core.logging import get_logger
from athenz_istio_auth.istio.models import (SERVICE_ROLE_BINDING, Config,
                                            ConfigMeta, ReconcileEntry, RoleRef,
                                            ServiceRoleBindingSpec, Subject)
from athenz_istio_auth.util.naming import member_to_subject

logger = get_logger(__name__)


class ServiceRoleBindingManager:
    """Creates, updates and deletes ServiceRoleBinding objects in the store"""

    def __init__(self, store):
        self.store = store

    def get_service_role_binding_map(self) -> Dict[str, ReconcileEntry]:
        """Index of all ServiceRoleBindings by <name>-<namespace>"""
        return {
            config.meta.key: ReconcileEntry(config=config)
            for config in self.store.list(SERVICE_ROLE_BINDING)
        }

    def compute_desired(
        self, namespace: str, role_name: str, members: Iterable[str]
    ) -> Tuple[ConfigMeta, ServiceRoleBindingSpec]:
        """
        Build a binding of role_name to the given Athenz members.

        role_name is the ServiceRole object name; the binding uses the same
        name. Members are rendered as Istio users (user.foo -> user/sa/foo)
        and sorted.
        """
        users = set()
        for member in members:
            user = member_to_subject(member)
            if user is None:
                logger.warning(
                    f"Skipping member {member} of role {role_name} in namespace "
                    f"{namespace}: not of the form <domain>.<name>"
                )
                continue
            users.add(user)

        meta = ConfigMeta(
            schema=SERVICE_ROLE_BINDING, name=role_name, namespace=namespace
        )
        spec = ServiceRoleBindingSpec(
            role_ref=RoleRef(name=role_name),
            subjects=[Subject(user=user) for user in sorted(users)],
        )
        return meta, spec

    def create_service_role_binding(
        self, namespace: str, role_name: str, members: Iterable[str]
    ) -> Config:
        meta, spec = self.compute_desired(namespace, role_name, members)
        return self.store.create(Config(meta=meta, spec=spec))

    def update_service_role_binding(
        self, current: Config, namespace: str, role_name: str, members: Iterable[str]
    ) -> bool:
        """Write the desired spec if it differs; returns whether a write happened"""
        meta, spec = self.compute_desired(namespace, role_name, members)
        if spec == current.spec:
            return False

        meta.resource_version = current.resource_version
        self.store.update(Config(meta=meta, spec=spec))
        return True

    def delete_service_role_binding(self, name: str, namespace: str) -> None:
        self.store.delete(SERVICE_ROLE_BINDING, name, namespace)
