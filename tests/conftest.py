"""Pytest configuration and shared fixtures for the controller tests."""

import copy
from typing import Dict, List, Optional, Tuple

import pytest

from athenz_istio_auth.athenz.models import Assertion, Domain, Policy, Role
from athenz_istio_auth.controller.cache import ObjectCache
from athenz_istio_auth.controller.controller import Controller
from athenz_istio_auth.controller.workqueue import RateLimitingQueue
from athenz_istio_auth.core.config import Settings
from athenz_istio_auth.exceptions import (AlreadyExistsError, AuthorityError,
                                          ConflictError, NotFoundError)
from athenz_istio_auth.istio.models import Config, ConfigSchema
from athenz_istio_auth.istio.onboarding import OnboardingController
from athenz_istio_auth.istio.servicerole import ServiceRoleManager
from athenz_istio_auth.istio.servicerolebinding import \
    ServiceRoleBindingManager

DNS_SUFFIX = "svc.cluster.local"

# ============================================================================
# Fakes
# ============================================================================


class MemoryConfigStore:
    """In-memory policy store with resource versions and a call log"""

    def __init__(self):
        self.objects: Dict[Tuple[str, str, str], Config] = {}
        self.calls: List[Tuple[str, str, str, str]] = []
        self.fail: Dict[Tuple[str, str], Exception] = {}
        self._version = 0

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def _check_failure(self, operation: str, name: str):
        error = self.fail.get((operation, name))
        if error is not None:
            raise error

    @property
    def writes(self) -> List[Tuple[str, str, str, str]]:
        return [call for call in self.calls if call[0] != "list"]

    def seed(self, config: Config) -> Config:
        """Insert an object without recording a call"""
        stored = copy.deepcopy(config)
        stored.meta.resource_version = self._next_version()
        key = (stored.meta.schema.plural, stored.namespace, stored.name)
        self.objects[key] = stored
        return copy.deepcopy(stored)

    def list(self, schema: ConfigSchema) -> List[Config]:
        self.calls.append(("list", schema.kind, "", ""))
        self._check_failure("list", schema.kind)
        return [
            copy.deepcopy(config)
            for (plural, _, _), config in sorted(self.objects.items())
            if plural == schema.plural
        ]

    def get(
        self, schema: ConfigSchema, name: str, namespace: str = ""
    ) -> Optional[Config]:
        config = self.objects.get((schema.plural, namespace, name))
        return copy.deepcopy(config) if config else None

    def create(self, config: Config) -> Config:
        key = (config.meta.schema.plural, config.namespace, config.name)
        self.calls.append(
            ("create", config.meta.schema.kind, config.namespace, config.name)
        )
        self._check_failure("create", config.name)
        if key in self.objects:
            raise AlreadyExistsError(f"{config.name} already exists")
        return self.seed(config)

    def update(self, config: Config) -> Config:
        key = (config.meta.schema.plural, config.namespace, config.name)
        self.calls.append(
            ("update", config.meta.schema.kind, config.namespace, config.name)
        )
        self._check_failure("update", config.name)
        current = self.objects.get(key)
        if current is None:
            raise NotFoundError(f"{config.name} not found")
        if current.resource_version != config.resource_version:
            raise ConflictError(f"{config.name} has a newer resource version")
        return self.seed(config)

    def delete(self, schema: ConfigSchema, name: str, namespace: str = "") -> None:
        self.calls.append(("delete", schema.kind, namespace, name))
        self._check_failure("delete", name)
        if self.objects.pop((schema.plural, namespace, name), None) is None:
            raise NotFoundError(f"{name} not found")


class FakeAuthority:
    """Serves domains from a dictionary; unknown or failing domains raise"""

    def __init__(self):
        self.domains: Dict[str, Domain] = {}
        self.failing: set = set()
        self.lookups: List[str] = []

    def add(self, domain: Domain) -> None:
        self.domains[domain.name] = domain

    def get_domain(self, name: str) -> Domain:
        self.lookups.append(name)
        if name in self.failing:
            raise AuthorityError(f"Athenz unavailable for {name}")
        if name not in self.domains:
            raise AuthorityError(f"Athenz domain {name} not found")
        return copy.deepcopy(self.domains[name])


def namespace_object(name: str) -> dict:
    return {"metadata": {"name": name}}


def service_object(name: str, namespace: str, enabled: Optional[str] = "true") -> dict:
    annotations = {}
    if enabled is not None:
        annotations["authz.istio.io/enabled"] = enabled
    return {
        "metadata": {"name": name, "namespace": namespace, "annotations": annotations}
    }


# ============================================================================
# Domain Fixtures
# ============================================================================


@pytest.fixture
def make_domain():
    """Factory for domains; roles maps simple role name -> (members, assertions)"""

    def _make(name: str, roles: Dict[str, Tuple[List[str], List[Tuple[str, str]]]]):
        domain_roles = []
        assertions = []
        for simple_name, (members, actions) in roles.items():
            role_name = f"{name}:role.{simple_name}"
            domain_roles.append(Role(name=role_name, members=list(members)))
            for action, resource in actions:
                assertions.append(
                    Assertion(role=role_name, action=action, resource=resource)
                )
        return Domain(
            name=name,
            roles=domain_roles,
            policies=[Policy(name=f"{name}:policy.admin", assertions=assertions)],
        )

    return _make


@pytest.fixture
def athenz_domain(make_domain):
    """The athenz.domain example with one writer role and one member."""
    return make_domain(
        "athenz.domain",
        {
            "service.role.client-writer-role": (
                ["user.foo"],
                [("PUT", "athenz.domain:role.client-writer-role:svc.my-service-name")],
            )
        },
    )


@pytest.fixture
def signed_domain():
    """SignedDomain document as stored in an AthenzDomain resource."""
    return {
        "domain": {
            "name": "athenz.domain",
            "modified": "2019-06-21T19:28:09.305Z",
            "roles": [
                {
                    "name": "athenz.domain:role.service.role.client-writer-role",
                    "roleMembers": [{"memberName": "user.foo"}],
                },
                {
                    "name": "athenz.domain:role.admin",
                    "members": ["user.admin"],
                },
            ],
            "policies": {
                "contents": {
                    "domain": "athenz.domain",
                    "policies": [
                        {
                            "name": "athenz.domain:policy.admin",
                            "assertions": [
                                {
                                    "effect": "ALLOW",
                                    "action": "put",
                                    "role": (
                                        "athenz.domain:role.service.role."
                                        "client-writer-role"
                                    ),
                                    "resource": "athenz.domain:svc.my-service-name",
                                }
                            ],
                        }
                    ],
                },
                "keyId": "col-env-1.1",
                "signature": "signature-policy",
            },
        },
        "keyId": "colo-env-1.1",
        "signature": "signature",
    }


# ============================================================================
# Controller Fixtures
# ============================================================================


@pytest.fixture
def settings():
    return Settings(dns_suffix=DNS_SUFFIX, poll_interval=1.0, metrics_enabled=False)


@pytest.fixture
def store():
    return MemoryConfigStore()


@pytest.fixture
def authority():
    return FakeAuthority()


@pytest.fixture
def namespace_cache():
    return ObjectCache("Namespace")


@pytest.fixture
def service_cache():
    return ObjectCache("Service")


@pytest.fixture
def sr_mgr(store):
    return ServiceRoleManager(store)


@pytest.fixture
def srb_mgr(store):
    return ServiceRoleBindingManager(store)


@pytest.fixture
def controller(authority, sr_mgr, srb_mgr, namespace_cache):
    return Controller(
        authority=authority,
        sr_mgr=sr_mgr,
        srb_mgr=srb_mgr,
        namespace_cache=namespace_cache,
        queue=RateLimitingQueue("athenz"),
        dns_suffix=DNS_SUFFIX,
        poll_interval=1.0,
    )


@pytest.fixture
def onboarding(store, service_cache):
    return OnboardingController(
        store=store,
        service_cache=service_cache,
        queue=RateLimitingQueue("onboarding"),
        dns_suffix=DNS_SUFFIX,
    )


@pytest.fixture
def namespace():
    return namespace_object


@pytest.fixture
def service():
    return service_object
