"""Unit tests for ServiceRole derivation and management."""

import pytest

from athenz_istio_auth.athenz.models import Assertion
from athenz_istio_auth.exceptions import MalformedRoleNameError
from athenz_istio_auth.istio.models import SERVICE_ROLE, AccessRule
from athenz_istio_auth.istio.servicerole import (EMPTY_PATH, assertion_path,
                                                 service_account,
                                                 service_role_name)

ROLE = "athenz.domain:role.service.role.writer"


def assertion(action, resource):
    return Assertion(role=ROLE, action=action, resource=resource)


@pytest.mark.unit
class TestNaming:
    def test_service_role_name_strips_prefix(self):
        assert service_role_name("service.role.writer-role") == "writer-role"

    def test_service_account_is_last_segment(self):
        assert service_account("service.role.writer-role") == "writer-role"
        assert service_account("service.role.domain.backend") == "backend"

    @pytest.mark.parametrize("role_name", ["writer", "service.role."])
    def test_malformed_role_name(self, role_name):
        with pytest.raises(MalformedRoleNameError):
            service_account(role_name)

    def test_assertion_path(self):
        assert assertion_path(assertion("GET", "athenz.domain:/api/*")) == "/api/*"
        assert assertion_path(assertion("GET", "a:b:c")) == "b:c"
        assert assertion_path(assertion("GET", "athenz.domain")) == EMPTY_PATH
        assert assertion_path(assertion("GET", "athenz.domain:")) == EMPTY_PATH


@pytest.mark.unit
class TestComputeDesired:
    """Test rule grouping of a role's assertions."""

    def test_groups_methods_by_path(self, sr_mgr):
        meta, spec = sr_mgr.compute_desired(
            "athenz-domain",
            "svc.cluster.local",
            "service.role.writer",
            [
                assertion("put", "athenz.domain:/data"),
                assertion("GET", "athenz.domain:/data"),
                assertion("get", "athenz.domain:/health"),
                assertion("delete", "athenz.domain"),
            ],
        )

        service = "writer.athenz-domain.svc.cluster.local"
        assert meta.schema == SERVICE_ROLE
        assert (meta.name, meta.namespace) == ("writer", "athenz-domain")
        assert spec.rules == [
            AccessRule(services=[service], methods=["DELETE"]),
            AccessRule(services=[service], methods=["GET", "PUT"], paths=["/data"]),
            AccessRule(services=[service], methods=["GET"], paths=["/health"]),
        ]

    def test_no_assertions_gives_no_rules(self, sr_mgr):
        _, spec = sr_mgr.compute_desired("ns", "local", "service.role.r", [])

        assert spec.rules == []

    def test_order_of_assertions_does_not_matter(self, sr_mgr):
        assertions = [
            assertion("GET", "d:/b"),
            assertion("POST", "d:/a"),
            assertion("PUT", "d:/a"),
        ]
        _, first = sr_mgr.compute_desired("ns", "local", "service.role.r", assertions)
        _, second = sr_mgr.compute_desired(
            "ns", "local", "service.role.r", list(reversed(assertions))
        )

        assert first == second

    def test_malformed_role_raises(self, sr_mgr):
        with pytest.raises(MalformedRoleNameError):
            sr_mgr.compute_desired("ns", "local", "writer", [])


@pytest.mark.unit
class TestServiceRoleManager:
    def test_create_and_map(self, sr_mgr, store):
        sr_mgr.create_service_role(
            "ns", "local", "service.role.r", [assertion("GET", "d:/a")]
        )

        service_role_map = sr_mgr.get_service_role_map()

        assert list(service_role_map) == ["r-ns"]
        assert service_role_map["r-ns"].processed is False

    def test_update_without_change_is_noop(self, sr_mgr, store):
        created = sr_mgr.create_service_role(
            "ns", "local", "service.role.r", [assertion("GET", "d:/a")]
        )

        updated = sr_mgr.update_service_role(
            created, "local", "service.role.r", [assertion("get", "d:/a")]
        )

        assert updated is False
        assert [w[0] for w in store.writes] == ["create"]

    def test_update_with_change_writes(self, sr_mgr, store):
        created = sr_mgr.create_service_role(
            "ns", "local", "service.role.r", [assertion("GET", "d:/a")]
        )

        updated = sr_mgr.update_service_role(
            created, "local", "service.role.r", [assertion("POST", "d:/a")]
        )

        assert updated is True
        assert store.get(SERVICE_ROLE, "r", "ns").spec.rules[0].methods == ["POST"]

    def test_delete(self, sr_mgr, store):
        sr_mgr.create_service_role("ns", "local", "service.role.r", [])

        sr_mgr.delete_service_role("r", "ns")

        assert store.get(SERVICE_ROLE, "r", "ns") is None
