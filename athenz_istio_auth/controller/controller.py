"""
Main reconciler: Athenz domains to ServiceRoles and ServiceRoleBindings.

One pass of ``Controller.sync``:

1. Index the current ServiceRoles and ServiceRoleBindings by
   <name>-<namespace>, all marked unprocessed.
2. Fetch the Athenz domain of every namespace in the cluster. A failed
   lookup is recorded so nothing in that namespace is deleted this pass.
3. For every role named service.role.<name>, create or update the
   ServiceRole from the role's assertions, and the ServiceRoleBinding
   from its members (no binding for a role without members).
4. Delete every indexed object that was not matched by a role.
"""

import asyncio
from typing import Dict, List, Optional, Set, Tuple

from athenz_istio_auth.athenz.models import Domain, Role
from athenz_istio_auth.controller.cache import ObjectCache
from athenz_istio_auth.controller.worker import QueueWorker
from athenz_istio_auth.controller.workqueue import RateLimitingQueue
from athenz_istio_auth.core.logging import get_logger, log_event
from athenz_istio_auth.exceptions import MalformedRoleNameError, NotFoundError
from athenz_istio_auth.istio.models import ReconcileEntry
from athenz_istio_auth.istio.servicerole import (SERVICE_ROLE_PREFIX,
                                                 ServiceRoleManager,
                                                 service_account,
                                                 service_role_name)
from athenz_istio_auth.istio.servicerolebinding import \
    ServiceRoleBindingManager
from athenz_istio_auth.util.naming import namespace_to_domain

logger = get_logger(__name__)


class Controller(QueueWorker):
    """Polls Athenz and reconciles Istio RBAC objects toward it"""

    loop_name = "athenz"
    queue_key = "sync"

    def __init__(
        self,
        authority,
        sr_mgr: ServiceRoleManager,
        srb_mgr: ServiceRoleBindingManager,
        namespace_cache: ObjectCache,
        queue: RateLimitingQueue,
        dns_suffix: str,
        poll_interval: float,
        num_retries: int = 3,
    ):
        super().__init__(queue, num_retries=num_retries)
        self.authority = authority
        self.sr_mgr = sr_mgr
        self.srb_mgr = srb_mgr
        self.namespace_cache = namespace_cache
        self.dns_suffix = dns_suffix
        self.poll_interval = poll_interval

    def get_namespaces(self) -> List[str]:
        """Names of the namespaces currently in the cache"""
        names = []
        for namespace in self.namespace_cache.list():
            name = (namespace.get("metadata") or {}).get("name")
            if not name:
                logger.warning("Namespace without a name in cache, skipping")
                continue
            names.append(name)
        return sorted(names)

    def fetch_domains(
        self, namespaces: List[str]
    ) -> Tuple[Dict[str, Domain], Set[str]]:
        """Look up the domain of each namespace; returns (domains, failed domains)"""
        domains: Dict[str, Domain] = {}
        err_domains: Set[str] = set()

        for namespace in namespaces:
            domain_name = namespace_to_domain(namespace)
            try:
                domains[namespace] = self.authority.get_domain(domain_name)
            except Exception as e:
                logger.error(
                    f"Error fetching Athenz domain {domain_name}: {e}",
                    extra={"namespace": namespace, "domain": domain_name},
                )
                err_domains.add(domain_name)

        return domains, err_domains

    def sync(self) -> None:
        """Run one reconciliation pass; raises only if the store cannot be listed"""
        service_role_map = self.sr_mgr.get_service_role_map()
        logger.debug(f"Found {len(service_role_map)} service roles")

        service_role_binding_map = self.srb_mgr.get_service_role_binding_map()
        logger.debug(f"Found {len(service_role_binding_map)} service role bindings")

        domains, err_domains = self.fetch_domains(self.get_namespaces())

        for namespace, domain in domains.items():
            for role in domain.roles:
                self.sync_role(
                    namespace, domain, role, service_role_map, service_role_binding_map
                )

        self.delete_unprocessed(
            service_role_map,
            err_domains,
            self.sr_mgr.delete_service_role,
            "service role",
        )
        self.delete_unprocessed(
            service_role_binding_map,
            err_domains,
            self.srb_mgr.delete_service_role_binding,
            "service role binding",
        )

        log_event(
            logger,
            "info",
            "athenz_sync_completed",
            domains=len(domains),
            failed_domains=sorted(err_domains),
        )

    def sync_role(
        self,
        namespace: str,
        domain: Domain,
        role: Role,
        service_role_map: Dict[str, ReconcileEntry],
        service_role_binding_map: Dict[str, ReconcileEntry],
    ) -> None:
        """Create or update the ServiceRole and ServiceRoleBinding of one role"""
        # ex: <domain>:role.service.role.<name>
        simple_name = role.simple_name(domain.name)
        if not simple_name.startswith(SERVICE_ROLE_PREFIX):
            return

        assertions = domain.assertions_for(role)
        name = service_role_name(simple_name)
        key = f"{name}-{namespace}"

        try:
            service_account(simple_name)
        except MalformedRoleNameError as e:
            logger.error(
                f"Skipping role {role.name}: {e}", extra={"namespace": namespace}
            )
            return

        service_role = service_role_map.get(key)
        if service_role is None:
            logger.info(f"Service role {name} does not exist, creating...")
            try:
                self.sr_mgr.create_service_role(
                    namespace, self.dns_suffix, simple_name, assertions
                )
                logger.info(f"Created service role {name} in namespace {namespace}")
            except Exception as e:
                logger.error(f"Error creating service role {name} in {namespace}: {e}")
        else:
            service_role.processed = True
            try:
                updated = self.sr_mgr.update_service_role(
                    service_role.config, self.dns_suffix, simple_name, assertions
                )
            except Exception as e:
                logger.error(f"Error updating service role {name} in {namespace}: {e}")
            else:
                if updated:
                    logger.info(f"Updated service role {name} in namespace {namespace}")
                else:
                    logger.debug(
                        f"No difference found for service role {name} in namespace "
                        f"{namespace}, not updating"
                    )

        if not role.members:
            logger.debug(
                f"Role {name} has no members, skipping service role binding creation"
            )
            return

        binding = service_role_binding_map.get(key)
        if binding is None:
            try:
                self.srb_mgr.create_service_role_binding(namespace, name, role.members)
                logger.info(
                    f"Created service role binding {name} in namespace {namespace}"
                )
            except Exception as e:
                logger.error(
                    f"Error creating service role binding {name} in {namespace}: {e}"
                )
            return

        binding.processed = True
        try:
            updated = self.srb_mgr.update_service_role_binding(
                binding.config, namespace, name, role.members
            )
        except Exception as e:
            logger.error(
                f"Error updating service role binding {name} in {namespace}: {e}"
            )
            return

        if updated:
            logger.info(f"Updated service role binding {name} in namespace {namespace}")
        else:
            logger.debug(
                f"No difference found for service role binding {name} in namespace "
                f"{namespace}, not updating"
            )

    def delete_unprocessed(
        self,
        entries: Dict[str, ReconcileEntry],
        err_domains: Set[str],
        delete,
        kind: str,
    ) -> None:
        """Delete entries no role claimed, except in namespaces whose lookup failed"""
        for entry in entries.values():
            if entry.processed:
                continue

            name, namespace = entry.config.name, entry.config.namespace
            if namespace_to_domain(namespace) in err_domains:
                logger.info(
                    f"Skipping delete for {kind} {name} in namespace {namespace} "
                    f"due to Athenz error"
                )
                continue

            try:
                delete(name, namespace)
            except NotFoundError:
                logger.debug(f"{kind} {name} in namespace {namespace} already deleted")
                continue
            except Exception as e:
                logger.error(f"Error deleting {kind} {name} in {namespace}: {e}")
                continue

            logger.info(f"Deleted {kind} {name} in namespace {namespace}")

    async def poll(self, stop: Optional[asyncio.Event] = None) -> None:
        """Enqueue a sync every poll interval until stop is set"""
        stop = stop or asyncio.Event()
        while not stop.is_set():
            self.enqueue()
            logger.debug(f"Sleeping for {self.poll_interval}s")
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
