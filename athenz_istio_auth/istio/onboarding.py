"""
Onboarding reconciler for the ClusterRbacConfig inclusion list.

Services annotated with ``authz.istio.io/enabled: "true"`` are listed in
the singleton ClusterRbacConfig ``default`` (mode ON_WITH_INCLUSION).
The object only exists while at least one service is onboarded.
"""

from dataclasses import replace
from typing import List

from athenz_istio_auth.controller.cache import ObjectCache
from athenz_istio_auth.controller.worker import QueueWorker
from athenz_istio_auth.controller.workqueue import RateLimitingQueue
from athenz_istio_auth.core.logging import get_logger, log_event
from athenz_istio_auth.core.metrics import onboarded_services
from athenz_istio_auth.istio.models import (CLUSTER_RBAC_CONFIG,
                                            DEFAULT_RBAC_CONFIG_NAME, Config,
                                            ConfigMeta, RbacConfigSpec,
                                            RbacMode)

logger = get_logger(__name__)

AUTHZ_ENABLED = "true"
AUTHZ_ENABLED_ANNOTATION = "authz.istio.io/enabled"


def compare_service_lists(
    service_list_a: List[str], service_list_b: List[str]
) -> List[str]:
    """Items of list A that are not in list B, in A's order"""
    service_set_b = set(service_list_b)
    return [item for item in service_list_a if item not in service_set_b]


def create_cluster_rbac_config(services: List[str]) -> Config:
    return Config(
        meta=ConfigMeta(schema=CLUSTER_RBAC_CONFIG, name=DEFAULT_RBAC_CONFIG_NAME),
        spec=RbacConfigSpec.with_inclusion(services),
    )


class OnboardingController(QueueWorker):
    """Keeps the ClusterRbacConfig inclusion list equal to the onboarded services"""

    loop_name = "onboarding"
    queue_key = f"{DEFAULT_RBAC_CONFIG_NAME}/default"

    def __init__(
        self,
        store,
        service_cache: ObjectCache,
        queue: RateLimitingQueue,
        dns_suffix: str,
        annotation: str = AUTHZ_ENABLED_ANNOTATION,
        num_retries: int = 3,
    ):
        super().__init__(queue, num_retries=num_retries)
        self.store = store
        self.service_cache = service_cache
        self.dns_suffix = dns_suffix
        self.annotation = annotation

    def get_onboarded_service_list(self) -> List[str]:
        """Services with the authz annotation set to true, as <svc>.<ns>.<suffix>"""
        service_list = []
        for service in self.service_cache.list():
            metadata = service.get("metadata")
            if not isinstance(metadata, dict) or not metadata.get("name"):
                logger.warning("Could not read service metadata, skipping...")
                continue

            annotations = metadata.get("annotations") or {}
            value = str(annotations.get(self.annotation, "")).strip().lower()
            if value == AUTHZ_ENABLED:
                service_list.append(
                    f"{metadata['name']}.{metadata.get('namespace', '')}."
                    f"{self.dns_suffix}"
                )

        return sorted(service_list)

    def sync(self) -> None:
        """Create, update or delete the ClusterRbacConfig for the onboarded services"""
        service_list = self.get_onboarded_service_list()
        onboarded_services.set(len(service_list))

        config = self.store.get(CLUSTER_RBAC_CONFIG, DEFAULT_RBAC_CONFIG_NAME)
        if config is None and not service_list:
            logger.debug(
                "Service list is empty and cluster rbac config does not exist, "
                "skipping sync..."
            )
            return

        if config is None:
            logger.info(
                f"Creating cluster rbac config with {len(service_list)} services"
            )
            self.store.create(create_cluster_rbac_config(service_list))
            return

        spec: RbacConfigSpec = config.spec
        needs_update = False
        if spec.inclusion is None or spec.mode != RbacMode.ON_WITH_INCLUSION:
            logger.info(
                "Cluster rbac config inclusion field is nil or ON_WITH_INCLUSION "
                "mode is not set, syncing..."
            )
            spec = RbacConfigSpec.with_inclusion(service_list)
            needs_update = True

        services = list(spec.inclusion.services)

        unique_services = list(dict.fromkeys(services))
        if len(unique_services) != len(services):
            logger.info("Removing duplicate services from cluster rbac config")
            services = unique_services
            needs_update = True

        new_services = compare_service_lists(service_list, services)
        if new_services:
            logger.info(f"Adding services to cluster rbac config: {new_services}")
            services.extend(new_services)
            needs_update = True

        old_services = compare_service_lists(services, service_list)
        if old_services:
            logger.info(f"Removing services from cluster rbac config: {old_services}")
            stale = set(old_services)
            services = [service for service in services if service not in stale]
            needs_update = True

        if not services:
            logger.info("Deleting cluster rbac config...")
            self.store.delete(CLUSTER_RBAC_CONFIG, DEFAULT_RBAC_CONFIG_NAME)
            return

        if not needs_update:
            logger.debug("Sync state is current, no changes needed...")
            return

        logger.info("Updating cluster rbac config...")
        spec = replace(spec, inclusion=replace(spec.inclusion, services=services))
        self.store.update(Config(meta=config.meta, spec=spec))
        log_event(logger, "info", "cluster_rbac_config_updated", services=len(services))
