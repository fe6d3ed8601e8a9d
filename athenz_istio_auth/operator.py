"""
Kopf operator wiring for the Athenz to Istio authorization controller.

Two independent loops run inside the operator:

- the main reconciler, triggered every poll interval and by AthenzDomain
  events, which maintains ServiceRoles and ServiceRoleBindings;
- the onboarding reconciler, triggered by Service and ClusterRbacConfig
  events, which maintains the ClusterRbacConfig inclusion list.

Each loop has its own queue and a single worker.
"""

import asyncio
import sys
from typing import Any, Dict

import kopf
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from prometheus_client import start_http_server

from athenz_istio_auth.athenz.client import AthenzDomainClient
from athenz_istio_auth.controller.cache import ObjectCache
from athenz_istio_auth.controller.controller import Controller
from athenz_istio_auth.controller.workqueue import RateLimitingQueue
from athenz_istio_auth.core.config import Settings, get_settings
from athenz_istio_auth.core.logging import get_logger, setup_logging
from athenz_istio_auth.exceptions import CacheSyncError
from athenz_istio_auth.istio.onboarding import OnboardingController
from athenz_istio_auth.istio.servicerole import ServiceRoleManager
from athenz_istio_auth.istio.servicerolebinding import \
    ServiceRoleBindingManager
from athenz_istio_auth.istio.store import IstioConfigStore

logger = get_logger("athenz-istio-auth")

app_settings = get_settings()

SHUTDOWN_TIMEOUT = 30

# ============================================================================
# KUBERNETES CLIENT
# ============================================================================


def load_kube_config(settings: Settings) -> None:
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except config.ConfigException:
        config.load_kube_config(config_file=settings.kubeconfig)
        logger.info("Loaded local Kubernetes config")


def prime_caches(
    core: client.CoreV1Api, namespace_cache: ObjectCache, service_cache: ObjectCache
) -> None:
    """Fill the caches with a full listing before any worker starts"""
    serializer = client.ApiClient()
    try:
        namespaces = core.list_namespace()
        services = core.list_service_for_all_namespaces()
    except ApiException as e:
        raise CacheSyncError(f"Failed to list namespaces and services: {e}") from e

    namespace_cache.replace(
        serializer.sanitize_for_serialization(item) for item in namespaces.items
    )
    service_cache.replace(
        serializer.sanitize_for_serialization(item) for item in services.items
    )
    logger.info(
        f"Caches synced with {len(namespace_cache)} namespaces and "
        f"{len(service_cache)} services"
    )


def build_controllers(
    settings: Settings,
    store: IstioConfigStore,
    authority: AthenzDomainClient,
    namespace_cache: ObjectCache,
    service_cache: ObjectCache,
):
    """Create the main and onboarding reconcilers with their own queues"""
    controller = Controller(
        authority=authority,
        sr_mgr=ServiceRoleManager(store),
        srb_mgr=ServiceRoleBindingManager(store),
        namespace_cache=namespace_cache,
        queue=RateLimitingQueue(
            "athenz", settings.queue_base_delay, settings.queue_max_delay
        ),
        dns_suffix=settings.dns_suffix,
        poll_interval=settings.poll_interval,
        num_retries=settings.queue_num_retries,
    )
    onboarding = OnboardingController(
        store=store,
        service_cache=service_cache,
        queue=RateLimitingQueue(
            "onboarding", settings.queue_base_delay, settings.queue_max_delay
        ),
        dns_suffix=settings.dns_suffix,
        annotation=settings.authz_enabled_annotation,
        num_retries=settings.queue_num_retries,
    )
    return controller, onboarding


# ============================================================================
# STARTUP AND SHUTDOWN
# ============================================================================


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **_):
    """Configure kopf settings"""
    settings.posting.enabled = False
    settings.watching.server_timeout = 300
    settings.watching.client_timeout = 310
    settings.watching.connect_timeout = 10
    settings.batching.idle_timeout = 1.0
    settings.batching.batch_window = 0.5

    logger.info("Kopf configured")


@kopf.on.startup()
async def startup_handler(memo: kopf.Memo, **kwargs):
    """Build clients, sync caches and start both reconciliation loops"""
    setup_logging(app_settings)
    logger.info("Authorization controller starting up")

    load_kube_config(app_settings)

    memo.namespace_cache = ObjectCache("Namespace")
    memo.service_cache = ObjectCache("Service")

    try:
        prime_caches(client.CoreV1Api(), memo.namespace_cache, memo.service_cache)
    except CacheSyncError as e:
        logger.error(f"Timed out waiting for caches to sync: {e}")
        sys.exit(1)

    if app_settings.metrics_enabled:
        start_http_server(app_settings.metrics_port)
        logger.info(f"Serving metrics on port {app_settings.metrics_port}")

    memo.controller, memo.onboarding = build_controllers(
        app_settings,
        IstioConfigStore(settings=app_settings),
        AthenzDomainClient(settings=app_settings),
        memo.namespace_cache,
        memo.service_cache,
    )

    memo.stop = asyncio.Event()
    memo.tasks = [
        asyncio.create_task(memo.controller.run_worker()),
        asyncio.create_task(memo.controller.poll(memo.stop)),
        asyncio.create_task(memo.onboarding.run_worker()),
    ]
    memo.onboarding.enqueue()

    logger.info("Authorization controller ready")


@kopf.on.cleanup()
async def cleanup_handler(memo: kopf.Memo, **kwargs):
    """Stop both loops once their current item completes"""
    logger.info("Authorization controller shutting down")

    memo.stop.set()
    memo.controller.queue.shut_down()
    memo.onboarding.queue.shut_down()

    _, pending = await asyncio.wait(memo.tasks, timeout=SHUTDOWN_TIMEOUT)
    for task in pending:
        logger.warning("Worker did not stop in time, cancelling")
        task.cancel()


@kopf.on.probe(id="health")
async def health_probe(memo: kopf.Memo, **kwargs) -> Dict[str, Any]:
    """Health check probe"""
    return {
        "status": "healthy",
        "namespaces": len(memo.namespace_cache),
        "services": len(memo.service_cache),
        "athenz_queue": len(memo.controller.queue),
        "onboarding_queue": len(memo.onboarding.queue),
    }


# ============================================================================
# WATCH HANDLERS
# ============================================================================

# Coroutines, so they run on the event loop that owns the work queues.


@kopf.on.event("v1", "namespaces")
async def namespace_event(event, memo: kopf.Memo, **kwargs):
    memo.namespace_cache.apply_event(event.get("type"), event["object"])


@kopf.on.event("v1", "services")
async def service_event(event, memo: kopf.Memo, **kwargs):
    """Any service change may alter the onboarded list"""
    memo.service_cache.apply_event(event.get("type"), event["object"])
    memo.onboarding.enqueue()


@kopf.on.event(
    app_settings.istio_rbac_group,
    app_settings.istio_rbac_version,
    "clusterrbacconfigs",
)
async def cluster_rbac_config_event(event, memo: kopf.Memo, **kwargs):
    """Re-assert the inclusion list if the object is edited or removed"""
    logger.debug(f"Received {event.get('type')} event for cluster rbac config")
    memo.onboarding.enqueue()


@kopf.on.event(
    app_settings.athenz_domain_group,
    app_settings.athenz_domain_version,
    app_settings.athenz_domain_plural,
)
async def athenz_domain_event(event, memo: kopf.Memo, **kwargs):
    """Domain changes trigger a pass without waiting for the next poll"""
    memo.controller.enqueue()


# ============================================================================
# MAIN
# ============================================================================


def main():
    kopf.run(
        clusterwide=True,
        standalone=True,
        liveness_endpoint=app_settings.liveness_endpoint,
    )


if __name__ == "__main__":
    main()
