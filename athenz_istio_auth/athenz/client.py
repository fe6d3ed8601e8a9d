"""Athenz domain lookups backed by AthenzDomain custom resources."""

from typing import Optional

from kubernetes import client
from kubernetes.client.rest import ApiException

from athenz_istio_auth.athenz.models import Domain
from athenz_istio_auth.core.config import Settings, get_settings
from athenz_istio_auth.core.logging import get_logger
from athenz_istio_auth.core.metrics import authority_errors
from athenz_istio_auth.exceptions import AuthorityError

logger = get_logger(__name__)


class AthenzDomainClient:
    """Fetches a fresh snapshot of a domain on every call"""

    def __init__(
        self,
        api: Optional[client.CustomObjectsApi] = None,
        settings: Optional[Settings] = None,
    ):
        self.api = api or client.CustomObjectsApi()
        self.settings = settings or get_settings()

    def get_domain(self, name: str) -> Domain:
        """Return the named domain or raise AuthorityError"""
        try:
            obj = self.api.get_cluster_custom_object(
                group=self.settings.athenz_domain_group,
                version=self.settings.athenz_domain_version,
                plural=self.settings.athenz_domain_plural,
                name=name,
            )
        except ApiException as e:
            authority_errors.inc()
            if e.status == 404:
                raise AuthorityError(f"Athenz domain {name} not found") from e
            raise AuthorityError(
                f"Failed to fetch Athenz domain {name}: {e.status} {e.reason}"
            ) from e

        spec = (obj or {}).get("spec") or {}
        try:
            domain = Domain.from_signed_domain(spec.get("signedDomain") or spec)
        except AuthorityError:
            authority_errors.inc()
            raise

        if domain.name != name:
            authority_errors.inc()
            raise AuthorityError(
                f"Athenz domain object {name} carries data for {domain.name}"
            )

        logger.debug(
            f"Fetched domain {name} with {len(domain.roles)} roles and "
            f"{len(domain.policies)} policies"
        )
        return domain
