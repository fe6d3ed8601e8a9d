"""Istio RBAC custom resources stored in the Kubernetes API."""

from typing import Any, Dict, List, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException

from athenz_istio_auth.core.config import Settings, get_settings
from athenz_istio_auth.core.logging import get_logger
from athenz_istio_auth.core.metrics import store_operations
from athenz_istio_auth.exceptions import (AlreadyExistsError, ConflictError,
                                          InvalidSpecError, NotFoundError,
                                          StoreError)
from athenz_istio_auth.istio.models import Config, ConfigMeta, ConfigSchema

logger = get_logger(__name__)


def _translate(e: ApiException, action: str, schema: ConfigSchema, name: str):
    """Map an API error to the store's exception hierarchy"""
    message = f"Failed to {action} {schema.kind} {name}: {e.status} {e.reason}"
    if e.status == 404:
        return NotFoundError(message)
    if e.status == 409:
        # Create reports an existing object; update reports a stale version
        if action == "create":
            return AlreadyExistsError(message)
        return ConflictError(message)
    return StoreError(message)


def _record(schema: ConfigSchema, operation: str, result: str) -> None:
    store_operations.labels(
        kind=schema.kind, operation=operation, result=result
    ).inc()


class IstioConfigStore:
    """List/get/create/update/delete of Istio RBAC objects"""

    def __init__(
        self,
        api: Optional[client.CustomObjectsApi] = None,
        settings: Optional[Settings] = None,
    ):
        self.api = api or client.CustomObjectsApi()
        self.settings = settings or get_settings()

    def _target(self, schema: ConfigSchema, namespace: str = "") -> Dict[str, str]:
        """Common keyword arguments addressing a kind (and namespace)"""
        target = {
            "group": self.settings.istio_rbac_group,
            "version": self.settings.istio_rbac_version,
            "plural": schema.plural,
        }
        if not schema.cluster_scoped:
            target["namespace"] = namespace
        return target

    def to_body(self, config: Config) -> Dict[str, Any]:
        """Render a config as a custom resource body"""
        schema = config.meta.schema
        metadata: Dict[str, Any] = {"name": config.name}
        if not schema.cluster_scoped:
            metadata["namespace"] = config.namespace
        if config.resource_version:
            metadata["resourceVersion"] = config.resource_version

        return {
            "apiVersion": (
                f"{self.settings.istio_rbac_group}/{self.settings.istio_rbac_version}"
            ),
            "kind": schema.kind,
            "metadata": metadata,
            "spec": config.spec.to_dict(),
        }

    def from_body(self, schema: ConfigSchema, body: Dict[str, Any]) -> Config:
        """Parse a custom resource body, raising InvalidSpecError"""
        if not isinstance(body, dict):
            raise InvalidSpecError(f"{schema.kind} object must be a dictionary")

        metadata = body.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise InvalidSpecError(f"{schema.kind} metadata must be a dictionary")

        spec = body.get("spec") or {}
        if not isinstance(spec, dict):
            raise InvalidSpecError(f"{schema.kind} spec must be a dictionary")

        return Config(
            meta=ConfigMeta(
                schema=schema,
                name=metadata.get("name", ""),
                namespace=metadata.get("namespace") or "",
                resource_version=metadata.get("resourceVersion"),
            ),
            spec=schema.spec_type.from_dict(spec),
        )

    def list(self, schema: ConfigSchema) -> List[Config]:
        """List all objects of a kind across namespaces, skipping unparsable ones"""
        try:
            result = self.api.list_cluster_custom_object(
                group=self.settings.istio_rbac_group,
                version=self.settings.istio_rbac_version,
                plural=schema.plural,
            )
        except ApiException as e:
            raise _translate(e, "list", schema, "*") from e

        configs = []
        for item in result.get("items", []):
            try:
                configs.append(self.from_body(schema, item))
            except (InvalidSpecError, AttributeError, TypeError, ValueError) as e:
                # One unreadable object must not hide the others
                metadata = item.get("metadata") if isinstance(item, dict) else None
                if not isinstance(metadata, dict):
                    metadata = {}
                logger.error(
                    f"Skipping {schema.kind} {metadata.get('namespace')}/"
                    f"{metadata.get('name')}: {e}"
                )

        return configs

    def get(
        self, schema: ConfigSchema, name: str, namespace: str = ""
    ) -> Optional[Config]:
        """Return the object or None if it does not exist"""
        target = self._target(schema, namespace)
        try:
            if schema.cluster_scoped:
                body = self.api.get_cluster_custom_object(name=name, **target)
            else:
                body = self.api.get_namespaced_custom_object(name=name, **target)
        except ApiException as e:
            if e.status == 404:
                return None
            raise _translate(e, "get", schema, name) from e

        return self.from_body(schema, body)

    def create(self, config: Config) -> Config:
        schema = config.meta.schema
        target = self._target(schema, config.namespace)
        body = self.to_body(config)
        body["metadata"].pop("resourceVersion", None)

        try:
            if schema.cluster_scoped:
                result = self.api.create_cluster_custom_object(body=body, **target)
            else:
                result = self.api.create_namespaced_custom_object(body=body, **target)
        except ApiException as e:
            _record(schema, "create", "error")
            raise _translate(e, "create", schema, config.name) from e

        _record(schema, "create", "success")
        return self.from_body(schema, result)

    def update(self, config: Config) -> Config:
        """Replace the object; the resource version must be the last one observed"""
        schema = config.meta.schema
        if not config.resource_version:
            raise StoreError(
                f"Update of {schema.kind} {config.name} needs a resource version"
            )

        target = self._target(schema, config.namespace)
        body = self.to_body(config)

        try:
            if schema.cluster_scoped:
                result = self.api.replace_cluster_custom_object(
                    name=config.name, body=body, **target
                )
            else:
                result = self.api.replace_namespaced_custom_object(
                    name=config.name, body=body, **target
                )
        except ApiException as e:
            _record(schema, "update", "error")
            raise _translate(e, "update", schema, config.name) from e

        _record(schema, "update", "success")
        return self.from_body(schema, result)

    def delete(self, schema: ConfigSchema, name: str, namespace: str = "") -> None:
        target = self._target(schema, namespace)
        try:
            if schema.cluster_scoped:
                self.api.delete_cluster_custom_object(name=name, **target)
            else:
                self.api.delete_namespaced_custom_object(name=name, **target)
        except ApiException as e:
            _record(schema, "delete", "error")
            raise _translate(e, "delete", schema, name) from e

        _record(schema, "delete", "success")
