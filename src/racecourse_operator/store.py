"""
Object store access for the Racecourse operator.

The reconciliation core only sees the ``Store`` protocol. ``KubernetesStore``
implements it on top of the official Kubernetes client.
"""

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from kubernetes import client

from racecourse_operator.config import OperatorConfig
from racecourse_operator.errors import translate_api_errors
from racecourse_operator.models import ObjectKey

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceKind:
    """API coordinates of a resource kind"""

    group: str
    version: str
    kind: str
    plural: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version


DEPLOYMENT = ResourceKind("apps", "v1", "Deployment", "deployments")
SERVICE = ResourceKind("", "v1", "Service", "services")
INGRESS = ResourceKind("networking.k8s.io", "v1", "Ingress", "ingresses")


def parent_kind(config: OperatorConfig) -> ResourceKind:
    return ResourceKind(config.group, config.version, config.kind, config.plural)


class Store(Protocol):
    """Versioned object store consumed by the reconciliation core.

    Objects are JSON-shaped dicts. ``update`` and ``update_status`` must reject
    a stale ``metadata.resourceVersion`` with ConflictError; ``get`` raises
    NotFoundError for missing objects.
    """

    def get(
        self, kind: ResourceKind, key: ObjectKey, *, timeout: float | None = None
    ) -> dict[str, Any]: ...

    def create(
        self, kind: ResourceKind, obj: dict[str, Any], *, timeout: float | None = None
    ) -> dict[str, Any]: ...

    def update(
        self, kind: ResourceKind, obj: dict[str, Any], *, timeout: float | None = None
    ) -> dict[str, Any]: ...

    def update_status(
        self, kind: ResourceKind, obj: dict[str, Any], *, timeout: float | None = None
    ) -> dict[str, Any]: ...


# kind -> (typed API attribute, method suffix)
_TYPED_APIS = {
    DEPLOYMENT: ("apps", "namespaced_deployment"),
    SERVICE: ("core", "namespaced_service"),
    INGRESS: ("networking", "namespaced_ingress"),
}


def _identity(obj: dict[str, Any]) -> tuple[str, str]:
    metadata = obj["metadata"]
    return metadata["namespace"], metadata["name"]


class KubernetesStore:
    """Store backed by the Kubernetes API server"""

    def __init__(
        self,
        api_client: client.ApiClient | None = None,
        *,
        apps: client.AppsV1Api | None = None,
        core: client.CoreV1Api | None = None,
        networking: client.NetworkingV1Api | None = None,
        custom: client.CustomObjectsApi | None = None,
    ) -> None:
        self.api_client = api_client or client.ApiClient()
        self.apps = apps or client.AppsV1Api(self.api_client)
        self.core = core or client.CoreV1Api(self.api_client)
        self.networking = networking or client.NetworkingV1Api(self.api_client)
        self.custom = custom or client.CustomObjectsApi(self.api_client)

    def _typed(self, kind: ResourceKind, verb: str, subresource: str = "") -> Any:
        api_name, suffix = _TYPED_APIS[kind]
        return getattr(getattr(self, api_name), f"{verb}_{suffix}{subresource}")

    def _to_dict(self, obj: Any) -> dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        return self.api_client.sanitize_for_serialization(obj)

    @translate_api_errors("read")
    def get(
        self, kind: ResourceKind, key: ObjectKey, *, timeout: float | None = None
    ) -> dict[str, Any]:
        if kind in _TYPED_APIS:
            result = self._typed(kind, "read")(
                name=key.name, namespace=key.namespace, _request_timeout=timeout
            )
        else:
            result = self.custom.get_namespaced_custom_object(
                group=kind.group,
                version=kind.version,
                namespace=key.namespace,
                plural=kind.plural,
                name=key.name,
                _request_timeout=timeout,
            )
        return self._to_dict(result)

    @translate_api_errors("create")
    def create(
        self, kind: ResourceKind, obj: dict[str, Any], *, timeout: float | None = None
    ) -> dict[str, Any]:
        namespace, _ = _identity(obj)
        if kind in _TYPED_APIS:
            result = self._typed(kind, "create")(
                namespace=namespace, body=obj, _request_timeout=timeout
            )
        else:
            result = self.custom.create_namespaced_custom_object(
                group=kind.group,
                version=kind.version,
                namespace=namespace,
                plural=kind.plural,
                body=obj,
                _request_timeout=timeout,
            )
        logger.debug("Created %s %s/%s", kind.kind, namespace, obj["metadata"]["name"])
        return self._to_dict(result)

    @translate_api_errors("update")
    def update(
        self, kind: ResourceKind, obj: dict[str, Any], *, timeout: float | None = None
    ) -> dict[str, Any]:
        namespace, name = _identity(obj)
        if kind in _TYPED_APIS:
            result = self._typed(kind, "replace")(
                name=name, namespace=namespace, body=obj, _request_timeout=timeout
            )
        else:
            result = self.custom.replace_namespaced_custom_object(
                group=kind.group,
                version=kind.version,
                namespace=namespace,
                plural=kind.plural,
                name=name,
                body=obj,
                _request_timeout=timeout,
            )
        return self._to_dict(result)

    @translate_api_errors("update status of")
    def update_status(
        self, kind: ResourceKind, obj: dict[str, Any], *, timeout: float | None = None
    ) -> dict[str, Any]:
        namespace, name = _identity(obj)
        if kind in _TYPED_APIS:
            result = self._typed(kind, "replace", "_status")(
                name=name, namespace=namespace, body=obj, _request_timeout=timeout
            )
        else:
            result = self.custom.replace_namespaced_custom_object_status(
                group=kind.group,
                version=kind.version,
                namespace=namespace,
                plural=kind.plural,
                name=name,
                body=obj,
                _request_timeout=timeout,
            )
        return self._to_dict(result)
