"""Cluster API gateway: the only place the operator talks to the API server."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

from . import metrics
from .constants import (
    API_GROUP,
    API_VERSION,
    FIELD_MANAGER,
    KIND_DEPLOYMENT,
    LABEL_FUNCTION,
    PLURAL_FUNCTION,
)
from .utils.cache import get_cached_object, invalidate_cache, make_cache_key, set_cached_object
from .utils.errors import is_not_found
from .utils.rate_limit import rate_limit_k8s

logger = logging.getLogger(__name__)


def load_kube_config(context: str | None = None, config_file: str | None = None) -> None:
    """Load in-cluster config, falling back to a kubeconfig file."""
    if context is None and config_file is None:
        try:
            config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes config")
            return
        except config.ConfigException:
            pass
    config.load_kube_config(config_file=config_file, context=context)
    logger.info("Loaded local Kubernetes config")


class ClusterGateway:
    """Get/list/create/update/delete for Functions and their children.

    Objects go in and come out as plain camelCase dicts. Lookups of absent
    objects return None; every other API failure propagates as ApiException.
    """

    def __init__(self, api_client: client.ApiClient | None = None, request_timeout: float = 30.0):
        self.api_client = api_client or client.ApiClient()
        self.apps = client.AppsV1Api(self.api_client)
        self.core = client.CoreV1Api(self.api_client)
        self.custom = client.CustomObjectsApi(self.api_client)
        self.request_timeout = request_timeout

    def _call(self, operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        start_time = time.time()
        try:
            result = rate_limit_k8s(func)(*args, _request_timeout=self.request_timeout, **kwargs)
            metrics.api_call_total.labels(operation=operation, result="success").inc()
            return result
        except ApiException as e:
            result_label = "not_found" if e.status == 404 else "error"
            metrics.api_call_total.labels(operation=operation, result=result_label).inc()
            raise
        except Exception:
            metrics.api_call_total.labels(operation=operation, result="error").inc()
            raise
        finally:
            duration = time.time() - start_time
            metrics.api_call_duration_seconds.labels(operation=operation).observe(duration)

    def _to_dict(self, obj: Any) -> dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        return self.api_client.sanitize_for_serialization(obj)

    def _get_or_none(self, operation: str, func: Callable[..., Any], *args: Any) -> dict[str, Any] | None:
        try:
            return self._to_dict(self._call(operation, func, *args))
        except ApiException as e:
            if is_not_found(e):
                return None
            raise

    def _delete(self, operation: str, func: Callable[..., Any], name: str, namespace: str) -> bool:
        try:
            self._call(
                operation,
                func,
                name,
                namespace,
                body=client.V1DeleteOptions(propagation_policy="Background"),
            )
            return True
        except ApiException as e:
            if is_not_found(e):
                return False
            raise

    # Functions

    def get_function(self, namespace: str, name: str) -> dict[str, Any] | None:
        return self._get_or_none(
            "get_function",
            self.custom.get_namespaced_custom_object,
            API_GROUP,
            API_VERSION,
            namespace,
            PLURAL_FUNCTION,
            name,
        )

    def list_functions(self, namespace: str | None = None) -> list[dict[str, Any]]:
        if namespace is None:
            result = self._call(
                "list_functions",
                self.custom.list_cluster_custom_object,
                API_GROUP,
                API_VERSION,
                PLURAL_FUNCTION,
            )
        else:
            result = self._call(
                "list_functions",
                self.custom.list_namespaced_custom_object,
                API_GROUP,
                API_VERSION,
                namespace,
                PLURAL_FUNCTION,
            )
        return list(result.get("items", []))

    def replace_function(self, function: dict[str, Any]) -> dict[str, Any]:
        """Write back a Function read earlier; conflicts raise 409."""
        meta = function["metadata"]
        return self._call(
            "replace_function",
            self.custom.replace_namespaced_custom_object,
            API_GROUP,
            API_VERSION,
            meta["namespace"],
            PLURAL_FUNCTION,
            meta["name"],
            function,
        )

    def patch_function_status(self, namespace: str, name: str, status: dict[str, Any]) -> dict[str, Any]:
        # JSON patch: a list body is sent as application/json-patch+json
        body = [{"op": "add", "path": "/status", "value": status}]
        return self._call(
            "patch_function_status",
            self.custom.patch_namespaced_custom_object_status,
            API_GROUP,
            API_VERSION,
            namespace,
            PLURAL_FUNCTION,
            name,
            body,
        )

    # Deployments

    def get_deployment(self, namespace: str, name: str) -> dict[str, Any] | None:
        return self._get_or_none("get_deployment", self.apps.read_namespaced_deployment, name, namespace)

    def list_deployments(self, namespace: str) -> list[dict[str, Any]]:
        result = self._call(
            "list_deployments",
            self.apps.list_namespaced_deployment,
            namespace,
            label_selector=LABEL_FUNCTION,
        )
        return self._to_dict(result).get("items", [])

    def create_deployment(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        return self._to_dict(self._call(
            "create_deployment",
            self.apps.create_namespaced_deployment,
            namespace,
            body,
            field_manager=FIELD_MANAGER,
        ))

    def replace_deployment(self, namespace: str, name: str, body: dict[str, Any]) -> dict[str, Any]:
        return self._to_dict(self._call(
            "replace_deployment",
            self.apps.replace_namespaced_deployment,
            name,
            namespace,
            body,
            field_manager=FIELD_MANAGER,
        ))

    def patch_deployment(self, namespace: str, name: str, body: dict[str, Any]) -> dict[str, Any]:
        # A dict body is sent as a strategic merge patch
        return self._to_dict(self._call(
            "patch_deployment",
            self.apps.patch_namespaced_deployment,
            name,
            namespace,
            body,
            field_manager=FIELD_MANAGER,
        ))

    def delete_deployment(self, namespace: str, name: str) -> bool:
        """Delete a Deployment; returns False if it was already gone."""
        return self._delete("delete_deployment", self.apps.delete_namespaced_deployment, name, namespace)

    # Services

    def get_service(self, namespace: str, name: str) -> dict[str, Any] | None:
        return self._get_or_none("get_service", self.core.read_namespaced_service, name, namespace)

    def list_services(self, namespace: str) -> list[dict[str, Any]]:
        result = self._call(
            "list_services",
            self.core.list_namespaced_service,
            namespace,
            label_selector=LABEL_FUNCTION,
        )
        return self._to_dict(result).get("items", [])

    def create_service(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        return self._to_dict(self._call(
            "create_service",
            self.core.create_namespaced_service,
            namespace,
            body,
            field_manager=FIELD_MANAGER,
        ))

    def replace_service(self, namespace: str, name: str, body: dict[str, Any]) -> dict[str, Any]:
        return self._to_dict(self._call(
            "replace_service",
            self.core.replace_namespaced_service,
            name,
            namespace,
            body,
            field_manager=FIELD_MANAGER,
        ))

    def patch_service(self, namespace: str, name: str, body: dict[str, Any]) -> dict[str, Any]:
        return self._to_dict(self._call(
            "patch_service",
            self.core.patch_namespaced_service,
            name,
            namespace,
            body,
            field_manager=FIELD_MANAGER,
        ))

    def delete_service(self, namespace: str, name: str) -> bool:
        """Delete a Service; returns False if it was already gone."""
        return self._delete("delete_service", self.core.delete_namespaced_service, name, namespace)

    # Generic child access, keyed by kind

    def list_children(self, kind: str, namespace: str) -> list[dict[str, Any]]:
        if kind == KIND_DEPLOYMENT:
            return self.list_deployments(namespace)
        return self.list_services(namespace)

    def create_child(self, kind: str, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        if kind == KIND_DEPLOYMENT:
            return self.create_deployment(namespace, body)
        return self.create_service(namespace, body)

    def replace_child(self, kind: str, namespace: str, name: str, body: dict[str, Any]) -> dict[str, Any]:
        if kind == KIND_DEPLOYMENT:
            return self.replace_deployment(namespace, name, body)
        return self.replace_service(namespace, name, body)

    def patch_child(self, kind: str, namespace: str, name: str, body: dict[str, Any]) -> dict[str, Any]:
        if kind == KIND_DEPLOYMENT:
            return self.patch_deployment(namespace, name, body)
        return self.patch_service(namespace, name, body)

    def delete_child(self, kind: str, namespace: str, name: str) -> bool:
        if kind == KIND_DEPLOYMENT:
            return self.delete_deployment(namespace, name)
        return self.delete_service(namespace, name)

    # Namespaces and secrets

    def namespace_exists(self, name: str) -> bool:
        cache_key = make_cache_key("Namespace", "", name)
        if get_cached_object(cache_key):
            metrics.api_call_total.labels(operation="get_namespace", result="cache_hit").inc()
            return True
        exists = self._get_or_none("get_namespace", self.core.read_namespace, name) is not None
        # only positive answers are cached, so a newly created namespace is seen at once
        if exists:
            set_cached_object(cache_key, True)
        return exists

    def forget_namespace(self, name: str) -> None:
        """Drop a cached namespace lookup once the namespace is deleted."""
        invalidate_cache(make_cache_key("Namespace", "", name))

    def list_secret_names(self, namespace: str) -> set[str]:
        result = self._call("list_secrets", self.core.list_namespaced_secret, namespace)
        return {item.metadata.name for item in result.items}
