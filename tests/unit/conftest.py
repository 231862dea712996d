"""Shared fixtures: an in-memory cluster standing in for ClusterGateway."""

from __future__ import annotations

import copy
from typing import Any
from unittest.mock import patch

import pytest
from kubernetes.client.exceptions import ApiException

from openfaas_functions_operator.config import OperatorConfig
from openfaas_functions_operator.constants import (
    API_GROUP_VERSION,
    KIND_DEPLOYMENT,
    KIND_FUNCTION,
    KIND_SERVICE,
    LABEL_FUNCTION,
)

NAMESPACE = "openfaas-fn"


def _merge_key(items: list[Any]) -> str | None:
    if not items or not all(isinstance(i, dict) for i in items):
        return None
    for key in ("name", "mountPath"):
        if all(key in i for i in items):
            return key
    return None


def strategic_merge(target: Any, patch_body: Any) -> Any:
    """Small strategic merge: null deletes a key, named lists merge by key."""
    if isinstance(patch_body, dict) and isinstance(target, dict):
        result = copy.deepcopy(target)
        for key, value in patch_body.items():
            if value is None:
                result.pop(key, None)
            elif key in result:
                result[key] = strategic_merge(result[key], value)
            else:
                result[key] = strategic_merge({}, value) if isinstance(value, dict) else copy.deepcopy(value)
        return result
    if isinstance(patch_body, list) and isinstance(target, list):
        key = _merge_key(target + [p for p in patch_body if isinstance(p, dict)])
        if key is None:
            return copy.deepcopy(patch_body)
        result = copy.deepcopy(target)
        for item in patch_body:
            index = next((n for n, t in enumerate(result) if t.get(key) == item.get(key)), None)
            if item.get("$patch") == "delete":
                if index is not None:
                    result.pop(index)
            elif index is None:
                result.append(copy.deepcopy(item))
            else:
                result[index] = strategic_merge(result[index], item)
        return result
    if isinstance(patch_body, dict):
        return {k: copy.deepcopy(v) for k, v in patch_body.items() if v is not None}
    return copy.deepcopy(patch_body)


class FakeGateway:
    """In-memory cluster with the same public surface as ClusterGateway."""

    def __init__(self, namespaces: tuple[str, ...] = (NAMESPACE,), secrets: tuple[tuple[str, str], ...] = ()):
        self.namespaces = set(namespaces)
        self.secrets = set(secrets)
        self.functions: dict[tuple[str, str], dict[str, Any]] = {}
        self.children: dict[str, dict[tuple[str, str], dict[str, Any]]] = {KIND_DEPLOYMENT: {}, KIND_SERVICE: {}}
        self.writes: list[tuple[str, str, str]] = []
        self._version = 0
        self._uid = 0

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def _next_uid(self) -> str:
        self._uid += 1
        return f"uid-{self._uid}"

    # seeding helpers

    def add_function(self, spec: dict[str, Any], name: str = "nodeinfo", namespace: str = NAMESPACE) -> dict[str, Any]:
        function = {
            "apiVersion": API_GROUP_VERSION,
            "kind": KIND_FUNCTION,
            "metadata": {
                "name": name,
                "namespace": namespace,
                "uid": f"fn-{name}",
                "generation": 1,
                "resourceVersion": self._next_version(),
            },
            "spec": copy.deepcopy(spec),
        }
        self.functions[(namespace, name)] = function
        return copy.deepcopy(function)

    def update_function_spec(self, spec: dict[str, Any], name: str = "nodeinfo", namespace: str = NAMESPACE) -> None:
        function = self.functions[(namespace, name)]
        function["spec"] = copy.deepcopy(spec)
        function["metadata"]["generation"] += 1
        function["metadata"]["resourceVersion"] = self._next_version()

    def mark_deleted(self, name: str = "nodeinfo", namespace: str = NAMESPACE) -> None:
        self.functions[(namespace, name)]["metadata"]["deletionTimestamp"] = "2026-01-01T00:00:00Z"

    def set_ready(self, name: str = "nodeinfo", namespace: str = NAMESPACE, ready: int = 1) -> None:
        deployment = self.children[KIND_DEPLOYMENT][(namespace, name)]
        deployment["status"] = {
            "readyReplicas": ready,
            "observedGeneration": deployment["metadata"]["generation"],
        }

    def add_foreign(self, kind: str, name: str, namespace: str = NAMESPACE) -> None:
        self.children[kind][(namespace, name)] = {
            "metadata": {"name": name, "namespace": namespace, "uid": self._next_uid(), "generation": 1},
            "spec": {},
        }

    def function(self, name: str = "nodeinfo", namespace: str = NAMESPACE) -> dict[str, Any] | None:
        return self.functions.get((namespace, name))

    def child(self, kind: str, name: str = "nodeinfo", namespace: str = NAMESPACE) -> dict[str, Any] | None:
        return self.children[kind].get((namespace, name))

    def child_writes(self) -> list[tuple[str, str, str]]:
        return [w for w in self.writes if w[1] in (KIND_DEPLOYMENT, KIND_SERVICE)]

    # Functions

    def get_function(self, namespace: str, name: str) -> dict[str, Any] | None:
        function = self.functions.get((namespace, name))
        return copy.deepcopy(function) if function else None

    def list_functions(self, namespace: str | None = None) -> list[dict[str, Any]]:
        return [
            copy.deepcopy(f) for (ns, _), f in sorted(self.functions.items())
            if namespace is None or ns == namespace
        ]

    def replace_function(self, function: dict[str, Any]) -> dict[str, Any]:
        meta = function["metadata"]
        key = (meta["namespace"], meta["name"])
        stored = self.functions.get(key)
        if stored is None:
            raise ApiException(status=404, reason="Not Found")
        if stored["metadata"]["resourceVersion"] != meta.get("resourceVersion"):
            raise ApiException(status=409, reason="Conflict")
        stored["metadata"]["finalizers"] = list(meta.get("finalizers") or [])
        stored["metadata"]["resourceVersion"] = self._next_version()
        self.writes.append(("replace", KIND_FUNCTION, meta["name"]))
        if stored["metadata"].get("deletionTimestamp") and not stored["metadata"]["finalizers"]:
            del self.functions[key]
        return copy.deepcopy(stored)

    def patch_function_status(self, namespace: str, name: str, status: dict[str, Any]) -> dict[str, Any]:
        stored = self.functions[(namespace, name)]
        stored["status"] = copy.deepcopy(status)
        stored["metadata"]["resourceVersion"] = self._next_version()
        self.writes.append(("status", KIND_FUNCTION, name))
        return copy.deepcopy(stored)

    # Children

    def get_deployment(self, namespace: str, name: str) -> dict[str, Any] | None:
        return self._read(KIND_DEPLOYMENT, namespace, name)

    def get_service(self, namespace: str, name: str) -> dict[str, Any] | None:
        return self._read(KIND_SERVICE, namespace, name)

    def _read(self, kind: str, namespace: str, name: str) -> dict[str, Any] | None:
        obj = self.children[kind].get((namespace, name))
        return copy.deepcopy(obj) if obj else None

    def list_children(self, kind: str, namespace: str) -> list[dict[str, Any]]:
        return [
            copy.deepcopy(obj) for (ns, _), obj in sorted(self.children[kind].items())
            if ns == namespace and LABEL_FUNCTION in (obj["metadata"].get("labels") or {})
        ]

    def _store(self, kind: str, namespace: str, body: dict[str, Any], previous: dict[str, Any] | None) -> dict[str, Any]:
        obj = copy.deepcopy(body)
        meta = obj["metadata"]
        meta["resourceVersion"] = self._next_version()
        meta["uid"] = previous["metadata"]["uid"] if previous else self._next_uid()
        meta["generation"] = previous["metadata"]["generation"] + 1 if previous else 1
        if previous and "status" in previous:
            obj["status"] = previous["status"]
        elif kind == KIND_DEPLOYMENT:
            obj["status"] = {}
        self.children[kind][(namespace, meta["name"])] = obj
        return copy.deepcopy(obj)

    def create_child(self, kind: str, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        name = body["metadata"]["name"]
        if (namespace, name) in self.children[kind]:
            raise ApiException(status=409, reason="AlreadyExists")
        self.writes.append(("create", kind, name))
        return self._store(kind, namespace, body, None)

    def replace_child(self, kind: str, namespace: str, name: str, body: dict[str, Any]) -> dict[str, Any]:
        previous = self.children[kind][(namespace, name)]
        if body["metadata"].get("resourceVersion") != previous["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")
        self.writes.append(("replace", kind, name))
        return self._store(kind, namespace, body, previous)

    def patch_child(self, kind: str, namespace: str, name: str, body: dict[str, Any]) -> dict[str, Any]:
        previous = self.children[kind][(namespace, name)]
        merged = strategic_merge(previous, body)
        self.writes.append(("patch", kind, name))
        return self._store(kind, namespace, merged, previous)

    def delete_child(self, kind: str, namespace: str, name: str) -> bool:
        self.writes.append(("delete", kind, name))
        return self.children[kind].pop((namespace, name), None) is not None

    # Namespaces and secrets

    def namespace_exists(self, name: str) -> bool:
        return name in self.namespaces

    def list_secret_names(self, namespace: str) -> set[str]:
        return {name for ns, name in self.secrets if ns == namespace}


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def make_gateway():
    """Factory for gateways seeded with other namespaces or secrets."""
    return FakeGateway


@pytest.fixture
def config() -> OperatorConfig:
    return OperatorConfig(functions_namespace=NAMESPACE)


@pytest.fixture
def nodeinfo_spec() -> dict[str, Any]:
    return {
        "service": "nodeinfo",
        "image": "functions/nodeinfo:latest",
        "namespace": NAMESPACE,
        "limits": {"cpu": "100m", "memory": "64Mi"},
    }


@pytest.fixture
def function_body() -> dict[str, Any]:
    return {
        "apiVersion": API_GROUP_VERSION,
        "kind": KIND_FUNCTION,
        "metadata": {"name": "nodeinfo", "namespace": NAMESPACE, "uid": "fn-nodeinfo", "generation": 1},
    }


@pytest.fixture(autouse=True)
def mock_kopf_event():
    """Events need a running kopf operator; record them instead."""
    with patch("openfaas_functions_operator.utils.events.kopf.event") as mock_event:
        yield mock_event
