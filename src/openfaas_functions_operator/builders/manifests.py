"""CRD and operator installation manifests."""

from __future__ import annotations

from typing import Any

import yaml

from ..constants import (
    API_GROUP,
    API_VERSION,
    CONTROLLER_NAME,
    CRD_NAME,
    DEFAULT_IMAGE,
    DEFAULT_IMAGE_TAG,
    KIND_FUNCTION,
    PLURAL_FUNCTION,
    SINGULAR_FUNCTION,
)
from ..utils.conditions import REASON_STATUS

_STRING_MAP = {"type": "object", "nullable": True, "additionalProperties": {"type": "string"}}


def _resources_schema(description: str) -> dict[str, Any]:
    return {
        "type": "object",
        "nullable": True,
        "description": description,
        "properties": {
            "cpu": {"type": "string", "nullable": True, "description": "cpu quantity, e.g. 100m"},
            "memory": {"type": "string", "nullable": True, "description": "memory quantity, e.g. 64Mi"},
        },
    }


def _spec_schema() -> dict[str, Any]:
    return {
        "type": "object",
        "required": ["service", "image"],
        "properties": {
            "service": {"type": "string", "description": "service is the name of the function deployment"},
            "image": {"type": "string", "description": "image is a fully-qualified container image"},
            "namespace": {"type": "string", "nullable": True, "description": "namespace for the function"},
            "envProcess": {
                "type": "string",
                "nullable": True,
                "description": "envProcess overrides the fprocess environment variable",
            },
            "envVars": {**_STRING_MAP, "description": "environment variables for the function runtime"},
            "labels": {**_STRING_MAP, "description": "labels attached to the function's resources"},
            "annotations": {**_STRING_MAP, "description": "annotations attached to the function's resources"},
            "constraints": {
                "type": "array",
                "nullable": True,
                "items": {"type": "string"},
                "description": "scheduling constraints of the form 'key == value'",
            },
            "secrets": {
                "type": "array",
                "nullable": True,
                "items": {"type": "string"},
                "description": "names of secrets in the target namespace to mount at secretsMountPath",
            },
            "secretsMountPath": {
                "type": "string",
                "nullable": True,
                "description": "path where secrets are mounted, defaults to /var/openfaas/secrets",
            },
            "limits": _resources_schema("limits for the function"),
            "requests": _resources_schema("resources requested by the function"),
            "readOnlyRootFilesystem": {
                "type": "boolean",
                "nullable": True,
                "description": "removes write-access from the root filesystem mount-point",
            },
        },
    }


def _status_schema() -> dict[str, Any]:
    return {
        "type": "object",
        "nullable": True,
        "properties": {
            "observedGeneration": {"type": "integer"},
            "conditions": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["type", "status", "reason"],
                    "properties": {
                        "type": {"type": "string", "enum": ["Ready"]},
                        "status": {"type": "string", "enum": ["True", "False", "Unknown"]},
                        "reason": {"type": "string", "enum": list(REASON_STATUS)},
                        "message": {"type": "string", "nullable": True},
                        "lastUpdateTime": {"type": "string", "format": "date-time", "nullable": True},
                    },
                },
            },
        },
    }


def build_crd() -> dict[str, Any]:
    """The OpenFaaSFunction CustomResourceDefinition."""
    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {"name": CRD_NAME},
        "spec": {
            "group": API_GROUP,
            "names": {
                "kind": KIND_FUNCTION,
                "plural": PLURAL_FUNCTION,
                "singular": SINGULAR_FUNCTION,
                "shortNames": ["opfn"],
            },
            "scope": "Namespaced",
            "versions": [
                {
                    "name": API_VERSION,
                    "served": True,
                    "storage": True,
                    "subresources": {"status": {}},
                    "additionalPrinterColumns": [
                        {"name": "Service", "type": "string", "jsonPath": ".spec.service"},
                        {"name": "Image", "type": "string", "jsonPath": ".spec.image"},
                        {
                            "name": "Ready",
                            "type": "string",
                            "jsonPath": ".status.conditions[?(@.type=='Ready')].status",
                        },
                        {
                            "name": "Reason",
                            "type": "string",
                            "jsonPath": ".status.conditions[?(@.type=='Ready')].reason",
                        },
                    ],
                    "schema": {
                        "openAPIV3Schema": {
                            "type": "object",
                            "required": ["spec"],
                            "properties": {
                                "spec": _spec_schema(),
                                "status": _status_schema(),
                            },
                        },
                    },
                },
            ],
        },
    }


def build_operator_manifests(
    namespace: str,
    app_name: str = CONTROLLER_NAME,
    image: str = f"{DEFAULT_IMAGE}:{DEFAULT_IMAGE_TAG}",
    update_strategy: str = "one-way",
) -> list[dict[str, Any]]:
    """ServiceAccount, RBAC and Deployment that run the controller.

    Args:
        namespace: Functions namespace the controller runs in and manages
        app_name: Name used for all generated objects
        image: Controller container image
        update_strategy: Value passed to ``controller --update-strategy``

    Returns:
        List of manifests in apply order
    """
    role_name = f"{app_name}-role"
    labels = {"app": app_name}
    rules = [
        {
            "apiGroups": [API_GROUP],
            "resources": [PLURAL_FUNCTION, f"{PLURAL_FUNCTION}/status", f"{PLURAL_FUNCTION}/finalizers"],
            "verbs": ["*"],
        },
        {"apiGroups": [""], "resources": ["secrets"], "verbs": ["get", "list", "watch"]},
        {"apiGroups": ["apps"], "resources": ["deployments"], "verbs": ["*"]},
        {"apiGroups": [""], "resources": ["services"], "verbs": ["*"]},
        {"apiGroups": [""], "resources": ["events"], "verbs": ["create", "patch"]},
    ]
    subject = {"kind": "ServiceAccount", "name": app_name, "namespace": namespace}

    return [
        {
            "apiVersion": "v1",
            "kind": "ServiceAccount",
            "metadata": {"name": app_name, "namespace": namespace},
        },
        {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "Role",
            "metadata": {"name": role_name, "namespace": namespace},
            "rules": rules,
        },
        {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "RoleBinding",
            "metadata": {"name": f"{app_name}-rolebinding", "namespace": namespace},
            "roleRef": {"apiGroup": "rbac.authorization.k8s.io", "kind": "Role", "name": role_name},
            "subjects": [subject],
        },
        # namespaces are cluster scoped; kopf also needs to list CRDs and namespaces
        {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "ClusterRole",
            "metadata": {"name": f"{app_name}-{namespace}-clusterrole"},
            "rules": [
                {"apiGroups": [""], "resources": ["namespaces"], "verbs": ["get", "list", "watch"]},
                {
                    "apiGroups": ["apiextensions.k8s.io"],
                    "resources": ["customresourcedefinitions"],
                    "verbs": ["get", "list", "watch"],
                },
            ],
        },
        {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "ClusterRoleBinding",
            "metadata": {"name": f"{app_name}-{namespace}-clusterrolebinding"},
            "roleRef": {
                "apiGroup": "rbac.authorization.k8s.io",
                "kind": "ClusterRole",
                "name": f"{app_name}-{namespace}-clusterrole",
            },
            "subjects": [subject],
        },
        {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {"name": app_name, "namespace": namespace, "labels": labels},
            "spec": {
                "replicas": 1,
                "selector": {"matchLabels": labels},
                "template": {
                    "metadata": {"labels": labels},
                    "spec": {
                        "serviceAccountName": app_name,
                        "containers": [
                            {
                                "name": app_name,
                                "image": image,
                                "args": [
                                    "controller",
                                    "--functions-namespace",
                                    namespace,
                                    "--update-strategy",
                                    update_strategy,
                                    "run",
                                ],
                                "ports": [{"name": "metrics", "containerPort": 8080}],
                                "livenessProbe": {"httpGet": {"path": "/healthz", "port": 8080}},
                                "readinessProbe": {"httpGet": {"path": "/readyz", "port": 8080}},
                            },
                        ],
                    },
                },
            },
        },
    ]


def to_yaml(manifests: dict[str, Any] | list[dict[str, Any]]) -> str:
    """Render one or more manifests as a YAML document stream."""
    if isinstance(manifests, dict):
        manifests = [manifests]
    return yaml.safe_dump_all(manifests, sort_keys=False, default_flow_style=False)
