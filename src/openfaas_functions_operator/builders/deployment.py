"""Builder for the child Deployment of a Function."""

from __future__ import annotations

from typing import Any

from ..constants import (
    DESIRED_REPLICAS,
    ENV_PROCESS_NAME,
    FUNCTION_PORT,
    FUNCTION_PORT_NAME,
    HEALTH_PATH,
    TMP_MOUNT_PATH,
    TMP_VOLUME_NAME,
)
from ..models import FunctionSpec
from ..utils.quantity import parse_resources
from .metadata import build_child_metadata, build_labels, build_template_annotations, selector_labels


def secrets_volume_name(spec: FunctionSpec) -> str:
    return f"{spec.service}-projected-secrets"


def build_env(spec: FunctionSpec) -> list[dict[str, str]]:
    """fprocess first (when envProcess is set), then envVars sorted by name."""
    env: list[dict[str, str]] = []
    if spec.env_process is not None:
        env.append({"name": ENV_PROCESS_NAME, "value": spec.env_process})
    for name in sorted(spec.env_vars):
        if name == ENV_PROCESS_NAME and spec.env_process is not None:
            continue
        env.append({"name": name, "value": spec.env_vars[name]})
    return env


def build_node_selector(constraints: list[str]) -> dict[str, str]:
    """Translate ``key == value`` constraints into a node selector.

    Entries not of that form are ignored.
    """
    selector: dict[str, str] = {}
    for constraint in constraints:
        parts = constraint.split("==")
        if len(parts) != 2:
            continue
        key, value = parts[0].strip(), parts[1].strip()
        if key and value:
            selector[key] = value
    return {k: selector[k] for k in sorted(selector)}


def build_resources(spec: FunctionSpec) -> dict[str, Any]:
    """Resource requirements from the spec.

    Raises:
        QuantityError: If a quantity does not parse
    """
    resources: dict[str, Any] = {}
    for key, block in (("limits", spec.limits), ("requests", spec.requests)):
        if block is None:
            continue
        parsed = parse_resources(block.to_dict())
        if parsed:
            resources[key] = {name: q.raw for name, q in parsed.items()}
    return resources


def _build_probe() -> dict[str, Any]:
    return {
        "httpGet": {"path": HEALTH_PATH, "port": FUNCTION_PORT, "scheme": "HTTP"},
        "initialDelaySeconds": 2,
        "periodSeconds": 2,
        "timeoutSeconds": 1,
    }


def _build_volumes(spec: FunctionSpec, secrets_mount_path: str) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    volumes: list[dict[str, Any]] = []
    mounts: list[dict[str, Any]] = []

    if spec.read_only_root_filesystem:
        volumes.append({"name": TMP_VOLUME_NAME, "emptyDir": {}})
        mounts.append({"name": TMP_VOLUME_NAME, "mountPath": TMP_MOUNT_PATH})

    secrets = spec.unique_secrets()
    if secrets:
        name = secrets_volume_name(spec)
        volumes.append({
            "name": name,
            "projected": {
                "sources": [
                    {"secret": {"name": secret, "items": [{"key": secret, "path": secret}]}}
                    for secret in secrets
                ],
            },
        })
        mounts.append({"name": name, "mountPath": spec.mount_path(secrets_mount_path), "readOnly": True})

    return volumes, mounts


def build_deployment(
    function: dict[str, Any],
    spec: FunctionSpec,
    namespace: str,
    secrets_mount_path: str,
) -> dict[str, Any]:
    """Synthesize the Deployment for a Function.

    The same inputs always produce an equal dict with the same key order.

    Args:
        function: The Function object, used for the owner reference
        spec: Parsed Function spec
        namespace: Target namespace of the children
        secrets_mount_path: Default secrets mount path, used when the spec sets none

    Returns:
        Deployment body (apps/v1)

    Raises:
        QuantityError: If a limits or requests quantity does not parse
    """
    volumes, mounts = _build_volumes(spec, secrets_mount_path)

    container: dict[str, Any] = {
        "name": spec.service,
        "image": spec.image,
        "imagePullPolicy": "Always",
        "ports": [{"name": FUNCTION_PORT_NAME, "containerPort": FUNCTION_PORT, "protocol": "TCP"}],
        "env": build_env(spec),
        "resources": build_resources(spec),
        "livenessProbe": _build_probe(),
        "readinessProbe": _build_probe(),
        "securityContext": {"readOnlyRootFilesystem": spec.read_only_root_filesystem},
        "volumeMounts": mounts,
    }

    pod_spec: dict[str, Any] = {
        "containers": [container],
        "volumes": volumes,
    }
    node_selector = build_node_selector(spec.constraints)
    if node_selector:
        pod_spec["nodeSelector"] = node_selector

    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": build_child_metadata(function, spec, namespace),
        "spec": {
            "replicas": DESIRED_REPLICAS,
            "selector": {"matchLabels": selector_labels(spec)},
            "strategy": {
                "type": "RollingUpdate",
                "rollingUpdate": {"maxSurge": 1, "maxUnavailable": 0},
            },
            "template": {
                "metadata": {
                    "labels": build_labels(spec),
                    "annotations": build_template_annotations(spec),
                },
                "spec": pod_spec,
            },
        },
    }


def deployment_is_ready(deployment: dict[str, Any] | None) -> bool:
    """A Deployment is ready when its ready replicas match the desired count.

    A ``Progressing`` condition with reason ``ProgressDeadlineExceeded`` or a
    ``ReplicaFailure`` condition counts as a failed rollout.
    """
    if not deployment:
        return False
    status = deployment.get("status") or {}
    desired = (deployment.get("spec") or {}).get("replicas", DESIRED_REPLICAS)
    if (status.get("readyReplicas") or 0) != desired:
        return False
    generation = (deployment.get("metadata") or {}).get("generation")
    observed = status.get("observedGeneration")
    if generation is not None and observed is not None and observed < generation:
        return False
    for cond in status.get("conditions") or []:
        if cond.get("type") == "ReplicaFailure" and cond.get("status") == "True":
            return False
        if cond.get("type") == "Progressing" and cond.get("reason") == "ProgressDeadlineExceeded":
            return False
    return True
