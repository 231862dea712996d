"""Synchronization of child Deployments and Services with their desired state."""

from __future__ import annotations

import copy
import json
import logging
from typing import Any

from kubernetes.utils import parse_quantity

from . import metrics
from .builders.deployment import build_deployment
from .builders.metadata import controller_owner
from .builders.service import build_service
from .config import OperatorConfig, UpdateStrategy
from .constants import ANNOTATION_LAST_APPLIED, KIND_DEPLOYMENT, KIND_SERVICE, LABEL_FUNCTION, SYSTEM_KEY_DOMAINS
from .gateway import ClusterGateway
from .models import FunctionSpec
from .tracing import trace_span
from .utils.errors import InvariantViolation

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"

_EMPTY = (None, {}, [], "")


def _quantities_equal(a: Any, b: Any) -> bool:
    if not isinstance(a, str) or not isinstance(b, str):
        return False
    try:
        return parse_quantity(a) == parse_quantity(b)
    except (ValueError, ArithmeticError):
        return False


def is_subset(desired: Any, actual: Any, in_resources: bool = False) -> bool:
    """Check that every field set in desired has the same value in actual.

    Fields only present in actual (server defaults, external additions) are
    ignored. Lists must have the same length and match element-wise. Empty
    desired values match absent ones. Under ``resources`` quantities compare
    by value, so "1000m" matches "1".
    """
    if isinstance(desired, dict):
        if not isinstance(actual, dict):
            return actual is None and all(v in _EMPTY for v in desired.values())
        for key, value in desired.items():
            if key not in actual or actual[key] is None:
                if value in _EMPTY:
                    continue
                return False
            if not is_subset(value, actual[key], in_resources or key == "resources"):
                return False
        return True
    if isinstance(desired, list):
        if actual is None:
            return not desired
        if not isinstance(actual, list) or len(desired) != len(actual):
            return False
        return all(is_subset(d, a, in_resources) for d, a in zip(desired, actual))
    if desired == actual:
        return True
    return in_resources and _quantities_equal(desired, actual)


def is_system_key(key: str) -> bool:
    """Check whether a label or annotation key belongs to a Kubernetes component.

    Keys prefixed with ``kubernetes.io``, ``k8s.io`` or a subdomain of either
    (``deployment.kubernetes.io/revision``, ``kubectl.kubernetes.io/restartedAt``)
    are written by the cluster itself.
    """
    prefix, sep, _ = key.rpartition("/")
    if not sep:
        return False
    return any(prefix == domain or prefix.endswith(f".{domain}") for domain in SYSTEM_KEY_DOMAINS)


def _without_system_keys(desired: dict[str, Any] | None, actual: dict[str, Any] | None) -> dict[str, Any]:
    desired = desired or {}
    return {k: v for k, v in (actual or {}).items() if k in desired or not is_system_key(k)}


def _maps_equal(desired: dict[str, Any] | None, actual: dict[str, Any] | None) -> bool:
    return (desired or {}) == _without_system_keys(desired, actual)


def _template_metadata(obj: dict[str, Any]) -> dict[str, Any] | None:
    return ((obj.get("spec") or {}).get("template") or {}).get("metadata")


def in_sync(desired: dict[str, Any], actual: dict[str, Any], strategy: UpdateStrategy) -> bool:
    """Decide whether actual already matches desired under the given strategy.

    One-way treats the CR as the only source of truth: labels and annotations
    must match exactly, apart from system keys the controller does not set.
    Two-way only requires the controller's own entries.
    """
    desired_meta = desired.get("metadata") or {}
    actual_meta = actual.get("metadata") or {}

    if strategy is UpdateStrategy.ONE_WAY:
        if not _maps_equal(desired_meta.get("labels"), actual_meta.get("labels")):
            return False
        if not _maps_equal(desired_meta.get("annotations"), actual_meta.get("annotations")):
            return False
        desired_template = _template_metadata(desired)
        actual_template = _template_metadata(actual) or {}
        if desired_template is not None:
            if not _maps_equal(desired_template.get("labels"), actual_template.get("labels")):
                return False
            if not _maps_equal(desired_template.get("annotations"), actual_template.get("annotations")):
                return False
    elif not is_subset(
        {k: desired_meta.get(k) for k in ("labels", "annotations")},
        actual_meta,
    ):
        return False

    if not is_subset(desired_meta.get("ownerReferences"), actual_meta.get("ownerReferences")):
        return False
    return is_subset(desired.get("spec"), actual.get("spec"))


def previous_spec(actual: dict[str, Any]) -> FunctionSpec | None:
    """Read the spec recorded in the last-applied annotation of a child."""
    annotations = (actual.get("metadata") or {}).get("annotations") or {}
    raw = annotations.get(ANNOTATION_LAST_APPLIED)
    if not raw:
        return None
    try:
        return FunctionSpec.from_dict(json.loads(raw))
    except (ValueError, TypeError, AttributeError):
        # a corrupted annotation only costs the removal of stale keys
        logger.warning("Ignoring unreadable %s annotation", ANNOTATION_LAST_APPLIED)
        return None


def _removed_keys(previous: dict[str, Any] | None, current: dict[str, Any] | None) -> dict[str, None]:
    return {k: None for k in (previous or {}) if k not in (current or {})}


def _removed_named(
    previous: list[dict[str, Any]] | None,
    current: list[dict[str, Any]] | None,
    merge_key: str = "name",
) -> list[dict[str, Any]]:
    current_keys = {item.get(merge_key) for item in current or []}
    return [
        {merge_key: item[merge_key], "$patch": "delete"}
        for item in previous or []
        if item.get(merge_key) not in current_keys
    ]


def build_two_way_patch(desired: dict[str, Any], previous: dict[str, Any] | None) -> dict[str, Any]:
    """Strategic merge patch setting the controller's fields.

    Entries the controller applied last time but no longer wants (map keys,
    env vars, volumes) are deleted; anything added by other tooling is kept.
    """
    patch = copy.deepcopy(desired)
    patch.pop("apiVersion", None)
    patch.pop("kind", None)
    if previous is None:
        return patch

    meta = patch["metadata"]
    prev_meta = previous.get("metadata") or {}
    for field in ("labels", "annotations"):
        meta[field] = {**_removed_keys(prev_meta.get(field), meta.get(field)), **meta.get(field, {})}

    template = (patch.get("spec") or {}).get("template")
    if template is None:
        return patch

    prev_template = previous["spec"]["template"]
    for field in ("labels", "annotations"):
        template["metadata"][field] = {
            **_removed_keys(prev_template["metadata"].get(field), template["metadata"].get(field)),
            **template["metadata"].get(field, {}),
        }

    pod, prev_pod = template["spec"], prev_template["spec"]
    node_selector = {**_removed_keys(prev_pod.get("nodeSelector"), pod.get("nodeSelector")),
                     **pod.get("nodeSelector", {})}
    if node_selector:
        pod["nodeSelector"] = node_selector
    pod["volumes"] = pod["volumes"] + _removed_named(prev_pod.get("volumes"), pod["volumes"])

    container, prev_container = pod["containers"][0], prev_pod["containers"][0]
    if prev_container.get("name") == container["name"]:
        container["env"] = container["env"] + _removed_named(prev_container.get("env"), container["env"])
        container["volumeMounts"] = container["volumeMounts"] + _removed_named(
            prev_container.get("volumeMounts"), container["volumeMounts"], merge_key="mountPath"
        )
    return patch


def _keep_system_keys(body_meta: dict[str, Any], actual_meta: dict[str, Any] | None) -> None:
    for field in ("labels", "annotations"):
        kept = {k: v for k, v in ((actual_meta or {}).get(field) or {}).items() if is_system_key(k)}
        if kept:
            body_meta[field] = {**kept, **(body_meta.get(field) or {})}


def _one_way_body(kind: str, desired: dict[str, Any], actual: dict[str, Any]) -> dict[str, Any]:
    body = copy.deepcopy(desired)
    actual_meta = actual.get("metadata") or {}
    body["metadata"]["resourceVersion"] = actual_meta.get("resourceVersion")
    _keep_system_keys(body["metadata"], actual_meta)
    body_template = _template_metadata(body)
    if body_template is not None:
        _keep_system_keys(body_template, _template_metadata(actual))
    if kind == KIND_SERVICE:
        # cluster IPs are immutable once allocated
        actual_spec = actual.get("spec") or {}
        for field in ("clusterIP", "clusterIPs"):
            if actual_spec.get(field):
                body["spec"][field] = actual_spec[field]
    return body


def sync_child(
    gateway: ClusterGateway,
    kind: str,
    desired: dict[str, Any],
    actual: dict[str, Any] | None,
    strategy: UpdateStrategy,
    previous: dict[str, Any] | None = None,
) -> str:
    """Bring one child in line with its desired state.

    Args:
        gateway: Cluster API gateway
        kind: "Deployment" or "Service"
        desired: Synthesized object
        actual: Current object, or None if it does not exist
        strategy: One-way replaces the object; two-way merges controller fields
        previous: Object synthesized from the last-applied spec (two-way removals)

    Returns:
        One of "created", "updated", "unchanged"
    """
    meta = desired["metadata"]
    namespace, name = meta["namespace"], meta["name"]

    with trace_span(f"sync_{kind.lower()}", kind=kind, attributes={"name": name, "namespace": namespace}):
        if actual is None:
            operation = "create"
            outcome = CREATED
        elif in_sync(desired, actual, strategy):
            return UNCHANGED
        else:
            metrics.drift_detected_total.labels(kind=kind, strategy=str(strategy)).inc()
            operation = "replace" if strategy is UpdateStrategy.ONE_WAY else "patch"
            outcome = UPDATED

        try:
            if operation == "create":
                gateway.create_child(kind, namespace, desired)
            elif operation == "replace":
                gateway.replace_child(kind, namespace, name, _one_way_body(kind, desired, actual))
            else:
                gateway.patch_child(kind, namespace, name, build_two_way_patch(desired, previous))
        except Exception:
            metrics.child_operations_total.labels(kind=kind, operation=operation, result="error").inc()
            raise

        metrics.child_operations_total.labels(kind=kind, operation=operation, result="success").inc()
        logger.info("%s %s/%s %s (%s)", kind, namespace, name, outcome, strategy)
        return outcome


def sync_children(
    gateway: ClusterGateway,
    function: dict[str, Any],
    spec: FunctionSpec,
    namespace: str,
    deployment: dict[str, Any] | None,
    service: dict[str, Any] | None,
    config: OperatorConfig,
) -> dict[str, str]:
    """Synthesize and apply the Deployment and Service of a Function.

    Returns:
        Outcome per kind
    """
    desired_deployment = build_deployment(function, spec, namespace, config.secrets_mount_path)
    desired_service = build_service(function, spec, namespace)
    uid = function["metadata"]["uid"]
    check_invariants(desired_deployment, uid)
    check_invariants(desired_service, uid)

    previous_deployment = previous_service = None
    if config.update_strategy is UpdateStrategy.TWO_WAY:
        prev_spec = previous_spec(deployment) if deployment else None
        if prev_spec is not None and prev_spec.service == spec.service:
            previous_deployment = build_deployment(function, prev_spec, namespace, config.secrets_mount_path)
        prev_spec = previous_spec(service) if service else None
        if prev_spec is not None and prev_spec.service == spec.service:
            previous_service = build_service(function, prev_spec, namespace)

    return {
        KIND_DEPLOYMENT: sync_child(
            gateway, KIND_DEPLOYMENT, desired_deployment, deployment, config.update_strategy, previous_deployment
        ),
        KIND_SERVICE: sync_child(
            gateway, KIND_SERVICE, desired_service, service, config.update_strategy, previous_service
        ),
    }


def delete_stale_children(gateway: ClusterGateway, uid: str, namespace: str, keep_name: str | None) -> list[str]:
    """Delete children controlled by the Function whose name is not keep_name.

    With keep_name None every controlled child is deleted.

    Returns:
        "Kind/name" of each deleted child
    """
    deleted: list[str] = []
    for kind in (KIND_DEPLOYMENT, KIND_SERVICE):
        for obj in gateway.list_children(kind, namespace):
            owner = controller_owner(obj)
            name = obj["metadata"]["name"]
            if owner is None or owner.get("uid") != uid or name == keep_name:
                continue
            if gateway.delete_child(kind, namespace, name):
                metrics.child_operations_total.labels(kind=kind, operation="delete", result="success").inc()
                deleted.append(f"{kind}/{name}")
    return deleted


def check_invariants(desired: dict[str, Any], uid: str) -> None:
    """A synthesized child must be controlled by its Function and carry the identifying label.

    Raises:
        InvariantViolation: If either is missing
    """
    meta = desired.get("metadata") or {}
    owner = controller_owner(desired)
    if owner is None or owner.get("uid") != uid:
        raise InvariantViolation(f"{desired.get('kind')} {meta.get('name')} lacks a controller owner reference")
    if LABEL_FUNCTION not in (meta.get("labels") or {}):
        raise InvariantViolation(f"{desired.get('kind')} {meta.get('name')} lacks the {LABEL_FUNCTION} label")
