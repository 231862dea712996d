"""Metadata shared by the child Deployment and Service."""

from __future__ import annotations

from typing import Any

from ..constants import ANNOTATION_LAST_APPLIED, LABEL_FUNCTION
from ..models import FunctionSpec


def build_owner_reference(function: dict[str, Any]) -> dict[str, Any]:
    """Create the controller owner reference pointing at a Function.

    Args:
        function: The Function object (apiVersion, kind and metadata are read)

    Returns:
        Owner reference dict
    """
    meta = function["metadata"]
    return {
        "apiVersion": function["apiVersion"],
        "kind": function["kind"],
        "name": meta["name"],
        "uid": meta["uid"],
        "controller": True,
        "blockOwnerDeletion": True,
    }


def selector_labels(spec: FunctionSpec) -> dict[str, str]:
    return {LABEL_FUNCTION: spec.service}


def build_labels(spec: FunctionSpec) -> dict[str, str]:
    """User labels overlaid by the identifying label, which cannot be overridden."""
    labels = {k: spec.labels[k] for k in sorted(spec.labels)}
    labels[LABEL_FUNCTION] = spec.service
    return labels


def build_template_annotations(spec: FunctionSpec) -> dict[str, str]:
    return {k: spec.annotations[k] for k in sorted(spec.annotations)}


def build_annotations(spec: FunctionSpec) -> dict[str, str]:
    """User annotations plus the last-applied record of the spec."""
    annotations = build_template_annotations(spec)
    annotations[ANNOTATION_LAST_APPLIED] = spec.canonical_json()
    return annotations


def build_child_metadata(function: dict[str, Any], spec: FunctionSpec, namespace: str) -> dict[str, Any]:
    return {
        "name": spec.service,
        "namespace": namespace,
        "labels": build_labels(spec),
        "annotations": build_annotations(spec),
        "ownerReferences": [build_owner_reference(function)],
    }


def is_owned_by(obj: dict[str, Any] | None, uid: str) -> bool:
    """Check whether obj carries an owner reference to the given uid."""
    if not obj:
        return False
    refs = (obj.get("metadata") or {}).get("ownerReferences") or []
    return any(ref.get("uid") == uid for ref in refs)


def controller_owner(obj: dict[str, Any]) -> dict[str, Any] | None:
    """Return the controlling owner reference of obj, if any."""
    for ref in (obj.get("metadata") or {}).get("ownerReferences") or []:
        if ref.get("controller"):
            return ref
    return None
