"""Utilities for emitting Kubernetes events."""

from __future__ import annotations

from typing import Any

import kopf

from ..constants import (
    EVENT_REASON_CHILDREN_DELETED,
    EVENT_REASON_DEPLOYMENT_CREATED,
    EVENT_REASON_DEPLOYMENT_UPDATED,
    EVENT_REASON_RECONCILE_FAILED,
    EVENT_REASON_RECONCILE_STARTED,
    EVENT_REASON_SERVICE_CREATED,
    EVENT_REASON_SERVICE_UPDATED,
    EVENT_REASON_VALIDATE_FAILED,
    KIND_DEPLOYMENT,
)


def emit_event(
    body: dict[str, Any],
    reason: str,
    message: str,
    type_: str = "Normal",
) -> None:
    """Emit a Kubernetes event.

    Args:
        body: The Function object (needs apiVersion, kind and metadata)
        reason: Event reason
        message: Event message
        type_: Event type (Normal or Warning)
    """
    kopf.event(
        body,
        reason=reason,
        message=message,
        type=type_,
    )


def emit_reconcile_started(body: dict[str, Any]) -> None:
    """Emit reconcile started event."""
    emit_event(body, EVENT_REASON_RECONCILE_STARTED, "Reconciliation started")


def emit_reconcile_failed(body: dict[str, Any], message: str) -> None:
    """Emit reconcile failed event."""
    emit_event(body, EVENT_REASON_RECONCILE_FAILED, message, type_="Warning")


def emit_validate_failed(body: dict[str, Any], reason: str, message: str) -> None:
    """Emit validation failed event."""
    emit_event(body, EVENT_REASON_VALIDATE_FAILED, f"{reason}: {message}", type_="Warning")


def emit_child_created(body: dict[str, Any], kind: str, name: str) -> None:
    """Emit Deployment/Service created event."""
    reason = EVENT_REASON_DEPLOYMENT_CREATED if kind == KIND_DEPLOYMENT else EVENT_REASON_SERVICE_CREATED
    emit_event(body, reason, f"{kind} {name} created")


def emit_child_updated(body: dict[str, Any], kind: str, name: str) -> None:
    """Emit Deployment/Service updated event."""
    reason = EVENT_REASON_DEPLOYMENT_UPDATED if kind == KIND_DEPLOYMENT else EVENT_REASON_SERVICE_UPDATED
    emit_event(body, reason, f"{kind} {name} updated")


def emit_children_deleted(body: dict[str, Any], name: str) -> None:
    """Emit children deleted event."""
    emit_event(body, EVENT_REASON_CHILDREN_DELETED, f"Deployment and Service {name} deleted")
