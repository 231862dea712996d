"""Utilities for managing Function status conditions."""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any

from ..constants import (
    COND_READY,
    REASON_CPU_QUANTITY,
    REASON_DEPLOYMENT_ALREADY_EXISTS,
    REASON_DEPLOYMENT_NOT_READY,
    REASON_INVALID_CRD_NAMESPACE,
    REASON_INVALID_FUNCTION_NAMESPACE,
    REASON_MEMORY_QUANTITY,
    REASON_OK,
    REASON_SECRETS_NOT_FOUND,
    REASON_SERVICE_ALREADY_EXISTS,
)

STATUS_TRUE = "True"
STATUS_FALSE = "False"
STATUS_UNKNOWN = "Unknown"

# Closed set of reasons and the Ready status each one implies
REASON_STATUS = {
    REASON_OK: STATUS_TRUE,
    REASON_INVALID_CRD_NAMESPACE: STATUS_FALSE,
    REASON_INVALID_FUNCTION_NAMESPACE: STATUS_FALSE,
    REASON_CPU_QUANTITY: STATUS_FALSE,
    REASON_MEMORY_QUANTITY: STATUS_FALSE,
    REASON_DEPLOYMENT_ALREADY_EXISTS: STATUS_FALSE,
    REASON_DEPLOYMENT_NOT_READY: STATUS_FALSE,
    REASON_SERVICE_ALREADY_EXISTS: STATUS_FALSE,
    REASON_SECRETS_NOT_FOUND: STATUS_FALSE,
}

DEFAULT_MESSAGES = {
    REASON_OK: "Deployment is ready",
    REASON_INVALID_CRD_NAMESPACE: "The resource's namespace does not match the functions namespace",
    REASON_INVALID_FUNCTION_NAMESPACE: "The function's target namespace is not usable",
    REASON_CPU_QUANTITY: "A function's cpu quantity is invalid",
    REASON_MEMORY_QUANTITY: "A function's memory quantity is invalid",
    REASON_DEPLOYMENT_ALREADY_EXISTS: "The function's deployment already exists and is not owned by this function",
    REASON_DEPLOYMENT_NOT_READY: "The function's deployment is not ready",
    REASON_SERVICE_ALREADY_EXISTS: "The function's service already exists and is not owned by this function",
    REASON_SECRETS_NOT_FOUND: "The given secrets to mount do not exist",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_condition(conditions: list[dict[str, Any]], condition_type: str) -> dict[str, Any] | None:
    """Return the condition of the given type, if present."""
    for cond in conditions:
        if cond.get("type") == condition_type:
            return cond
    return None


def condition_needs_update(
    conditions: list[dict[str, Any]],
    condition_type: str,
    status: str,
    reason: str,
    message: str,
) -> bool:
    """Decide whether writing this condition would change anything.

    Returns:
        False when a condition of this type already carries the same status,
        reason and message, so the status write can be skipped.
    """
    existing = get_condition(conditions, condition_type)
    if existing is None:
        return True
    return (
        existing.get("status") != status
        or existing.get("reason") != reason
        or existing.get("message") != message
    )


def update_condition(
    conditions: list[dict[str, Any]],
    condition_type: str,
    status: str,
    reason: str,
    message: str,
    now: str | None = None,
) -> list[dict[str, Any]]:
    """Update or add a condition to the conditions list.

    At most one condition per type is kept. ``lastUpdateTime`` moves only when
    the status or reason changes; a message-only change keeps the old time.

    Args:
        conditions: List of existing conditions (not modified)
        condition_type: Type of condition
        status: Status of condition ("True", "False", "Unknown")
        reason: Reason for the condition
        message: Human-readable message
        now: Timestamp to use for a transition (defaults to current UTC time)

    Returns:
        New list of conditions
    """
    timestamp = now or _now()
    updated: list[dict[str, Any]] = []
    replaced = False

    for cond in conditions:
        if cond.get("type") != condition_type:
            updated.append(copy.deepcopy(cond))
            continue
        if replaced:
            # duplicate of a type already handled; drop it
            continue
        transitioned = cond.get("status") != status or cond.get("reason") != reason
        updated.append({
            "type": condition_type,
            "status": status,
            "reason": reason,
            "message": message,
            "lastUpdateTime": timestamp if transitioned else cond.get("lastUpdateTime", timestamp),
        })
        replaced = True

    if not replaced:
        updated.append({
            "type": condition_type,
            "status": status,
            "reason": reason,
            "message": message,
            "lastUpdateTime": timestamp,
        })

    return updated


def set_ready_condition(
    conditions: list[dict[str, Any]],
    reason: str,
    message: str | None = None,
    now: str | None = None,
) -> list[dict[str, Any]]:
    """Set the Ready condition from one of the known reasons.

    Raises:
        ValueError: If the reason is not part of the closed enumeration
    """
    if reason not in REASON_STATUS:
        raise ValueError(f"Unknown condition reason: {reason}")
    return update_condition(
        conditions,
        COND_READY,
        REASON_STATUS[reason],
        reason,
        message or DEFAULT_MESSAGES[reason],
        now,
    )


def ready_condition_needs_update(
    conditions: list[dict[str, Any]],
    reason: str,
    message: str | None = None,
) -> bool:
    """Check whether the Ready condition differs from the given reason/message."""
    return condition_needs_update(
        conditions,
        COND_READY,
        REASON_STATUS.get(reason, STATUS_UNKNOWN),
        reason,
        message or DEFAULT_MESSAGES.get(reason, reason),
    )
