"""Reconciler for OpenFaaSFunction resources."""

from __future__ import annotations

from enum import Enum
from typing import Any

from .. import metrics
from ..builders.deployment import deployment_is_ready
from ..config import OperatorConfig
from ..constants import (
    KIND_DEPLOYMENT,
    KIND_FUNCTION,
    REASON_DEPLOYMENT_NOT_READY,
    REASON_OK,
)
from ..gateway import ClusterGateway
from ..models import FunctionSpec, split_key
from ..sync import CREATED, UNCHANGED, UPDATED, delete_stale_children, sync_children
from ..tracing import add_span_attribute, trace_span
from ..utils.conditions import ready_condition_needs_update, set_ready_condition
from ..utils.context import with_correlation_id
from ..utils.errors import ValidationFailed
from ..utils.events import (
    emit_child_created,
    emit_child_updated,
    emit_reconcile_started,
    emit_validate_failed,
)
from ..validator import validate
from .base import BaseHandler
from .finalizer import FinalizerManager, has_finalizer


class State(str, Enum):
    """Where a reconciliation ended."""

    GONE = "Gone"
    DELETING = "Deleting"
    INVALID = "Invalid"
    AWAITING_READINESS = "AwaitingReadiness"
    READY = "Ready"


class FunctionReconciler(BaseHandler):
    """Drives one Function towards its declared state.

    Each call is a sequential read, decide, write pass:
    Pending, Validating, Applying, Awaiting-Readiness, Ready. Validation
    failures end in Invalid with a condition and no child writes. A deletion
    timestamp sends the Function to the finalizer instead.
    """

    def __init__(self, gateway: ClusterGateway, config: OperatorConfig):
        super().__init__(KIND_FUNCTION)
        self.gateway = gateway
        self.config = config
        self.finalizers = FinalizerManager(gateway)

    def reconcile(self, key: str) -> State:
        """Reconcile the Function with the given ``namespace/name`` key.

        Raises:
            Exception: Anything but a validation failure; the caller retries with backoff
        """
        namespace, name = split_key(key)
        with with_correlation_id(), trace_span("reconcile_function", attributes={"function.key": key}):
            function = self.gateway.get_function(namespace, name)
            if function is None:
                # deleted; owner references take care of anything left behind
                self.logger.debug("Function %s no longer exists", key)
                return State.GONE

            meta = function["metadata"]
            return self.reconcile_with_metrics(meta, lambda: self._reconcile(function), body=function)

    def _reconcile(self, function: dict[str, Any]) -> State:
        meta = function["metadata"]

        if meta.get("deletionTimestamp"):
            if has_finalizer(function):
                add_span_attribute("function.state", State.DELETING.value)
                self.finalizers.finalize(function)
            return State.DELETING

        function = self.finalizers.ensure(function)
        meta = function["metadata"]
        status = function.get("status") or {}

        if status.get("observedGeneration") != meta.get("generation"):
            self.log_info(meta, "Reconciliation started", event="reconcile", reason="ReconcileStarted")
            emit_reconcile_started(function)

        try:
            spec = FunctionSpec.from_dict(function.get("spec") or {})
        except ValueError as e:
            # the CRD schema requires these fields; nothing to retry until the object changes
            self.log_error(meta, "Function spec is unusable", error=e, reason="InvalidSpec")
            return State.INVALID

        try:
            accepted = validate(function, spec, self.config, self.gateway)
        except ValidationFailed as e:
            self.log_warning(meta, e.message, event="validate", reason=e.reason, **e.details)
            if self.write_status(function, e.reason, e.message):
                emit_validate_failed(function, e.reason, e.message)
            add_span_attribute("function.state", State.INVALID.value)
            return State.INVALID

        outcomes = sync_children(
            self.gateway,
            function,
            spec,
            accepted.namespace,
            accepted.deployment,
            accepted.service,
            self.config,
        )
        for kind, outcome in outcomes.items():
            if outcome == CREATED:
                emit_child_created(function, kind, spec.service)
            elif outcome == UPDATED:
                emit_child_updated(function, kind, spec.service)

        deleted = delete_stale_children(self.gateway, meta["uid"], accepted.namespace, keep_name=spec.service)
        if deleted:
            self.log_info(meta, f"Deleted stale children {', '.join(deleted)}", event="delete", reason="StaleChildren")

        deployment = accepted.deployment
        if outcomes[KIND_DEPLOYMENT] != UNCHANGED:
            deployment = self.gateway.get_deployment(accepted.namespace, spec.service)

        if deployment_is_ready(deployment):
            self.write_status(function, REASON_OK)
            state = State.READY
        else:
            self.write_status(function, REASON_DEPLOYMENT_NOT_READY)
            state = State.AWAITING_READINESS

        add_span_attribute("function.state", state.value)
        self.log_info(meta, f"Reconciled: {state.value}", event="reconcile", reason=state.value)
        return state

    def write_status(self, function: dict[str, Any], reason: str, message: str | None = None) -> bool:
        """Write the Ready condition unless it is already current.

        Returns:
            True if a status write happened
        """
        meta = function["metadata"]
        status = function.get("status") or {}
        conditions = status.get("conditions") or []
        generation = meta.get("generation")

        if (
            not ready_condition_needs_update(conditions, reason, message)
            and status.get("observedGeneration") == generation
        ):
            return False

        new_status = {
            "conditions": set_ready_condition(conditions, reason, message),
            "observedGeneration": generation,
        }
        self.gateway.patch_function_status(meta["namespace"], meta["name"], new_status)
        metrics.status_writes_total.labels(reason=reason).inc()
        self.log_info(meta, f"Status set to {reason}", event="status", reason=reason)
        return True
