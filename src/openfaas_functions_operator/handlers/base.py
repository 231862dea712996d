"""Base handler class with structured logging and reconciliation metrics."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, TypeVar

from .. import metrics
from ..constants import CONTROLLER_NAME
from ..logging import log_resource_event
from ..utils.errors import InvariantViolation, is_transient, sanitize_exception
from ..utils.events import emit_reconcile_failed

_T = TypeVar("_T")


class BaseHandler:
    """Base class for handlers acting on one resource kind."""

    def __init__(self, kind: str):
        """Initialize base handler.

        Args:
            kind: The Kubernetes resource kind (e.g., "OpenFaaSFunction")
        """
        self.kind = kind
        self.logger = logging.getLogger(self.__class__.__module__)

    def _get_resource_context(self, meta: dict[str, Any]) -> dict[str, Any]:
        return {
            "name": meta.get("name", "unknown"),
            "namespace": meta.get("namespace", "default"),
            "uid": meta.get("uid", "unknown"),
        }

    def _log(self, level: int, meta: dict[str, Any], message: str, event: str, reason: str, **kwargs: Any) -> None:
        ctx = self._get_resource_context(meta)
        log_resource_event(
            self.logger,
            controller=CONTROLLER_NAME,
            resource_kind=self.kind,
            resource_name=ctx["name"],
            namespace=ctx["namespace"],
            uid=ctx["uid"],
            event=event,
            reason=reason,
            message=message,
            level=level,
            **kwargs,
        )

    def log_info(
        self,
        meta: dict[str, Any],
        message: str,
        event: str = "info",
        reason: str = "Info",
        **kwargs: Any,
    ) -> None:
        """Log an info-level structured log message."""
        self._log(logging.INFO, meta, message, event, reason, **kwargs)

    def log_warning(
        self,
        meta: dict[str, Any],
        message: str,
        event: str = "warning",
        reason: str = "Warning",
        **kwargs: Any,
    ) -> None:
        """Log a warning-level structured log message."""
        self._log(logging.WARNING, meta, message, event, reason, **kwargs)

    def log_error(
        self,
        meta: dict[str, Any],
        message: str,
        error: BaseException | None = None,
        event: str = "error",
        reason: str = "Error",
        **kwargs: Any,
    ) -> None:
        """Log an error-level structured log message.

        Args:
            meta: Kubernetes resource metadata
            message: Log message
            error: Optional exception; only its sanitized form is logged
            event: Event type (default: "error")
            reason: Reason for the event (default: "Error")
            **kwargs: Additional fields to include in the log
        """
        log_data = kwargs.copy()
        if error is not None:
            log_data["error"] = sanitize_exception(error)
            log_data["error_type"] = type(error).__name__
        self._log(logging.ERROR, meta, message, event, reason, **log_data)

    def reconcile_with_metrics(
        self,
        meta: dict[str, Any],
        reconcile_fn: Callable[[], _T],
        body: dict[str, Any] | None = None,
    ) -> _T:
        """Execute reconciliation with metrics and error logging.

        Transient failures are logged as warnings; anything else (invariant
        violations, unexpected API errors, bugs) is logged as an error and
        reported as a Warning event on the resource. The exception is always
        re-raised so the caller can schedule a retry.

        Args:
            meta: Kubernetes resource metadata
            reconcile_fn: Function to execute for reconciliation
            body: Resource the failure event is attached to
        """
        start_time = time.time()
        try:
            result = reconcile_fn()
            metrics.reconcile_total.labels(result="success").inc()
            return result
        except Exception as e:
            error_type = type(e).__name__
            metrics.error_total.labels(error_type=error_type).inc()
            if is_transient(e) and not isinstance(e, InvariantViolation):
                metrics.reconcile_total.labels(result="retry").inc()
                self.log_warning(
                    meta,
                    "Reconciliation hit a transient error",
                    reason="TransientError",
                    error=sanitize_exception(e),
                    error_type=error_type,
                )
            else:
                metrics.reconcile_total.labels(result="error").inc()
                self.log_error(meta, "Reconciliation failed", error=e, reason="ReconciliationFailed")
                if body is not None:
                    emit_reconcile_failed(body, f"Reconciliation failed: {sanitize_exception(e)}")
            raise
        finally:
            duration = time.time() - start_time
            metrics.reconcile_duration_seconds.observe(duration)
