"""Finalizer handling: children go first, then the Function."""

from __future__ import annotations

import copy
from typing import Any

from kubernetes.client.exceptions import ApiException

from ..builders.metadata import controller_owner
from ..constants import FINALIZER, KIND_DEPLOYMENT, KIND_FUNCTION, KIND_SERVICE
from ..gateway import ClusterGateway
from ..sync import delete_stale_children
from ..tracing import trace_span
from ..utils.errors import TransientError, is_not_found
from ..utils.events import emit_children_deleted
from .base import BaseHandler


def has_finalizer(function: dict[str, Any]) -> bool:
    return FINALIZER in (function.get("metadata", {}).get("finalizers") or [])


class FinalizerManager(BaseHandler):
    """Adds the finalizer on creation and removes it once children are gone."""

    def __init__(self, gateway: ClusterGateway):
        super().__init__(KIND_FUNCTION)
        self.gateway = gateway

    def ensure(self, function: dict[str, Any]) -> dict[str, Any]:
        """Add the finalizer if missing.

        Returns:
            The Function as stored after the write, or unchanged if nothing was written
        """
        if has_finalizer(function):
            return function
        updated = copy.deepcopy(function)
        meta = updated["metadata"]
        meta["finalizers"] = list(meta.get("finalizers") or []) + [FINALIZER]
        stored = self.gateway.replace_function(updated)
        self.log_info(meta, "Finalizer added", event="finalizer", reason="FinalizerAdded")
        return stored

    def _remaining_children(self, uid: str, namespace: str) -> list[str]:
        remaining = []
        for kind in (KIND_DEPLOYMENT, KIND_SERVICE):
            for obj in self.gateway.list_children(kind, namespace):
                owner = controller_owner(obj)
                if owner is not None and owner.get("uid") == uid:
                    remaining.append(f"{kind}/{obj['metadata']['name']}")
        return remaining

    def finalize(self, function: dict[str, Any]) -> None:
        """Delete the Function's children, then release the Function.

        Children not controlled by this Function are left alone.

        Raises:
            TransientError: If a child is still present after deletion
        """
        meta = function["metadata"]
        namespace, uid = meta["namespace"], meta["uid"]

        with trace_span("finalize_function", attributes={"name": meta["name"], "namespace": namespace}):
            deleted = delete_stale_children(self.gateway, uid, namespace, keep_name=None)
            if deleted:
                self.log_info(meta, f"Deleted {', '.join(deleted)}", event="delete", reason="ChildrenDeleted")
                emit_children_deleted(function, meta["name"])

            remaining = self._remaining_children(uid, namespace)
            if remaining:
                raise TransientError(f"Waiting for {', '.join(remaining)} to be deleted")

            self.release(function)

    def release(self, function: dict[str, Any]) -> None:
        """Remove the finalizer; a Function that is already gone is fine."""
        if not has_finalizer(function):
            return
        updated = copy.deepcopy(function)
        meta = updated["metadata"]
        meta["finalizers"] = [f for f in meta["finalizers"] if f != FINALIZER]
        try:
            self.gateway.replace_function(updated)
        except ApiException as e:
            if is_not_found(e):
                return
            raise
        self.log_info(meta, "Finalizer removed", event="finalizer", reason="FinalizerRemoved")
