"""Builder for the child Service of a Function."""

from __future__ import annotations

from typing import Any

from ..constants import FUNCTION_PORT, FUNCTION_PORT_NAME
from ..models import FunctionSpec
from .metadata import build_child_metadata, selector_labels


def build_service(function: dict[str, Any], spec: FunctionSpec, namespace: str) -> dict[str, Any]:
    """Synthesize the Service for a Function.

    Args:
        function: The Function object, used for the owner reference
        spec: Parsed Function spec
        namespace: Target namespace of the children

    Returns:
        Service body (v1)
    """
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": build_child_metadata(function, spec, namespace),
        "spec": {
            "type": "ClusterIP",
            "selector": selector_labels(spec),
            "ports": [
                {
                    "name": FUNCTION_PORT_NAME,
                    "port": FUNCTION_PORT,
                    "targetPort": FUNCTION_PORT,
                    "protocol": "TCP",
                },
            ],
        },
    }
