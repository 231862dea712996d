"""Validation of a Function against the cluster before any write."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .config import OperatorConfig
from .constants import (
    REASON_DEPLOYMENT_ALREADY_EXISTS,
    REASON_INVALID_CRD_NAMESPACE,
    REASON_INVALID_FUNCTION_NAMESPACE,
    REASON_SECRETS_NOT_FOUND,
    REASON_SERVICE_ALREADY_EXISTS,
)
from .builders.metadata import is_owned_by
from .gateway import ClusterGateway
from .models import FunctionSpec
from .utils.errors import QuantityError, ValidationFailed
from .utils.quantity import parse_resources

logger = logging.getLogger(__name__)


@dataclass
class Accepted:
    """A Function that passed validation, with the children observed while checking."""

    namespace: str
    deployment: dict[str, Any] | None
    service: dict[str, Any] | None


def check_namespace(crd_namespace: str, target_namespace: str, config: OperatorConfig) -> None:
    """Steps 1 and the policy half of step 2.

    Raises:
        ValidationFailed: InvalidCRDNamespace or InvalidFunctionNamespace
    """
    if config.restrict_to_functions_namespace and crd_namespace != config.functions_namespace:
        raise ValidationFailed(
            REASON_INVALID_CRD_NAMESPACE,
            f"Function is in namespace '{crd_namespace}', expected '{config.functions_namespace}'",
        )
    # owner references cannot point across namespaces
    if target_namespace != crd_namespace:
        raise ValidationFailed(
            REASON_INVALID_FUNCTION_NAMESPACE,
            f"Target namespace '{target_namespace}' differs from the Function's namespace '{crd_namespace}'",
        )


def check_quantities(spec: FunctionSpec) -> None:
    """Parse every limits/requests quantity.

    Raises:
        ValidationFailed: CPUQuantity or MemoryQuantity
    """
    for block in (spec.limits, spec.requests):
        if block is None:
            continue
        try:
            parse_resources(block.to_dict())
        except QuantityError as e:
            raise ValidationFailed(e.reason, str(e), {"field": e.field, "value": e.value}) from e


def check_secrets(spec: FunctionSpec, namespace: str, gateway: ClusterGateway) -> None:
    """Every named secret must exist in the target namespace.

    Raises:
        ValidationFailed: SecretsNotFound, listing the missing names
    """
    wanted = spec.unique_secrets()
    if not wanted:
        return
    existing = gateway.list_secret_names(namespace)
    missing = [name for name in wanted if name not in existing]
    if missing:
        raise ValidationFailed(
            REASON_SECRETS_NOT_FOUND,
            f"Secrets not found in namespace '{namespace}': {', '.join(missing)}",
            {"missing": missing},
        )


def check_foreign_child(kind_reason: str, kind: str, obj: dict[str, Any] | None, uid: str) -> None:
    """An existing child not owned by this Function is a conflict; it is never taken over."""
    if obj is not None and not is_owned_by(obj, uid):
        meta = obj.get("metadata") or {}
        raise ValidationFailed(
            kind_reason,
            f"{kind} '{meta.get('namespace')}/{meta.get('name')}' exists and is not owned by this Function",
        )


def validate(
    function: dict[str, Any],
    spec: FunctionSpec,
    config: OperatorConfig,
    gateway: ClusterGateway,
) -> Accepted:
    """Run the ordered checks, stopping at the first failure.

    1. Function namespace vs. the functions namespace policy
    2. Target namespace usable and existing
    3. limits/requests quantities
    4. Referenced secrets exist
    5. Deployment and Service names not taken by foreign objects

    Args:
        function: The Function object
        spec: Parsed spec of the Function
        config: Operator configuration
        gateway: Cluster API gateway used for the lookups

    Returns:
        Accepted token carrying the target namespace and observed children

    Raises:
        ValidationFailed: With the reason of the first failing check
    """
    meta = function["metadata"]
    crd_namespace = meta["namespace"]
    uid = meta["uid"]
    if config.restrict_to_functions_namespace:
        namespace = spec.target_namespace(config.functions_namespace)
    else:
        namespace = spec.target_namespace(crd_namespace)

    check_namespace(crd_namespace, namespace, config)
    if not gateway.namespace_exists(namespace):
        raise ValidationFailed(
            REASON_INVALID_FUNCTION_NAMESPACE,
            f"Target namespace '{namespace}' does not exist",
        )

    check_quantities(spec)
    check_secrets(spec, namespace, gateway)

    deployment = gateway.get_deployment(namespace, spec.service)
    check_foreign_child(REASON_DEPLOYMENT_ALREADY_EXISTS, "Deployment", deployment, uid)
    service = gateway.get_service(namespace, spec.service)
    check_foreign_child(REASON_SERVICE_ALREADY_EXISTS, "Service", service, uid)

    logger.debug("Function %s/%s accepted", crd_namespace, meta["name"])
    return Accepted(namespace=namespace, deployment=deployment, service=service)
