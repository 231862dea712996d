"""kopf wiring: watches feed the work queue, the Controller does the reconciling."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import kopf

from . import health
from . import logging as structured_logging
from .builders.metadata import controller_owner
from .config import OperatorConfig
from .constants import API_GROUP_VERSION, CONTROLLER_NAME, KIND_FUNCTION, LABEL_FUNCTION
from .gateway import ClusterGateway, load_kube_config
from .handlers.function import FunctionReconciler
from .models import make_key
from .tracing import initialize_tracing
from .workqueue import Controller

logger = logging.getLogger(__name__)


def build_controller(config: OperatorConfig, gateway: ClusterGateway) -> Controller:
    """Wire a reconciler and its work queue together."""
    reconciler = FunctionReconciler(gateway, config)
    scope = config.functions_namespace if config.restrict_to_functions_namespace else None

    def list_keys() -> list[str]:
        return [
            make_key(item["metadata"]["namespace"], item["metadata"]["name"])
            for item in gateway.list_functions(scope)
        ]

    return Controller(
        reconciler.reconcile,
        list_keys,
        workers=config.workers,
        resync_interval=config.resync_interval_seconds,
        min_retry_delay=config.min_retry_delay,
        max_retry_delay=config.max_retry_delay,
    )


def owner_key(body: dict[str, Any]) -> str | None:
    """Key of the Function controlling a child, if it is one."""
    owner = controller_owner(body)
    if owner is None or owner.get("kind") != KIND_FUNCTION:
        return None
    return make_key(body["metadata"]["namespace"], owner["name"])


@kopf.on.startup()
async def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, **_: Any) -> None:
    """Configure the operator and start the worker pool."""
    structured_logging.setup_structured_logging()

    config: OperatorConfig = memo.get("config") or OperatorConfig.from_env()
    memo.config = config

    # Only kopf.event() calls are posted; kopf's own log lines stay in the log
    settings.posting.level = logging.WARNING
    settings.networking.request_timeout = config.request_timeout_seconds
    settings.execution.max_workers = config.workers

    load_kube_config(context=memo.get("context"), config_file=memo.get("config_file"))
    initialize_tracing(CONTROLLER_NAME)

    gateway = ClusterGateway(request_timeout=config.request_timeout_seconds)
    controller = build_controller(config, gateway)
    memo.gateway = gateway
    memo.controller = controller
    memo.server = health.start_http_server(config.metrics_port, is_ready=lambda: controller.running)

    await controller.start()
    logger.info(
        "Operator started: namespace=%s strategy=%s restrict=%s",
        config.functions_namespace,
        config.update_strategy,
        config.restrict_to_functions_namespace,
    )


@kopf.on.cleanup()
async def cleanup(memo: kopf.Memo, **_: Any) -> None:
    """Drain in-flight reconciliations and stop the HTTP server."""
    controller: Controller | None = memo.get("controller")
    if controller is not None:
        await controller.stop(memo.config.shutdown_grace_seconds)
    server = memo.get("server")
    if server is not None:
        server.shutdown()


@kopf.on.event(API_GROUP_VERSION, KIND_FUNCTION)
async def function_event(namespace: str, name: str, memo: kopf.Memo, **_: Any) -> None:
    """Any change to a Function enqueues it."""
    memo.controller.enqueue(make_key(namespace, name))


@kopf.on.event("apps", "v1", "deployments", labels={LABEL_FUNCTION: kopf.PRESENT})
@kopf.on.event("", "v1", "services", labels={LABEL_FUNCTION: kopf.PRESENT})
async def child_event(body: kopf.Body, memo: kopf.Memo, **_: Any) -> None:
    """A change to a child enqueues the Function controlling it."""
    key = owner_key(body)
    if key is not None:
        memo.controller.enqueue(key)


def keys_mounting_secret(functions: list[dict[str, Any]], secret_name: str) -> list[str]:
    """Keys of the Functions whose spec lists the named secret."""
    return [
        make_key(item["metadata"]["namespace"], item["metadata"]["name"])
        for item in functions
        if secret_name in ((item.get("spec") or {}).get("secrets") or [])
    ]


async def _functions_in(memo: kopf.Memo, namespace: str) -> list[dict[str, Any]]:
    config: OperatorConfig = memo.config
    if config.restrict_to_functions_namespace and namespace != config.functions_namespace:
        return []
    return await asyncio.to_thread(memo.gateway.list_functions, namespace)


@kopf.on.event("", "v1", "secrets")
async def secret_event(event: kopf.RawEvent, name: str, namespace: str, memo: kopf.Memo, **_: Any) -> None:
    """A secret being created or deleted re-validates the Functions mounting it."""
    # objects from the initial listing carry no type; the resync covers them
    if event.get("type") not in ("ADDED", "DELETED"):
        return
    for key in keys_mounting_secret(await _functions_in(memo, namespace), name):
        memo.controller.enqueue(key)


@kopf.on.event("", "v1", "namespaces")
async def namespace_event(event: kopf.RawEvent, name: str, memo: kopf.Memo, **_: Any) -> None:
    """A namespace being created or deleted re-validates the Functions in it."""
    event_type = event.get("type")
    if event_type not in ("ADDED", "DELETED"):
        return
    if event_type == "DELETED":
        memo.gateway.forget_namespace(name)
    for item in await _functions_in(memo, name):
        memo.controller.enqueue(make_key(item["metadata"]["namespace"], item["metadata"]["name"]))


def run_operator(config: OperatorConfig, context: str | None = None, config_file: str | None = None) -> None:
    """Run the operator until interrupted."""
    memo = kopf.Memo(config=config, context=context, config_file=config_file)
    if config.restrict_to_functions_namespace:
        kopf.run(standalone=True, memo=memo, namespaces=[config.functions_namespace])
    else:
        kopf.run(standalone=True, memo=memo, clusterwide=True)
