"""One-shot installation of the CRD and of the controller's own manifests."""

from __future__ import annotations

import logging
import time
from typing import Any

from kubernetes import client, dynamic
from kubernetes.client.exceptions import ApiException

from .builders.manifests import build_crd
from .constants import CRD_NAME
from .utils.errors import sanitize_exception

logger = logging.getLogger(__name__)


class InstallError(Exception):
    """An administrative command could not complete."""


def crd_is_established(crd: Any) -> bool:
    conditions = (crd.status.conditions if crd.status else None) or []
    return any(c.type == "Established" and c.status == "True" for c in conditions)


def install_crd(timeout: float = 60.0, poll_interval: float = 1.0) -> None:
    """Create the CRD and wait until the API server reports it Established.

    Raises:
        InstallError: If creation fails or the CRD is not established in time
    """
    api = client.ApiextensionsV1Api()
    try:
        api.create_custom_resource_definition(build_crd())
        logger.info("Created CRD %s", CRD_NAME)
    except ApiException as e:
        if e.status != 409:
            raise InstallError(f"Failed to create CRD {CRD_NAME}: {sanitize_exception(e)}") from e
        logger.info("CRD %s already exists", CRD_NAME)

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if crd_is_established(api.read_custom_resource_definition(CRD_NAME)):
            logger.info("CRD %s is established", CRD_NAME)
            return
        time.sleep(poll_interval)
    raise InstallError(f"CRD {CRD_NAME} was not established within {timeout:.0f}s")


def uninstall_crd() -> None:
    """Delete the CRD; every Function goes with it."""
    api = client.ApiextensionsV1Api()
    try:
        api.delete_custom_resource_definition(CRD_NAME)
        logger.info("Deleted CRD %s", CRD_NAME)
    except ApiException as e:
        if e.status == 404:
            logger.info("CRD %s not found", CRD_NAME)
            return
        raise InstallError(f"Failed to delete CRD {CRD_NAME}: {sanitize_exception(e)}") from e


def _describe(manifest: dict[str, Any]) -> str:
    meta = manifest.get("metadata", {})
    if meta.get("namespace"):
        return f"{manifest['kind']} {meta['namespace']}/{meta['name']}"
    return f"{manifest['kind']} {meta['name']}"


def install_manifests(manifests: list[dict[str, Any]], dyn: dynamic.DynamicClient | None = None) -> list[str]:
    """Create each manifest, continuing past individual failures.

    Returns:
        Descriptions of the manifests that failed
    """
    dyn = dyn or dynamic.DynamicClient(client.ApiClient())
    failed: list[str] = []
    for manifest in manifests:
        what = _describe(manifest)
        resource = dyn.resources.get(api_version=manifest["apiVersion"], kind=manifest["kind"])
        try:
            resource.create(body=manifest, namespace=manifest["metadata"].get("namespace"))
            logger.info("Created %s", what)
        except ApiException as e:
            if e.status == 409:
                logger.info("%s already exists", what)
                continue
            logger.error("Failed to create %s: %s", what, sanitize_exception(e))
            failed.append(what)
    return failed


def uninstall_manifests(manifests: list[dict[str, Any]], dyn: dynamic.DynamicClient | None = None) -> list[str]:
    """Delete each manifest in reverse order, continuing past individual failures.

    Returns:
        Descriptions of the manifests that failed
    """
    dyn = dyn or dynamic.DynamicClient(client.ApiClient())
    failed: list[str] = []
    for manifest in reversed(manifests):
        what = _describe(manifest)
        resource = dyn.resources.get(api_version=manifest["apiVersion"], kind=manifest["kind"])
        try:
            resource.delete(name=manifest["metadata"]["name"], namespace=manifest["metadata"].get("namespace"))
            logger.info("Deleted %s", what)
        except ApiException as e:
            if e.status == 404:
                logger.info("%s not found", what)
                continue
            logger.error("Failed to delete %s: %s", what, sanitize_exception(e))
            failed.append(what)
    return failed
