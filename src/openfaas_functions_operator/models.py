"""Models for Function resources."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from .constants import DEFAULT_SECRETS_MOUNT_PATH


@dataclass
class FunctionResources:
    """CPU and memory quantity strings, as written by the user."""

    cpu: str | None = None
    memory: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> FunctionResources | None:
        if data is None:
            return None
        return cls(cpu=data.get("cpu"), memory=data.get("memory"))

    def to_dict(self) -> dict[str, str]:
        return {k: v for k, v in (("cpu", self.cpu), ("memory", self.memory)) if v is not None}


@dataclass
class FunctionSpec:
    """The spec of an OpenFaaSFunction."""

    service: str
    image: str
    namespace: str | None = None
    env_process: str | None = None
    env_vars: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    constraints: list[str] = field(default_factory=list)
    secrets: list[str] = field(default_factory=list)
    secrets_mount_path: str | None = None
    limits: FunctionResources | None = None
    requests: FunctionResources | None = None
    read_only_root_filesystem: bool = False

    @classmethod
    def from_dict(cls, spec: dict[str, Any]) -> FunctionSpec:
        """Create a FunctionSpec from the camelCase CRD spec.

        Raises:
            ValueError: If service or image is missing
        """
        service = spec.get("service")
        image = spec.get("image")
        if not service:
            raise ValueError("spec.service is required")
        if not image:
            raise ValueError("spec.image is required")

        return cls(
            service=service,
            image=image,
            namespace=spec.get("namespace") or None,
            env_process=spec.get("envProcess"),
            env_vars=dict(spec.get("envVars") or {}),
            labels=dict(spec.get("labels") or {}),
            annotations=dict(spec.get("annotations") or {}),
            constraints=list(spec.get("constraints") or []),
            secrets=list(spec.get("secrets") or []),
            secrets_mount_path=spec.get("secretsMountPath") or None,
            limits=FunctionResources.from_dict(spec.get("limits")),
            requests=FunctionResources.from_dict(spec.get("requests")),
            read_only_root_filesystem=bool(spec.get("readOnlyRootFilesystem") or False),
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the camelCase form, leaving out unset fields."""
        data: dict[str, Any] = {"service": self.service, "image": self.image}
        if self.namespace is not None:
            data["namespace"] = self.namespace
        if self.env_process is not None:
            data["envProcess"] = self.env_process
        if self.env_vars:
            data["envVars"] = dict(self.env_vars)
        if self.labels:
            data["labels"] = dict(self.labels)
        if self.annotations:
            data["annotations"] = dict(self.annotations)
        if self.constraints:
            data["constraints"] = list(self.constraints)
        if self.secrets:
            data["secrets"] = list(self.secrets)
        if self.secrets_mount_path is not None:
            data["secretsMountPath"] = self.secrets_mount_path
        if self.limits is not None:
            data["limits"] = self.limits.to_dict()
        if self.requests is not None:
            data["requests"] = self.requests.to_dict()
        if self.read_only_root_filesystem:
            data["readOnlyRootFilesystem"] = True
        return data

    def canonical_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))

    def target_namespace(self, default: str) -> str:
        return self.namespace or default

    def mount_path(self, default: str = DEFAULT_SECRETS_MOUNT_PATH) -> str:
        return self.secrets_mount_path or default

    def unique_secrets(self) -> list[str]:
        """Secret names without duplicates, in declaration order."""
        return list(dict.fromkeys(self.secrets))


def make_key(namespace: str, name: str) -> str:
    """Work queue key of a Function."""
    return f"{namespace}/{name}"


def split_key(key: str) -> tuple[str, str]:
    namespace, _, name = key.partition("/")
    if not name:
        raise ValueError(f"Invalid key: {key!r}")
    return namespace, name
