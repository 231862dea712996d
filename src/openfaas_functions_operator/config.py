"""Runtime configuration for the OpenFaaS Functions Operator."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Mapping

from .constants import DEFAULT_FUNCTIONS_NAMESPACE, DEFAULT_SECRETS_MOUNT_PATH

FUNCTIONS_NAMESPACE_ENV_VAR = "OPENFAAS_FUNCTIONS_NAMESPACE"
UPDATE_STRATEGY_ENV_VAR = "OPFOC_UPDATE_STRATEGY"


class UpdateStrategy(str, Enum):
    """How drift on child resources is handled."""

    ONE_WAY = "one-way"
    TWO_WAY = "two-way"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: str | UpdateStrategy) -> UpdateStrategy:
        if isinstance(value, UpdateStrategy):
            return value
        normalized = value.strip().lower().replace("_", "-")
        for strategy in cls:
            if strategy.value == normalized:
                return strategy
        allowed = ", ".join(s.value for s in cls)
        raise ValueError(f"Unknown update strategy '{value}' (expected one of: {allowed})")


def _parse_bool(value: str) -> bool:
    return value.strip().lower() not in ("false", "0", "no", "off", "")


@dataclass(frozen=True)
class OperatorConfig:
    """Settings consumed by the reconciliation core."""

    functions_namespace: str = DEFAULT_FUNCTIONS_NAMESPACE
    update_strategy: UpdateStrategy = UpdateStrategy.ONE_WAY
    restrict_to_functions_namespace: bool = True
    secrets_mount_path: str = DEFAULT_SECRETS_MOUNT_PATH
    workers: int = 4
    resync_interval_seconds: float = 300.0
    min_retry_delay: float = 1.0
    max_retry_delay: float = 60.0
    request_timeout_seconds: float = 30.0
    shutdown_grace_seconds: float = 20.0
    metrics_port: int = 8080

    def __post_init__(self) -> None:
        if not self.functions_namespace:
            raise ValueError("functions namespace must not be empty")
        if self.workers < 1:
            raise ValueError(f"workers must be positive, got {self.workers}")
        if self.min_retry_delay <= 0 or self.max_retry_delay < self.min_retry_delay:
            raise ValueError(
                f"invalid retry delays: min={self.min_retry_delay} max={self.max_retry_delay}"
            )
        if self.resync_interval_seconds <= 0:
            raise ValueError("resync interval must be positive")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> OperatorConfig:
        """Build configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)

        Returns:
            Parsed configuration

        Raises:
            ValueError: If a value cannot be parsed
        """
        env = os.environ if environ is None else environ
        return cls(
            functions_namespace=env.get(FUNCTIONS_NAMESPACE_ENV_VAR, DEFAULT_FUNCTIONS_NAMESPACE),
            update_strategy=UpdateStrategy.parse(env.get(UPDATE_STRATEGY_ENV_VAR, "one-way")),
            restrict_to_functions_namespace=_parse_bool(env.get("OPFOC_RESTRICT_NAMESPACE", "true")),
            secrets_mount_path=env.get("OPFOC_SECRETS_MOUNT_PATH", DEFAULT_SECRETS_MOUNT_PATH),
            workers=int(env.get("OPFOC_WORKERS", "4")),
            resync_interval_seconds=float(env.get("OPFOC_RESYNC_INTERVAL_SECONDS", "300")),
            min_retry_delay=float(env.get("OPFOC_MIN_RETRY_DELAY_SECONDS", "1")),
            max_retry_delay=float(env.get("OPFOC_MAX_RETRY_DELAY_SECONDS", "60")),
            request_timeout_seconds=float(env.get("K8S_REQUEST_TIMEOUT_SECONDS", "30")),
            shutdown_grace_seconds=float(env.get("OPFOC_SHUTDOWN_GRACE_SECONDS", "20")),
            metrics_port=int(env.get("METRICS_PORT", "8080")),
        )

    def with_overrides(self, **overrides: Any) -> OperatorConfig:
        """Return a copy with the non-None overrides applied."""
        values = {key: value for key, value in overrides.items() if value is not None}
        if "update_strategy" in values:
            values["update_strategy"] = UpdateStrategy.parse(values["update_strategy"])
        return replace(self, **values)
