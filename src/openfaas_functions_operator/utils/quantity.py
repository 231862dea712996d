"""Parsing of Kubernetes CPU and memory quantity strings."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

from kubernetes.utils import parse_quantity

from ..constants import REASON_CPU_QUANTITY, REASON_MEMORY_QUANTITY
from .errors import QuantityError


class Dimension(str, Enum):
    CPU = "cpu"
    MEMORY = "memory"

    @property
    def reason(self) -> str:
        """Condition reason reported when a quantity of this dimension is invalid."""
        return REASON_CPU_QUANTITY if self is Dimension.CPU else REASON_MEMORY_QUANTITY


@dataclass(frozen=True)
class Quantity:
    """A validated quantity.

    ``raw`` is what goes into the child resource, so the descriptor matches
    what the user wrote; ``value`` is the normalized amount (cores or bytes).
    """

    dimension: Dimension
    raw: str
    value: Decimal


def parse(raw: Any, dimension: Dimension) -> Quantity:
    """Parse a quantity string.

    Args:
        raw: Quantity as written in the Function spec (e.g. "100m", "64Mi")
        dimension: Which resource the quantity is for

    Returns:
        Parsed quantity

    Raises:
        QuantityError: If the string is not a valid quantity or is negative
    """
    if not isinstance(raw, str) or not raw.strip():
        raise QuantityError(dimension.reason, dimension.value, str(raw), "expected a non-empty string")

    text = raw.strip()
    try:
        value = parse_quantity(text)
    except (ValueError, ArithmeticError) as e:
        raise QuantityError(dimension.reason, dimension.value, text, str(e)) from e

    if not value.is_finite():
        raise QuantityError(dimension.reason, dimension.value, text, "quantity must be finite")
    if value < 0:
        raise QuantityError(dimension.reason, dimension.value, text, "quantity must not be negative")

    return Quantity(dimension=dimension, raw=text, value=value)


def parse_resources(resources: dict[str, Any] | None) -> dict[str, Quantity]:
    """Parse a ``{cpu, memory}`` block from the Function spec.

    CPU is parsed first, so a block with two bad values reports CPUQuantity.

    Returns:
        Mapping of resource name to parsed quantity, omitting unset entries
    """
    parsed: dict[str, Quantity] = {}
    if not resources:
        return parsed
    for dimension in (Dimension.CPU, Dimension.MEMORY):
        raw = resources.get(dimension.value)
        if raw is not None:
            parsed[dimension.value] = parse(raw, dimension)
    return parsed
