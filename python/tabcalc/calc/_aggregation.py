"""Column aggregations: Sum, Average, Min and Max over materialised rows."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

import numpy as np

from tabcalc._utils import format_value
from tabcalc.calc._protocol import ERROR_SENTINEL, CalcErrorKind

logger = logging.getLogger(__name__)


class Aggregation(str, Enum):
    """Summary operation selectable for a column."""

    NONE = "None"
    MAX = "Max"
    AVERAGE = "Average"
    MIN = "Min"
    SUM = "Sum"

    @classmethod
    def parse(cls, value: Aggregation | str | None) -> Aggregation:
        """Resolve a selector name (case-insensitive) to an Aggregation.

        ``None`` and ``""`` mean no aggregation.
        """
        if isinstance(value, Aggregation):
            return value
        if value is None or value == "":
            return cls.NONE
        for member in cls:
            if member.value.lower() == str(value).strip().lower():
                return member
        raise ValueError(f"Unknown aggregation: {value!r}")


@dataclass(frozen=True)
class AggregationDisplay:
    """An aggregation result paired with its operation, e.g. ``Sum: 42``.

    Renders as an empty string for ``Aggregation.NONE``.
    """

    operation: Aggregation
    value: str = ""
    error: CalcErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def __str__(self) -> str:
        if self.operation is Aggregation.NONE:
            return ""
        return f"{self.operation.value}: {self.value}"


def _to_number(value: Any) -> float:
    """Coerce a row value to float; raises ValueError/TypeError if not numeric."""
    if isinstance(value, str):
        return float(value.strip())
    return float(value)


def _reduce(operation: Aggregation, values: np.ndarray) -> float:
    if operation is Aggregation.SUM:
        return float(np.sum(values))
    # Empty input: the division by zero / unbounded extreme becomes NaN
    if values.size == 0:
        return float("nan")
    if operation is Aggregation.AVERAGE:
        return float(np.sum(values) / values.size)
    if operation is Aggregation.MAX:
        return float(np.max(values))
    if operation is Aggregation.MIN:
        return float(np.min(values))
    raise ValueError(f"Cannot reduce with {operation!r}")


def aggregate(
    operation: Aggregation | str | None,
    rows: Mapping[Any, Any],
) -> AggregationDisplay:
    """Reduce a column's row values to a single display value.

    Never raises for bad row data: a non-numeric value makes the result
    ``"ERROR"``.  Empty input yields ``0`` for Sum and ``NaN`` otherwise.
    """
    operation = Aggregation.parse(operation)
    if operation is Aggregation.NONE:
        return AggregationDisplay(operation)
    try:
        values = np.array([_to_number(v) for v in rows.values()], dtype=float)
        result = _reduce(operation, values)
    except (ValueError, TypeError, ArithmeticError) as e:
        logger.debug("Cannot aggregate %s: %s", operation.value, e)
        return AggregationDisplay(operation, ERROR_SENTINEL, CalcErrorKind.AGGREGATION_FAILED)
    return AggregationDisplay(operation, format_value(result))
