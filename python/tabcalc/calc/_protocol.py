"""MathEngine protocol, typed calculation results and engine exceptions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from tabcalc._utils import format_value

ERROR_SENTINEL = "ERROR"


class CalcErrorKind(str, Enum):
    """Why a cell or aggregation could not be produced."""

    UNRESOLVED_VARIABLE = "unresolved_variable"
    EVALUATION_FAILED = "evaluation_failed"
    EMPTY_RESULT = "empty_result"
    CIRCULAR_REFERENCE = "circular_reference"
    AGGREGATION_FAILED = "aggregation_failed"


class ExpressionError(ValueError):
    """Raised by the math evaluator for malformed or unevaluable expressions."""


class UnresolvedVariableError(ExpressionError):
    """A ``#name#`` reference had no usable value in the variable map."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unresolved variable: {name!r}")
        self.name = name


class UnsupportedFunctionError(ExpressionError):
    """The builtin registry has no implementation for a function name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unsupported function: {name}")
        self.name = name


@dataclass(frozen=True)
class CalcResult:
    """Outcome of evaluating one expression.

    ``value`` is the raw evaluator result on success.  On failure ``error``
    names the kind and ``detail`` carries the diagnostic message.
    """

    value: Any = None
    error: CalcErrorKind | None = None
    detail: str = ""

    @classmethod
    def success(cls, value: Any) -> CalcResult:
        return cls(value=value)

    @classmethod
    def failure(cls, error: CalcErrorKind, detail: str = "") -> CalcResult:
        return cls(error=error, detail=detail)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def display(self) -> str:
        """String shown in a cell: the formatted value, or ``"ERROR"``."""
        if self.error is not None:
            return ERROR_SENTINEL
        return format_value(self.value)


@dataclass(frozen=True)
class CompileReport:
    """Summary of a single ``Table.compile()`` pass."""

    max_row: int
    calculated_cells: int = 0
    failed_cells: int = 0
    circular_columns: tuple[str, ...] = ()
    ordering: str = "dependency"

    @property
    def failure_ratio(self) -> float:
        if self.calculated_cells == 0:
            return 0.0
        return self.failed_cells / self.calculated_cells


@runtime_checkable
class MathEngine(Protocol):
    """Protocol for math-expression evaluators used by calculated columns."""

    def evaluate(self, expression: str) -> Any:
        """Evaluate a fully substituted arithmetic expression.

        Returns the computed value, or None when the expression yields
        nothing.  May raise on malformed input.
        """
        ...
