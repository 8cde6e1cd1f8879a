"""Identity, calculation and materialised rows of one table column."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from tabcalc._utils import format_value, parse_index
from tabcalc.calc._aggregation import Aggregation, AggregationDisplay, aggregate
from tabcalc.calc._evaluator import ExpressionEvaluator, evaluate_result
from tabcalc.calc._parser import extract_variables
from tabcalc.calc._protocol import CalcErrorKind, CalcResult


class ColumnType(str, Enum):
    TIME = "time"
    DATA = "data"
    CALCULATED = "calculated"
    UNSET = ""


@dataclass(frozen=True)
class Calculation:
    """An expression and the column names it references.

    ``expected_variables`` is always derived from ``expression``.
    """

    expression: str = ""
    expected_variables: frozenset[str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "expected_variables", extract_variables(self.expression))

    def evaluate(
        self,
        variables: Mapping[str, Any],
        evaluator: ExpressionEvaluator | None = None,
    ) -> CalcResult:
        if evaluator is None:
            return evaluate_result(self.expression, variables)
        return evaluator.evaluate(self.expression, variables)


def _default_id(name: str) -> str:
    return name.replace(" ", "_")


class Column:
    """A table column.

    Identity, calculation and aggregation are fixed at construction; the
    ``with_*``/``edit`` builders return new columns.  Row values are the
    column's materialised state and are (re)written by ``Table.compile()``.
    """

    __slots__ = ("_name", "_type", "_id", "_calculation", "_aggregation", "_rows", "_errors")

    def __init__(
        self,
        name: str,
        column_type: ColumnType | str = ColumnType.UNSET,
        column_id: str | None = None,
        calculation: Calculation | None = None,
        aggregation: Aggregation | str | None = Aggregation.NONE,
    ) -> None:
        self._name = name
        self._type = ColumnType(column_type)
        self._id = column_id if column_id is not None else _default_id(name)
        self._calculation = calculation if calculation is not None else Calculation()
        self._aggregation = Aggregation.parse(aggregation)
        self._rows: dict[int, Any] = {}
        self._errors: dict[int, CalcResult] = {}

    @classmethod
    def calculated(
        cls,
        name: str,
        expression: str,
        aggregation: Aggregation | str | None = Aggregation.NONE,
    ) -> Column:
        """New calculated column; its id is the name with spaces as underscores."""
        return cls(
            name,
            ColumnType.CALCULATED,
            calculation=Calculation(expression),
            aggregation=aggregation,
        )

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def column_type(self) -> ColumnType:
        return self._type

    @property
    def column_id(self) -> str:
        return self._id

    @property
    def calculation(self) -> Calculation:
        return self._calculation

    @property
    def aggregation(self) -> Aggregation:
        return self._aggregation

    @property
    def is_calculated(self) -> bool:
        return self._type is ColumnType.CALCULATED

    # ------------------------------------------------------------------
    # Builders (return new columns with empty rows)
    # ------------------------------------------------------------------

    def with_calculation(self, calculation: Calculation | str) -> Column:
        if isinstance(calculation, str):
            calculation = Calculation(calculation)
        return Column(self._name, self._type, self._id, calculation, self._aggregation)

    def with_aggregation(self, aggregation: Aggregation | str | None) -> Column:
        return Column(self._name, self._type, self._id, self._calculation, aggregation)

    def edit(
        self,
        name: str | None = None,
        expression: str | None = None,
        aggregation: Aggregation | str | None = None,
    ) -> Column:
        """Replacement column for an edit: keeps the type, re-derives the id.

        Arguments left as None keep the current value.
        """
        new_name = self._name if name is None else name
        calculation = self._calculation if expression is None else Calculation(expression)
        new_aggregation = self._aggregation if aggregation is None else aggregation
        return Column(new_name, self._type, _default_id(new_name), calculation, new_aggregation)

    def copy(self) -> Column:
        """Same identity and calculation, no materialised rows."""
        return Column(self._name, self._type, self._id, self._calculation, self._aggregation)

    # ------------------------------------------------------------------
    # Materialised rows
    # ------------------------------------------------------------------

    @property
    def rows(self) -> dict[int, Any]:
        return dict(self._rows)

    def set_rows(self, rows: Mapping[str | int, Any]) -> None:
        """Replace all row values (non-calculated columns fed from raw data)."""
        self._rows = {parse_index(k): v for k, v in rows.items()}
        self._errors = {}

    def fill_row(
        self,
        row_index: int,
        variables: Mapping[str, Any],
        evaluator: ExpressionEvaluator | None = None,
    ) -> CalcResult:
        """Evaluate this column's expression for one row and store the result."""
        result = self._calculation.evaluate(variables, evaluator)
        self.store_result(row_index, result)
        return result

    def fail_row(self, row_index: int, error: CalcErrorKind, detail: str = "") -> CalcResult:
        result = CalcResult.failure(error, detail)
        self.store_result(row_index, result)
        return result

    def store_result(self, row_index: int, result: CalcResult) -> None:
        self._rows[row_index] = result.display
        if result.ok:
            self._errors.pop(row_index, None)
        else:
            self._errors[row_index] = result

    def get_value(self, row_index: int) -> str:
        """Stored value as display text, or ``""`` if the row is unset."""
        if row_index not in self._rows:
            return ""
        return format_value(self._rows[row_index])

    def get_result(self, row_index: int) -> CalcResult:
        """Typed view of a row: the stored value or the failure that produced it."""
        if row_index in self._errors:
            return self._errors[row_index]
        if row_index not in self._rows:
            return CalcResult.failure(CalcErrorKind.EMPTY_RESULT, f"Row {row_index} is unset")
        return CalcResult.success(self._rows[row_index])

    def get_aggregation(self) -> AggregationDisplay:
        return aggregate(self._aggregation, self._rows)

    def __repr__(self) -> str:
        return (
            f"<Column {self._name!r} type={self._type.value or 'unset'} "
            f"aggregation={self._aggregation.value} rows={len(self._rows)}>"
        )
