"""Table: binds raw data to columns and compiles calculated columns.

Usage::

    table = Table({"0": {"0": 10, "1": 20}, "1": {"0": 100, "1": 200}})
    table.add_columns([
        Column("Density", ColumnType.DATA),
        Column("Volume", ColumnType.DATA),
        Column.calculated("Total", "#Density# + #Volume#", "Sum"),
    ])
    table.compile()
    table.get_value(0, 2)          # "110"
    str(table.get_value(2, 2))     # "Sum: 330"
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any

from tabcalc._column import Column
from tabcalc._utils import parse_index
from tabcalc.calc._aggregation import Aggregation, AggregationDisplay
from tabcalc.calc._evaluator import ExpressionEvaluator
from tabcalc.calc._graph import DependencyGraph
from tabcalc.calc._protocol import CalcErrorKind, CalcResult, CompileReport

logger = logging.getLogger(__name__)


class ColumnOrdering(str, Enum):
    """Order in which ``compile()`` evaluates calculated columns.

    ``DEPENDENCY`` evaluates referenced calculated columns first and fails
    columns caught in a reference cycle.  ``DECLARATION`` evaluates in
    column-list order with no cycle detection, so a column that references a
    later calculated column reads that column's previous values.
    """

    DEPENDENCY = "dependency"
    DECLARATION = "declaration"


def _normalize_data(
    data: Mapping[str | int, Mapping[str | int, Any]] | None,
) -> dict[int, dict[int, Any]]:
    """Convert stringified column/row keys to ints; raises ValueError on bad keys."""
    if not data:
        return {}
    return {
        parse_index(col): {parse_index(row): value for row, value in rows.items()}
        for col, rows in data.items()
    }


class Table:
    """Ordered columns over raw column-index -> row-index -> value data.

    Columns are bound to raw data by position: the first column added reads
    ``data["0"]``, the second ``data["1"]`` and so on.
    """

    def __init__(
        self,
        data: Mapping[str | int, Mapping[str | int, Any]] | None = None,
        columns: Iterable[Column] = (),
        *,
        ordering: ColumnOrdering | str = ColumnOrdering.DEPENDENCY,
        evaluator: ExpressionEvaluator | None = None,
    ) -> None:
        self._data = _normalize_data(data)
        self._columns: list[Column] = []
        self._name_to_index: dict[str, int] = {}
        self._max_row = 0
        self._has_aggregations = False
        self._ordering = ColumnOrdering(ordering)
        self._evaluator = evaluator if evaluator is not None else ExpressionEvaluator()
        self._last_report: CompileReport | None = None
        self.add_columns(columns)

    # ------------------------------------------------------------------
    # Columns
    # ------------------------------------------------------------------

    @property
    def columns(self) -> tuple[Column, ...]:
        return tuple(self._columns)

    @property
    def column_name_to_index(self) -> dict[str, int]:
        return dict(self._name_to_index)

    @property
    def data(self) -> dict[int, dict[int, Any]]:
        return {col: dict(rows) for col, rows in self._data.items()}

    @property
    def ordering(self) -> ColumnOrdering:
        return self._ordering

    @property
    def max_row(self) -> int:
        return self._max_row

    @property
    def has_aggregations(self) -> bool:
        return self._has_aggregations

    @property
    def last_report(self) -> CompileReport | None:
        return self._last_report

    def _update_name_mapping(self) -> None:
        # Later columns win when names repeat
        self._name_to_index = {column.name: i for i, column in enumerate(self._columns)}

    def add_columns(self, columns: Iterable[Column]) -> None:
        """Append copies of *columns*; positions bind them to raw data slots."""
        self._columns.extend(column.copy() for column in columns)
        self._update_name_mapping()

    def replace_column(self, old_name: str, column: Column) -> None:
        """Swap the column named *old_name* for *column*, keeping its position."""
        index = self.column_index(old_name)
        self._columns[index] = column.copy()
        self._update_name_mapping()

    def column_index(self, name: str) -> int:
        if name not in self._name_to_index:
            raise KeyError(f"Column '{name}' does not exist")
        return self._name_to_index[name]

    # ------------------------------------------------------------------
    # Compile
    # ------------------------------------------------------------------

    def calculation_variables(self, row_index: int, column: Column) -> dict[str, Any]:
        """Sibling values at *row_index* for each name *column* references.

        Names without a matching column are left out; evaluation then
        reports them as unresolved.
        """
        variables: dict[str, Any] = {}
        for name in column.calculation.expected_variables:
            index = self._name_to_index.get(name)
            if index is not None:
                variables[name] = self._columns[index].get_value(row_index)
        return variables

    def _assign_raw_rows(self) -> None:
        self._max_row = 0
        for i, column in enumerate(self._columns):
            rows = self._data.get(i)
            if rows is None:
                continue
            column.set_rows(rows)
            self._max_row = max(self._max_row, max(rows, default=0))

    def _calculation_order(self) -> tuple[list[int], set[int]]:
        """Positions of calculated columns to evaluate, plus blocked positions."""
        calculated = [i for i, column in enumerate(self._columns) if column.is_calculated]
        if self._ordering is ColumnOrdering.DECLARATION:
            return calculated, set()

        graph = DependencyGraph()
        for i in calculated:
            deps = (
                self._name_to_index[name]
                for name in self._columns[i].calculation.expected_variables
                if name in self._name_to_index
            )
            graph.add_node(i, deps)
        order, blocked = graph.evaluation_order()
        if blocked:
            on_cycle = graph.cycles()
            logger.warning(
                "Circular reference between calculated columns %s; also failing dependents %s",
                sorted(self._columns[i].name for i in on_cycle),
                sorted(self._columns[i].name for i in blocked - on_cycle),
            )
        return order, blocked

    def compile(self) -> CompileReport:
        """Recompute row extent, raw row assignment and every calculated column.

        Re-runnable: each call derives all state from the raw data and the
        current columns.  Never raises for bad expressions or data.
        """
        self._assign_raw_rows()
        self._has_aggregations = any(
            column.aggregation is not Aggregation.NONE for column in self._columns
        )

        order, blocked = self._calculation_order()
        calculated_cells = 0
        failed_cells = 0

        for i in sorted(blocked):
            column = self._columns[i]
            for r in range(self._max_row + 1):
                column.fail_row(
                    r,
                    CalcErrorKind.CIRCULAR_REFERENCE,
                    f"{column.name!r} is on or downstream of a reference cycle",
                )
            calculated_cells += self._max_row + 1
            failed_cells += self._max_row + 1

        for i in order:
            column = self._columns[i]
            for r in range(self._max_row + 1):
                variables = self.calculation_variables(r, column)
                result = column.fill_row(r, variables, self._evaluator)
                calculated_cells += 1
                if not result.ok:
                    failed_cells += 1

        self._last_report = CompileReport(
            max_row=self._max_row,
            calculated_cells=calculated_cells,
            failed_cells=failed_cells,
            circular_columns=tuple(self._columns[i].name for i in sorted(blocked)),
            ordering=self._ordering.value,
        )
        if failed_cells:
            logger.debug("Compiled %d calculated cells, %d failed", calculated_cells, failed_cells)
        return self._last_report

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def get_value(self, row_index: int, column_index: int) -> str | AggregationDisplay:
        """Cell text, or the column's aggregation for the row past ``max_row``."""
        column = self._columns[column_index]
        if row_index > self._max_row:
            return column.get_aggregation()
        return column.get_value(row_index)

    def get_result(self, row_index: int, column_index: int) -> CalcResult:
        return self._columns[column_index].get_result(row_index)

    def get_aggregation(self, column_index: int) -> AggregationDisplay:
        return self._columns[column_index].get_aggregation()

    def get_rows_to_render(self) -> int:
        """Row count to display, including the aggregation row when present."""
        if self._has_aggregations:
            return self._max_row + 2
        return self._max_row + 1

    def __repr__(self) -> str:
        names = [column.name for column in self._columns]
        return f"<Table columns={names} max_row={self._max_row}>"
