"""Tests for tabcalc Table compilation and cell access."""

from __future__ import annotations

import logging

import pytest

from tabcalc import (
    AggregationDisplay,
    CalcErrorKind,
    Column,
    ColumnOrdering,
    ColumnType,
    Table,
    default_columns,
    default_table,
)
from tabcalc.calc import ExpressionEvaluator, MathEvaluator

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

DENSITY_VOLUME = {"0": {"0": 10, "1": 20}, "1": {"0": 100, "1": 200}}


def _density_volume_table(*extra: Column, **kwargs) -> Table:
    table = Table(DENSITY_VOLUME, **kwargs)
    table.add_columns([
        Column("Density", ColumnType.DATA),
        Column("Volume", ColumnType.DATA),
        *extra,
    ])
    return table


def _all_values(table: Table) -> list[list[str]]:
    return [
        [str(table.get_value(r, c)) for c in range(len(table.columns))]
        for r in range(table.get_rows_to_render())
    ]


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_data_keys_normalized(self) -> None:
        table = Table({"0": {"0": 1, "2": 3}, 1: {4: 5}})
        assert table.data == {0: {0: 1, 2: 3}, 1: {4: 5}}

    def test_invalid_row_key(self) -> None:
        with pytest.raises(ValueError, match="Invalid index"):
            Table({"0": {"a": 1}})

    def test_negative_column_key(self) -> None:
        with pytest.raises(ValueError):
            Table({-1: {"0": 1}})

    def test_empty_table(self) -> None:
        table = Table()
        report = table.compile()
        assert report.max_row == 0
        assert table.get_rows_to_render() == 1

    def test_columns_are_copied(self) -> None:
        col = Column("Density", ColumnType.DATA)
        table = Table(DENSITY_VOLUME, [col])
        table.compile()
        assert table.columns[0] is not col
        assert col.rows == {}
        assert table.columns[0].get_value(1) == "20"

    def test_same_column_in_two_tables(self) -> None:
        col = Column("Density", ColumnType.DATA)
        first = Table({"0": {"0": 1}}, [col])
        second = Table({"0": {"0": 2}}, [col])
        first.compile()
        second.compile()
        assert first.get_value(0, 0) == "1"
        assert second.get_value(0, 0) == "2"

    def test_name_mapping(self) -> None:
        table = _density_volume_table()
        assert table.column_name_to_index == {"Density": 0, "Volume": 1}
        assert table.column_index("Volume") == 1

    def test_unknown_column_name(self) -> None:
        with pytest.raises(KeyError):
            _density_volume_table().column_index("Mass")


# ---------------------------------------------------------------------------
# Compile
# ---------------------------------------------------------------------------


class TestCompile:
    def test_end_to_end(self) -> None:
        table = _density_volume_table(Column.calculated("Total", "#Density# + #Volume#"))
        table.compile()
        assert table.get_value(0, 2) == "110"
        assert table.get_value(1, 2) == "220"

    def test_names_with_spaces(self) -> None:
        table = default_table({"1": {"0": 2}, "2": {"0": 50}})
        table.add_columns([Column.calculated("Cells", "#Cell Density# * (#Volume# + 10)")])
        table.compile()
        assert table.get_value(0, 3) == "120"

    def test_raw_values_read_back(self) -> None:
        table = _density_volume_table()
        table.compile()
        assert table.get_value(0, 0) == "10"
        assert table.get_value(1, 1) == "200"

    def test_idempotent(self) -> None:
        table = _density_volume_table(
            Column.calculated("Total", "#Density# + #Volume#", "Sum"),
            Column.calculated("Double", "#Total# * 2", "Max"),
        )
        table.compile()
        first = _all_values(table)
        table.compile()
        assert _all_values(table) == first

    def test_unknown_reference_is_error(self) -> None:
        table = _density_volume_table(Column.calculated("Bad", "#Mass# * 2"))
        table.compile()
        assert table.get_value(0, 2) == "ERROR"
        assert table.get_result(0, 2).error is CalcErrorKind.UNRESOLVED_VARIABLE

    def test_malformed_expression_does_not_stop_compile(self) -> None:
        table = _density_volume_table(
            Column.calculated("Bad", "#Density# +* )"),
            Column.calculated("Good", "#Density# * 2"),
        )
        report = table.compile()
        assert table.get_value(0, 2) == "ERROR"
        assert table.get_result(0, 2).error is CalcErrorKind.EVALUATION_FAILED
        assert table.get_value(1, 3) == "40"
        assert report.calculated_cells == 4
        assert report.failed_cells == 2

    def test_sparse_rows(self) -> None:
        table = Table({"0": {"0": 1, "1": 2, "5": 3}})
        table.add_columns([
            Column("A", ColumnType.DATA),
            Column.calculated("B", "#A# * 10"),
        ])
        table.compile()
        assert table.max_row == 5
        assert table.get_value(5, 1) == "30"
        assert table.get_value(3, 0) == ""
        assert table.get_value(3, 1) == "ERROR"

    def test_row_extent_across_columns(self) -> None:
        table = Table({"0": {"0": 1}, "1": {"0": 1, "1": 2, "5": 3}})
        table.add_columns([Column("A", ColumnType.DATA), Column("B", ColumnType.DATA)])
        table.compile()
        assert table.max_row == 5

    def test_calculated_column_without_references(self) -> None:
        table = _density_volume_table(Column.calculated("Const", "2 * 21"))
        table.compile()
        assert table.get_value(0, 2) == "42"
        assert table.get_value(1, 2) == "42"

    def test_power_overflow_does_not_stop_compile(self) -> None:
        table = Table({"0": {"0": 10, "1": 2}})
        table.add_columns([
            Column("A", ColumnType.DATA),
            Column.calculated("B", "#A# ^ 5000", "Max"),
            Column.calculated("C", "#B# * 2"),
        ])
        report = table.compile()
        assert table.get_value(0, 1) == "Infinity"
        assert table.get_value(0, 2) == "Infinity"
        assert str(table.get_value(2, 1)) == "Max: Infinity"
        assert report.failed_cells == 0

    def test_power_tower_cell(self) -> None:
        table = _density_volume_table(Column.calculated("Huge", "9 ^ 9 ^ 9"))
        table.compile()
        assert table.get_value(0, 2) == "Infinity"

    def test_columns_beyond_raw_data(self) -> None:
        table = Table({"0": {"0": 1}})
        table.add_columns([Column("A", ColumnType.DATA), Column("Empty", ColumnType.DATA)])
        table.compile()
        assert table.get_value(0, 1) == ""

    def test_custom_evaluator(self) -> None:
        engine = MathEvaluator(use_formulas=False)
        engine.functions.register("TRIPLE", lambda args: args[0] * 3)
        table = _density_volume_table(
            Column.calculated("T", "triple(#Density#)"),
            evaluator=ExpressionEvaluator(engine),
        )
        table.compile()
        assert table.get_value(1, 2) == "60"

    def test_report(self) -> None:
        table = _density_volume_table(Column.calculated("Total", "#Density# + #Volume#"))
        report = table.compile()
        assert report.max_row == 1
        assert report.calculated_cells == 2
        assert report.failed_cells == 0
        assert report.failure_ratio == 0.0
        assert report.ordering == "dependency"
        assert table.last_report is report


class TestReplaceColumn:
    def test_edit_then_recompile(self) -> None:
        table = _density_volume_table(Column.calculated("Total", "#Density# + #Volume#"))
        table.compile()
        old = table.columns[2]
        table.replace_column("Total", old.edit(name="Product", expression="#Density# * #Volume#"))
        table.compile()
        assert table.columns[2].name == "Product"
        assert table.columns[2].column_id == "Product"
        assert table.column_name_to_index["Product"] == 2
        assert "Total" not in table.column_name_to_index
        assert table.get_value(0, 2) == "1000"

    def test_unknown_name(self) -> None:
        with pytest.raises(KeyError):
            _density_volume_table().replace_column("Nope", Column("X"))


# ---------------------------------------------------------------------------
# Ordering between calculated columns
# ---------------------------------------------------------------------------


class TestDependencyOrdering:
    def test_forward_reference_resolved(self) -> None:
        """Double is declared before Total but reads it."""
        table = _density_volume_table(
            Column.calculated("Double", "#Total# * 2"),
            Column.calculated("Total", "#Density# + #Volume#"),
        )
        table.compile()
        assert table.get_value(0, 2) == "220"
        assert table.get_value(1, 2) == "440"

    def test_chain(self) -> None:
        table = _density_volume_table(
            Column.calculated("C", "#B# + 1"),
            Column.calculated("B", "#A# + 1"),
            Column.calculated("A", "#Density# + 1"),
        )
        table.compile()
        assert [table.get_value(0, c) for c in (2, 3, 4)] == ["13", "12", "11"]

    def test_cycle_fails_without_raising(self, caplog: pytest.LogCaptureFixture) -> None:
        table = _density_volume_table(
            Column.calculated("A", "#B# + 1"),
            Column.calculated("B", "#A# + 1"),
            Column.calculated("C", "#A# * 2"),
            Column.calculated("D", "#Density# * 2"),
        )
        with caplog.at_level(logging.WARNING, logger="tabcalc._table"):
            report = table.compile()
        for c in (2, 3, 4):
            assert table.get_value(0, c) == "ERROR"
            assert table.get_result(1, c).error is CalcErrorKind.CIRCULAR_REFERENCE
        assert table.get_value(1, 5) == "40"
        assert report.circular_columns == ("A", "B", "C")
        assert "Circular reference" in caplog.text

    def test_self_reference(self) -> None:
        table = _density_volume_table(Column.calculated("Loop", "#Loop# + 1"))
        report = table.compile()
        assert table.get_value(0, 2) == "ERROR"
        assert report.circular_columns == ("Loop",)


class TestDeclarationOrdering:
    def test_forward_reference_reads_previous_values(self) -> None:
        table = _density_volume_table(
            Column.calculated("Double", "#Total# * 2"),
            Column.calculated("Total", "#Density# + #Volume#"),
            ordering=ColumnOrdering.DECLARATION,
        )
        table.compile()
        # Total has no values yet when Double is evaluated
        assert table.get_value(0, 2) == "ERROR"
        table.compile()
        assert table.get_value(0, 2) == "220"

    def test_in_order_reference(self) -> None:
        table = _density_volume_table(
            Column.calculated("Total", "#Density# + #Volume#"),
            Column.calculated("Double", "#Total# * 2"),
            ordering="declaration",
        )
        report = table.compile()
        assert table.get_value(1, 3) == "440"
        assert report.ordering == "declaration"
        assert report.circular_columns == ()

    def test_cycle_not_detected(self) -> None:
        table = _density_volume_table(
            Column.calculated("A", "#B# + 1"),
            Column.calculated("B", "#A# + 1"),
            ordering=ColumnOrdering.DECLARATION,
        )
        table.compile()
        assert table.get_result(0, 2).error is CalcErrorKind.UNRESOLVED_VARIABLE
        assert table.get_value(0, 3) == "ERROR"


# ---------------------------------------------------------------------------
# Rendering: row count and aggregation row
# ---------------------------------------------------------------------------


class TestRendering:
    def _sparse_table(self, aggregation: str = "None") -> Table:
        table = Table({"0": {"0": 1, "1": 2, "5": 3}})
        table.add_columns([Column("A", ColumnType.DATA, aggregation=aggregation)])
        table.compile()
        return table

    def test_rows_without_aggregation(self) -> None:
        table = self._sparse_table()
        assert table.max_row == 5
        assert not table.has_aggregations
        assert table.get_rows_to_render() == 6

    def test_rows_with_aggregation(self) -> None:
        table = self._sparse_table("Sum")
        assert table.has_aggregations
        assert table.get_rows_to_render() == 7

    def test_aggregation_row(self) -> None:
        table = self._sparse_table("Sum")
        value = table.get_value(6, 0)
        assert isinstance(value, AggregationDisplay)
        assert str(value) == "Sum: 6"

    def test_aggregation_row_for_column_without_aggregation(self) -> None:
        table = _density_volume_table(Column.calculated("Total", "#Density# + #Volume#", "Average"))
        table.compile()
        assert str(table.get_value(2, 0)) == ""
        assert str(table.get_value(2, 2)) == "Average: 165"
        assert str(table.get_aggregation(2)) == "Average: 165"

    def test_aggregation_over_error_cells(self) -> None:
        table = _density_volume_table(Column.calculated("Bad", "#Mass#", "Max"))
        table.compile()
        assert str(table.get_value(2, 2)) == "Max: ERROR"

    def test_aggregation_over_empty_column(self) -> None:
        table = _density_volume_table(Column("Empty", ColumnType.DATA, aggregation="Max"))
        table.compile()
        assert str(table.get_value(2, 2)) == "Max: NaN"

    def test_full_grid(self) -> None:
        table = _density_volume_table(Column.calculated("Total", "#Density# + #Volume#", "Sum"))
        table.compile()
        assert _all_values(table) == [
            ["10", "100", "110"],
            ["20", "200", "220"],
            ["", "", "Sum: 330"],
        ]


class TestDefaults:
    def test_default_columns(self) -> None:
        cols = default_columns()
        assert [c.name for c in cols] == ["Time", "Cell Density", "Volume"]
        assert [c.column_id for c in cols] == ["time_col", "var_col_1", "var_col_2"]
        assert [c.column_type for c in cols] == [ColumnType.TIME, ColumnType.DATA, ColumnType.DATA]

    def test_default_columns_are_fresh(self) -> None:
        first = default_columns()
        first[0].set_rows({"0": 1})
        assert default_columns()[0].rows == {}

    def test_default_table_kwargs(self) -> None:
        table = default_table(ordering=ColumnOrdering.DECLARATION)
        assert table.ordering is ColumnOrdering.DECLARATION
        assert len(table.columns) == 3
