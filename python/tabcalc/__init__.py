"""tabcalc: calculated columns over tabular data.

Usage::

    from tabcalc import Column, ColumnType, Table

    table = Table({"0": {"0": 10, "1": 20}, "1": {"0": 100, "1": 200}})
    table.add_columns([
        Column("Density", ColumnType.DATA),
        Column("Volume", ColumnType.DATA),
        Column.calculated("Total", "#Density# + #Volume#", aggregation="Sum"),
    ])
    table.compile()
    print(table.get_value(0, 2))          # 110
    print(table.get_value(2, 2))          # Sum: 330
    print(table.get_rows_to_render())     # 3
"""

from tabcalc._column import Calculation, Column, ColumnType
from tabcalc._defaults import default_columns, default_table
from tabcalc._table import ColumnOrdering, Table
from tabcalc.calc import (
    Aggregation,
    AggregationDisplay,
    CalcErrorKind,
    CalcResult,
    CompileReport,
    evaluate,
    extract_variables,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "Aggregation",
    "AggregationDisplay",
    "CalcErrorKind",
    "CalcResult",
    "Calculation",
    "Column",
    "ColumnOrdering",
    "ColumnType",
    "CompileReport",
    "Table",
    "default_columns",
    "default_table",
    "evaluate",
    "extract_variables",
]
