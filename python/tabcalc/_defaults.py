"""Factories for the initial table contents."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from tabcalc._column import Column, ColumnType
from tabcalc._table import Table


def default_columns() -> list[Column]:
    """Fresh starter columns: a time column and two data columns."""
    return [
        Column("Time", ColumnType.TIME, "time_col"),
        Column("Cell Density", ColumnType.DATA, "var_col_1"),
        Column("Volume", ColumnType.DATA, "var_col_2"),
    ]


def default_table(
    data: Mapping[str | int, Mapping[str | int, Any]] | None = None,
    **kwargs: Any,
) -> Table:
    """Table over *data* with the default columns; *kwargs* go to ``Table``."""
    return Table(data, default_columns(), **kwargs)
