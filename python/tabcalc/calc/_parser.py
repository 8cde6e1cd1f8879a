"""Variable reference extraction and substitution for column expressions.

Column expressions reference sibling columns by name, wrapped in ``#``
markers: ``#Cell Density# * (#Volume# + 10)``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from tabcalc._utils import format_value
from tabcalc.calc._protocol import UnresolvedVariableError

MARKER = "#"

# Lazy match so "#A# + #B#" yields two references, not "A# + #B"
VARIABLE_RE = re.compile(r"#(.*?)#")


# ---------------------------------------------------------------------------
# Reference extraction
# ---------------------------------------------------------------------------


def parse_variable_references(expression: str) -> list[str]:
    """Extract variable names in first-seen order, without duplicates.

    Markers are consumed pairwise from the left; an unpaired trailing
    ``#`` is ignored.
    """
    names: list[str] = []
    seen: set[str] = set()
    for m in VARIABLE_RE.finditer(expression):
        name = m.group(1)
        if name not in seen:
            names.append(name)
            seen.add(name)
    return names


def extract_variables(expression: str) -> frozenset[str]:
    """Return the distinct variable names referenced by *expression*.

    ``extract_variables("#A# + #B# * #A#") == {"A", "B"}``
    """
    return frozenset(m.group(1) for m in VARIABLE_RE.finditer(expression))


# ---------------------------------------------------------------------------
# Substitution
# ---------------------------------------------------------------------------


def substitute_variables(expression: str, variables: Mapping[str, Any]) -> str:
    """Replace every ``#name#`` with the display form of ``variables[name]``.

    Raises UnresolvedVariableError when a name is missing from *variables*
    or maps to an empty value.
    """

    def _replace(m: re.Match[str]) -> str:
        name = m.group(1)
        if name not in variables:
            raise UnresolvedVariableError(name)
        text = format_value(variables[name])
        if text == "":
            raise UnresolvedVariableError(name)
        return text

    return VARIABLE_RE.sub(_replace, expression)
