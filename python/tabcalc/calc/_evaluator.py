"""Expression evaluation for calculated columns.

``MathEvaluator`` is a recursive descent evaluator for arithmetic
expressions: balanced parentheses, operator precedence, unary signs,
constants and numeric functions, e.g. ``sqrt(10 * (2 + 3)) ^ 2``.
Function names the builtin registry does not know fall back to the
``formulas`` library's Excel function implementations.

``ExpressionEvaluator`` substitutes ``#Column#`` references and wraps the
math evaluator so that every failure becomes a typed ``CalcResult``
instead of an exception.
"""

from __future__ import annotations

import functools
import inspect
import logging
import math
import re
from collections.abc import Mapping
from typing import Any

from tabcalc.calc._functions import FunctionRegistry
from tabcalc.calc._parser import substitute_variables
from tabcalc.calc._protocol import (
    CalcErrorKind,
    CalcResult,
    ExpressionError,
    MathEngine,
    UnresolvedVariableError,
    UnsupportedFunctionError,
)

logger = logging.getLogger(__name__)

_CONSTANTS: dict[str, Any] = {
    "PI": math.pi,
    "E": math.e,
    "TRUE": True,
    "FALSE": False,
}

# Characters after which + or - is a unary sign rather than a binary operator
_OPERATOR_CHARS = ('(', ',', '+', '-', '*', '/', '%', '^', '>', '<', '=', '!')


# ---------------------------------------------------------------------------
# Expression parsing helpers
# ---------------------------------------------------------------------------


def _find_matching_paren(expr: str, start: int) -> int:
    """Index of the ``')'`` matching the ``'('`` at *expr[start]*, or -1."""
    depth = 1
    i = start + 1
    while i < len(expr):
        ch = expr[i]
        if ch == '(':
            depth += 1
        elif ch == ')':
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


def _match_function_call(expr: str) -> tuple[str, str] | None:
    """If *expr* is exactly ``func(balanced_args)``, return ``(name, args_str)``.

    Uses balanced parenthesis matching so ``sum(1, 2)*2`` is NOT matched
    (there's trailing content after the close-paren).
    """
    stripped = expr.strip()
    m = re.match(r'^([A-Z_][A-Z0-9_]*)\s*\(', stripped, re.IGNORECASE)
    if not m:
        return None
    open_idx = m.end() - 1  # position of '('
    close_idx = _find_matching_paren(stripped, open_idx)
    # The close-paren must be the very last character
    if close_idx >= 0 and close_idx == len(stripped) - 1:
        return (m.group(1), stripped[open_idx + 1 : close_idx])
    return None


def _is_unary_position(expr: str, op_start: int) -> bool:
    """True when the operator at *op_start* has no left operand."""
    j = op_start - 1
    while j >= 0 and expr[j] == ' ':
        j -= 1
    return j < 0 or expr[j] in _OPERATOR_CHARS


def _is_exponent_sign(expr: str, op_start: int) -> bool:
    """True for the sign inside scientific notation such as ``2.5e-1``."""
    j = op_start - 1
    if j < 1 or expr[j] not in ('e', 'E'):
        return False
    return expr[j - 1].isdigit() or expr[j - 1] == '.'


def _find_top_level_split(expr: str) -> tuple[str, str, str] | None:
    """Find the lowest-precedence binary operator at paren depth 0.

    Precedence (lowest to highest)::

        1. comparison     (==, !=, <>, >=, <=, >, <, =)
        2. additive       (+, -)
        3. multiplicative (*, /, %)
        4. power          (^)

    Comparison, additive and multiplicative operators are found by a
    right-to-left scan (left associativity); power by a left-to-right scan
    (right associativity).  Returns ``(left, op, right)`` or ``None``.
    """
    for pass_type in ("cmp", "add", "mul", "pow"):
        depth = 0
        if pass_type == "pow":
            positions = range(len(expr))
        else:
            positions = range(len(expr) - 1, 0, -1)

        for i in positions:
            ch = expr[i]

            # Track parentheses (direction-aware)
            if ch in ('(', ')'):
                opens = ch == '(' if pass_type == "pow" else ch == ')'
                depth += 1 if opens else -1
                continue
            if depth != 0:
                continue

            matched_op: str | None = None
            op_start = i

            if pass_type == "cmp":
                # 2-char comparison operators checked first
                if i >= 1 and expr[i - 1 : i + 1] in (">=", "<=", "<>", "==", "!="):
                    matched_op = expr[i - 1 : i + 1]
                    op_start = i - 1
                elif ch in ('>', '<') and expr[i + 1 : i + 2] not in ('=', '>'):
                    matched_op = ch
                elif ch == '=' and not (i >= 1 and expr[i - 1] in ('>', '<', '!', '=')):
                    matched_op = ch
            elif pass_type == "add" and ch in ('+', '-'):
                if _is_exponent_sign(expr, i):
                    continue
                matched_op = ch
            elif pass_type == "mul" and ch in ('*', '/', '%'):
                matched_op = ch
            elif pass_type == "pow" and ch == '^':
                matched_op = ch

            if matched_op is None:
                continue
            # Verify it's a binary operator (not unary prefix)
            if op_start <= 0 or _is_unary_position(expr, op_start):
                continue

            left = expr[:op_start].strip()
            right = expr[op_start + len(matched_op) :].strip()
            if matched_op == '^' and left[:1] in ('+', '-'):
                # -2^2 is -(2^2): leave the sign to the unary step
                return None
            if left and right:
                return (left, matched_op, right)

    return None


def _split_top_level_args(args_str: str) -> list[str]:
    """Split on commas at depth 0 WITHOUT evaluating - returns raw strings."""
    if not args_str.strip():
        return []
    args: list[str] = []
    depth = 0
    current = ""
    for ch in args_str:
        if ch == '(':
            depth += 1
        elif ch == ')':
            depth -= 1
        elif ch == ',' and depth == 0:
            args.append(current)
            current = ""
            continue
        current += ch
    args.append(current)
    return args


def _require_number(value: Any, op: str) -> int | float:
    if not isinstance(value, (int, float)):
        raise ExpressionError(f"Operator {op!r} needs numeric operands, got {value!r}")
    return value


def _power(a: int | float, b: int | float) -> float:
    """``a ^ b`` in double precision; overflow saturates to +/-Infinity."""
    if a == 0 and b < 0:
        raise ExpressionError("Zero raised to a negative power")
    try:
        result = float(a) ** float(b)
    except OverflowError:
        if a < 0 and float(b).is_integer() and int(b) % 2:
            return -math.inf
        return math.inf
    if isinstance(result, complex):
        raise ExpressionError("Power produced a complex result")
    return result


def _formula_literal(value: Any) -> str:
    """Render an evaluated argument as an Excel formula literal."""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float) and math.isfinite(value):
        return repr(value)
    raise ExpressionError(f"Cannot pass {value!r} to an Excel function")


@functools.lru_cache(maxsize=256)
def _compile_formula(formula: str) -> Any:
    """Compile *formula* with ``formulas``; None if it cannot be compiled."""
    import formulas as fm

    try:
        result = fm.Parser().ast(formula)
        if result and len(result) > 1:
            return result[1].compile()
    except Exception:
        logger.debug("formulas: cannot compile %r", formula)
    return None


def _binary_op(left: Any, op: str, right: Any) -> Any:
    """Evaluate an arithmetic binary operation."""
    a = _require_number(left, op)
    b = _require_number(right, op)
    if op == '+':
        return a + b
    if op == '-':
        return a - b
    if op == '*':
        return a * b
    if op == '/':
        if b == 0:
            raise ExpressionError("Division by zero")
        return a / b
    if op == '%':
        if b == 0:
            raise ExpressionError("Modulo by zero")
        return a % b
    if op == '^':
        return _power(a, b)
    raise ExpressionError(f"Unknown operator {op!r}")


def _compare(left: Any, right: Any, op: str) -> bool:
    """Evaluate a numeric comparison operation."""
    a = _require_number(left, op)
    b = _require_number(right, op)
    if op == '>':
        return a > b
    if op == '<':
        return a < b
    if op == '>=':
        return a >= b
    if op == '<=':
        return a <= b
    if op in ('=', '=='):
        return a == b
    if op in ('<>', '!='):
        return a != b
    raise ExpressionError(f"Unknown comparison {op!r}")


# ---------------------------------------------------------------------------
# Math evaluator
# ---------------------------------------------------------------------------


class MathEvaluator:
    """Evaluates reference-free arithmetic expressions.

    Usage::

        ev = MathEvaluator()
        ev.evaluate("10 * (2 + 3)")   # 50
        ev.evaluate("sqrt(16) ^ 2")   # 16.0
    """

    def __init__(
        self,
        functions: FunctionRegistry | None = None,
        use_formulas: bool = True,
    ) -> None:
        self._functions = functions if functions is not None else FunctionRegistry()
        self._use_formulas = use_formulas

    @property
    def functions(self) -> FunctionRegistry:
        return self._functions

    def evaluate(self, expression: str) -> Any:
        """Evaluate *expression*; a leading ``=`` is accepted and ignored.

        Returns None for an empty expression.  Raises ExpressionError when
        the expression is malformed or cannot be evaluated.
        """
        body = expression.strip()
        if body.startswith('='):
            body = body[1:].strip()
        if not body:
            return None
        return self._eval_expr(body)

    # ------------------------------------------------------------------
    # Recursive descent
    # ------------------------------------------------------------------

    def _eval_expr(self, expr: str) -> Any:
        """Recursively evaluate an expression.

        Dispatch order (first match wins):

        1. Binary/comparison split at top level (paren-aware, precedence-correct)
        2. Parenthesized sub-expression ``(...)``
        3. Function call ``func(balanced_args)``
        4. Unary minus / plus
        5. Numeric literal
        6. Named constant
        """
        expr = expr.strip()
        if not expr:
            raise ExpressionError("Missing operand")

        # 1. Binary split (comparison -> additive -> multiplicative -> power)
        split = _find_top_level_split(expr)
        if split:
            left_str, op, right_str = split
            left_val = self._eval_expr(left_str)
            right_val = self._eval_expr(right_str)
            if op in ('+', '-', '*', '/', '%', '^'):
                return _binary_op(left_val, op, right_val)
            return _compare(left_val, right_val, op)

        # 2. Parenthesized sub-expression: (expr)
        if expr.startswith('('):
            close = _find_matching_paren(expr, 0)
            if close == len(expr) - 1:
                return self._eval_expr(expr[1:close])
            raise ExpressionError(f"Unbalanced parentheses in {expr!r}")

        # 3. Function call: func(balanced_args)
        func = _match_function_call(expr)
        if func:
            return self._eval_function(func[0], func[1])

        # 4. Unary minus / plus
        if expr.startswith('-'):
            return -_require_number(self._eval_expr(expr[1:]), '-')
        if expr.startswith('+'):
            return _require_number(self._eval_expr(expr[1:]), '+')

        # 5. Numeric literal (int, float, and scientific notation like 1E3)
        try:
            num = float(expr)
        except ValueError:
            pass
        else:
            # Preserve int for plain integer literals
            if re.fullmatch(r'\d+', expr):
                try:
                    return int(expr)
                except ValueError:
                    # Beyond the int string-conversion digit limit
                    return num
            return num

        # 6. Named constant
        upper = expr.upper()
        if upper in _CONSTANTS:
            return _CONSTANTS[upper]

        raise ExpressionError(f"Unknown symbol {expr!r}")

    def _eval_function(self, func_name: str, args_str: str) -> Any:
        """Evaluate a builtin function call with evaluated arguments."""
        func = self._functions.get(func_name)
        if func is None:
            logger.debug("Unsupported function: %s", func_name)
            if not self._use_formulas:
                raise UnsupportedFunctionError(func_name.upper())
            return self._formulas_call(func_name, args_str)
        args = [self._eval_expr(arg) for arg in _split_top_level_args(args_str)]
        try:
            return func(args)
        except (ValueError, TypeError, ArithmeticError) as e:
            logger.debug("Error evaluating %s: %s", func_name, e)
            raise ExpressionError(f"{func_name.upper()}: {e}") from e

    # ------------------------------------------------------------------
    # formulas library fallback
    # ------------------------------------------------------------------

    def _formulas_call(self, func_name: str, args_str: str) -> Any:
        """Evaluate one non-builtin function call with the ``formulas`` library.

        Arguments are evaluated by this evaluator first, so only the call
        itself follows Excel semantics; the surrounding operators do not.
        """
        name = func_name.upper()
        args = [self._eval_expr(arg) for arg in _split_top_level_args(args_str)]
        formula = f"={name}({','.join(_formula_literal(arg) for arg in args)})"
        result = self._formulas_fallback(formula)
        if result is None:
            raise UnsupportedFunctionError(name)
        return result

    def _formulas_fallback(self, formula: str) -> Any:
        """Evaluate a constant formula via the ``formulas`` library.

        Only reference-free formulas are evaluated, and only numeric or
        boolean scalar results are accepted.
        """
        compiled = _compile_formula(formula)
        if compiled is None:
            return None

        try:
            params = list(inspect.signature(compiled).parameters.keys())
        except (ValueError, TypeError):
            params = []
        if params:
            # Unknown names were parsed as references; nothing can resolve them
            logger.debug("formulas: unresolved names %s in %r", params, formula)
            return None

        try:
            raw = compiled()
        except Exception as e:
            logger.debug("formulas: error evaluating %r: %s", formula, e)
            return None
        return self._normalize_formulas_result(raw)

    @staticmethod
    def _normalize_formulas_result(raw: Any) -> Any:
        """Convert a ``formulas`` library result to a plain Python number."""
        import numpy as np

        if raw is None:
            return None
        # numpy array with single element
        if isinstance(raw, np.ndarray):
            if raw.size != 1:
                return None
            raw = raw.flat[0]
        # numpy scalar types
        if isinstance(raw, np.generic):
            raw = raw.item()
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, (int, float)):
            if isinstance(raw, float) and raw.is_integer():
                return int(raw)
            return raw
        # Excel error values (#DIV/0!, #NAME?, ...) and text are failures
        return None


# ---------------------------------------------------------------------------
# Column expression evaluator
# ---------------------------------------------------------------------------


class ExpressionEvaluator:
    """Substitutes ``#name#`` references and evaluates column expressions.

    Never raises for bad input: every failure is returned as a
    ``CalcResult`` carrying a ``CalcErrorKind``.
    """

    def __init__(self, engine: MathEngine | None = None) -> None:
        self._engine: MathEngine = engine if engine is not None else MathEvaluator()

    @property
    def engine(self) -> MathEngine:
        return self._engine

    def evaluate(self, expression: str, variables: Mapping[str, Any]) -> CalcResult:
        try:
            substituted = substitute_variables(expression, variables)
        except UnresolvedVariableError as e:
            logger.debug("Cannot evaluate %r: %s", expression, e)
            return CalcResult.failure(CalcErrorKind.UNRESOLVED_VARIABLE, str(e))

        if not substituted.strip():
            return CalcResult.failure(CalcErrorKind.EMPTY_RESULT, "Empty expression")

        try:
            value = self._engine.evaluate(substituted)
        except Exception as e:
            logger.debug("Error evaluating %r (from %r): %s", substituted, expression, e)
            return CalcResult.failure(CalcErrorKind.EVALUATION_FAILED, str(e))

        if value is None:
            return CalcResult.failure(CalcErrorKind.EMPTY_RESULT, "Expression produced no value")
        return CalcResult.success(value)


_default_evaluator: ExpressionEvaluator | None = None


def _get_default_evaluator() -> ExpressionEvaluator:
    global _default_evaluator
    if _default_evaluator is None:
        _default_evaluator = ExpressionEvaluator()
    return _default_evaluator


def evaluate_result(
    expression: str,
    variables: Mapping[str, Any] | None = None,
) -> CalcResult:
    """Evaluate *expression* with the shared default evaluator."""
    return _get_default_evaluator().evaluate(expression, variables or {})


def evaluate(expression: str, variables: Mapping[str, Any] | None = None) -> str:
    """Evaluate *expression* and return its display string.

    ``evaluate("#X# * #Y#", {"X": 3, "Y": 4}) == "12"``; any failure
    returns ``"ERROR"``.
    """
    return evaluate_result(expression, variables).display

