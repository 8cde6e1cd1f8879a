"""Function whitelist and builtin numeric implementations for the math evaluator."""

from __future__ import annotations

import math
from typing import Any, Callable

# ---------------------------------------------------------------------------
# Whitelist: functions the builtin evaluator implements, by category.
# Names are matched case-insensitively.
# ---------------------------------------------------------------------------

FUNCTION_WHITELIST: dict[str, str] = {
    # Arithmetic
    "ABS": "arithmetic",
    "SIGN": "arithmetic",
    "MOD": "arithmetic",
    "POW": "arithmetic",
    "POWER": "arithmetic",
    "SQRT": "arithmetic",
    "EXP": "arithmetic",
    "LOG": "arithmetic",
    "LN": "arithmetic",
    "LOG10": "arithmetic",
    # Rounding
    "ROUND": "rounding",
    "ROUNDUP": "rounding",
    "ROUNDDOWN": "rounding",
    "INT": "rounding",
    "FLOOR": "rounding",
    "CEIL": "rounding",
    # Trigonometry
    "SIN": "trigonometry",
    "COS": "trigonometry",
    "TAN": "trigonometry",
    # Statistical
    "SUM": "statistical",
    "MIN": "statistical",
    "MAX": "statistical",
    "MEAN": "statistical",
    "AVERAGE": "statistical",
}


def is_supported(func_name: str) -> bool:
    """Check if a function name is in the builtin whitelist."""
    return func_name.upper() in FUNCTION_WHITELIST


# ---------------------------------------------------------------------------
# Builtin implementations - pure Python.
# Each takes a list of already evaluated argument values.
# ---------------------------------------------------------------------------


def _coerce_numeric(values: list[Any]) -> list[float]:
    """Coerce evaluated arguments to floats.

    Booleans count as 1/0.  Anything else non-numeric raises ValueError.
    """
    result: list[float] = []
    for v in values:
        if isinstance(v, (list, tuple)):
            result.extend(_coerce_numeric(list(v)))
        elif isinstance(v, (int, float)):
            result.append(float(v))
        else:
            raise ValueError(f"Non-numeric argument: {v!r}")
    return result


def _unary(name: str, args: list[Any]) -> float:
    if len(args) != 1:
        raise ValueError(f"{name} requires exactly 1 argument")
    return _coerce_numeric(args)[0]


def _digits(name: str, args: list[Any]) -> tuple[float, int]:
    if len(args) < 1 or len(args) > 2:
        raise ValueError(f"{name} requires 1 or 2 arguments")
    nums = _coerce_numeric(args)
    digits = int(nums[1]) if len(nums) > 1 else 0
    return nums[0], digits


def _builtin_abs(args: list[Any]) -> float:
    return abs(_unary("ABS", args))


def _builtin_sign(args: list[Any]) -> float:
    x = _unary("SIGN", args)
    if x > 0:
        return 1.0
    if x < 0:
        return -1.0
    return 0.0


def _builtin_mod(args: list[Any]) -> float:
    if len(args) != 2:
        raise ValueError("MOD requires exactly 2 arguments")
    a, b = _coerce_numeric(args)
    if b == 0:
        raise ZeroDivisionError("MOD: division by zero")
    # Result has the sign of the divisor
    return a - b * math.floor(a / b)


def _builtin_power(args: list[Any]) -> float:
    if len(args) != 2:
        raise ValueError("POWER requires exactly 2 arguments")
    base, exponent = _coerce_numeric(args)
    if base < 0 and not float(exponent).is_integer():
        raise ValueError("POWER: negative base with fractional exponent")
    try:
        return base ** exponent
    except OverflowError:
        if base < 0 and exponent % 2 == 1:
            return -math.inf
        return math.inf


def _builtin_sqrt(args: list[Any]) -> float:
    x = _unary("SQRT", args)
    if x < 0:
        raise ValueError("SQRT: negative argument")
    return math.sqrt(x)


def _builtin_exp(args: list[Any]) -> float:
    return math.exp(_unary("EXP", args))


def _builtin_log(args: list[Any]) -> float:
    """LOG(x) is the natural logarithm; LOG(x, base) uses *base*."""
    if len(args) < 1 or len(args) > 2:
        raise ValueError("LOG requires 1 or 2 arguments")
    nums = _coerce_numeric(args)
    if len(nums) == 2:
        return math.log(nums[0], nums[1])
    return math.log(nums[0])


def _builtin_ln(args: list[Any]) -> float:
    return math.log(_unary("LN", args))


def _builtin_log10(args: list[Any]) -> float:
    return math.log10(_unary("LOG10", args))


def _builtin_round(args: list[Any]) -> float:
    x, digits = _digits("ROUND", args)
    # Half away from zero, not banker's rounding
    factor = 10 ** digits
    return math.copysign(math.floor(abs(x) * factor + 0.5) / factor, x)


def _builtin_roundup(args: list[Any]) -> float:
    x, digits = _digits("ROUNDUP", args)
    factor = 10 ** digits
    return math.copysign(math.ceil(abs(x) * factor) / factor, x)


def _builtin_rounddown(args: list[Any]) -> float:
    x, digits = _digits("ROUNDDOWN", args)
    if digits == 0:
        return float(math.trunc(x))
    factor = 10 ** digits
    return math.trunc(x * factor) / factor


def _builtin_int(args: list[Any]) -> float:
    return float(math.floor(_unary("INT", args)))


def _builtin_ceil(args: list[Any]) -> float:
    return float(math.ceil(_unary("CEIL", args)))


def _builtin_sin(args: list[Any]) -> float:
    return math.sin(_unary("SIN", args))


def _builtin_cos(args: list[Any]) -> float:
    return math.cos(_unary("COS", args))


def _builtin_tan(args: list[Any]) -> float:
    return math.tan(_unary("TAN", args))


def _builtin_sum(args: list[Any]) -> float:
    return sum(_coerce_numeric(args))


def _builtin_min(args: list[Any]) -> float:
    nums = _coerce_numeric(args)
    if not nums:
        raise ValueError("MIN requires at least 1 argument")
    return min(nums)


def _builtin_max(args: list[Any]) -> float:
    nums = _coerce_numeric(args)
    if not nums:
        raise ValueError("MAX requires at least 1 argument")
    return max(nums)


def _builtin_average(args: list[Any]) -> float:
    nums = _coerce_numeric(args)
    if not nums:
        raise ValueError("AVERAGE: no numeric values")
    return sum(nums) / len(nums)


_BUILTINS: dict[str, Callable[..., Any]] = {
    "ABS": _builtin_abs,
    "SIGN": _builtin_sign,
    "MOD": _builtin_mod,
    "POW": _builtin_power,
    "POWER": _builtin_power,
    "SQRT": _builtin_sqrt,
    "EXP": _builtin_exp,
    "LOG": _builtin_log,
    "LN": _builtin_ln,
    "LOG10": _builtin_log10,
    "ROUND": _builtin_round,
    "ROUNDUP": _builtin_roundup,
    "ROUNDDOWN": _builtin_rounddown,
    "INT": _builtin_int,
    "FLOOR": _builtin_int,
    "CEIL": _builtin_ceil,
    "SIN": _builtin_sin,
    "COS": _builtin_cos,
    "TAN": _builtin_tan,
    "SUM": _builtin_sum,
    "MIN": _builtin_min,
    "MAX": _builtin_max,
    "MEAN": _builtin_average,
    "AVERAGE": _builtin_average,
}


class FunctionRegistry:
    """Registry of callable function implementations.

    Starts with builtins and can be extended with custom functions.
    """

    def __init__(self) -> None:
        self._functions: dict[str, Callable[..., Any]] = dict(_BUILTINS)

    def register(self, name: str, func: Callable[..., Any]) -> None:
        self._functions[name.upper()] = func

    def get(self, name: str) -> Callable[..., Any] | None:
        return self._functions.get(name.upper())

    def has(self, name: str) -> bool:
        return name.upper() in self._functions

    @property
    def supported_functions(self) -> frozenset[str]:
        return frozenset(self._functions.keys())
