"""tabcalc.calc - Expression evaluation and aggregation engine for calculated columns."""

from tabcalc.calc._aggregation import Aggregation, AggregationDisplay, aggregate
from tabcalc.calc._evaluator import ExpressionEvaluator, MathEvaluator, evaluate, evaluate_result
from tabcalc.calc._functions import FUNCTION_WHITELIST, FunctionRegistry, is_supported
from tabcalc.calc._graph import CircularReferenceError, DependencyGraph
from tabcalc.calc._parser import extract_variables, parse_variable_references, substitute_variables
from tabcalc.calc._protocol import (
    ERROR_SENTINEL,
    CalcErrorKind,
    CalcResult,
    CompileReport,
    ExpressionError,
    MathEngine,
    UnresolvedVariableError,
    UnsupportedFunctionError,
)

__all__ = [
    "ERROR_SENTINEL",
    "FUNCTION_WHITELIST",
    "Aggregation",
    "AggregationDisplay",
    "CalcErrorKind",
    "CalcResult",
    "CircularReferenceError",
    "CompileReport",
    "DependencyGraph",
    "ExpressionError",
    "ExpressionEvaluator",
    "FunctionRegistry",
    "MathEngine",
    "MathEvaluator",
    "UnresolvedVariableError",
    "UnsupportedFunctionError",
    "aggregate",
    "evaluate",
    "evaluate_result",
    "extract_variables",
    "is_supported",
    "parse_variable_references",
    "substitute_variables",
]
