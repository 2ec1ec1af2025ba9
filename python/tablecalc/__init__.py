"""tablecalc: spreadsheet-style formulas for plain grids of text.

Usage::

    from tablecalc import evaluate_table

    result = evaluate_table([
        ["2", "3", "=a1*b1"],
        ["4", "5", "=sum(a1:b2)"],
    ])
    result.values   # [[2, 3, 6], [4, 5, 14]]
    result.errors   # all None
"""

from tablecalc._errors import (
    CircularReference,
    EvaluationFailure,
    ForbiddenPattern,
    FormulaError,
    FormulaTooLong,
    InfiniteLoop,
    InvalidReference,
    MatrixLoop,
    MatrixOutOfBounds,
    OutOfBounds,
    RecursionLimitExceeded,
)
from tablecalc._evaluator import TableEvaluator, evaluate_table
from tablecalc._expression import MathEvaluator
from tablecalc._functions import FunctionRegistry, is_supported
from tablecalc._protocol import CellStatus, CellType, ExpressionBackend, Position, TableResult
from tablecalc._references import column_index, column_letters, position_to_ref, resolve_reference
from tablecalc._settings import EvaluatorSettings

__version__ = "0.1.0"

__all__ = [
    "CellStatus",
    "CellType",
    "CircularReference",
    "EvaluationFailure",
    "EvaluatorSettings",
    "ExpressionBackend",
    "ForbiddenPattern",
    "FormulaError",
    "FormulaTooLong",
    "FunctionRegistry",
    "InfiniteLoop",
    "InvalidReference",
    "MathEvaluator",
    "MatrixLoop",
    "MatrixOutOfBounds",
    "OutOfBounds",
    "Position",
    "RecursionLimitExceeded",
    "TableEvaluator",
    "TableResult",
    "__version__",
    "column_index",
    "column_letters",
    "evaluate_table",
    "is_supported",
    "position_to_ref",
    "resolve_reference",
]
