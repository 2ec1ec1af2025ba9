"""MathEvaluator: the default expression backend.

Evaluates the plain expression strings produced by the formula transformer:
arithmetic with the usual precedence, comparisons, function calls, array
literals (numpy) and physical quantities (pint). It is a recursive evaluator
over the text itself, so nothing outside this grammar can run.

Precedence, lowest to highest::

    1. comparison     (==, !=, <=, >=, <, >)
    2. additive       (+, -)
    3. multiplicative (*, /, %)
    4. unary sign     (-x, +x)
    5. power          (^, right-associative)
"""

from __future__ import annotations

import json
import logging
import math
import operator
import re
from typing import Any, Callable

import numpy as np

from tablecalc._errors import EvaluationFailure, FormulaError, RecursionLimitExceeded
from tablecalc._functions import FunctionRegistry, divide, power, to_operand
from tablecalc._units import is_quantity, parse_quantity, parse_unit

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Expression parsing helpers
# ---------------------------------------------------------------------------

_OPENERS = {"(": ")", "[": "]"}

# Characters after which + and - are a sign rather than a binary operator.
_UNARY_CONTEXT = frozenset("([,;+-*/%^<>=!")

_NUMBER_RE = re.compile(r"^(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")
_INT_RE = re.compile(r"^\d+$")
_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_CALL_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\s*\(")

_CONSTANTS: dict[str, Any] = {
    "pi": math.pi,
    "e": math.e,
    "tau": math.tau,
    "phi": (1 + math.sqrt(5)) / 2,
    "true": True,
    "false": False,
    "null": None,
    "Infinity": math.inf,
    "inf": math.inf,
    "NaN": math.nan,
    "nan": math.nan,
}

_COMPARE: dict[str, Callable[[Any, Any], Any]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    ">": operator.gt,
    "<=": operator.le,
    ">=": operator.ge,
}


def _is_escaped(expr: str, i: int) -> bool:
    """True when the quote at *expr[i]* is preceded by an odd run of backslashes."""
    count = 0
    j = i - 1
    while j >= 0 and expr[j] == "\\":
        count += 1
        j -= 1
    return count % 2 == 1


def find_matching(expr: str, start: int) -> int:
    """Index of the bracket closing the one at *expr[start]*, or -1.

    Handles ``()`` and ``[]`` and skips string literals.
    """
    opener = expr[start]
    closer = _OPENERS[opener]
    depth = 1
    i = start + 1
    in_string = False
    while i < len(expr):
        ch = expr[i]
        if ch == '"' and not _is_escaped(expr, i):
            in_string = not in_string
        elif not in_string:
            if ch == opener:
                depth += 1
            elif ch == closer:
                depth -= 1
                if depth == 0:
                    return i
        i += 1
    return -1


def split_top_level(text: str, separator: str = ",") -> list[str]:
    """Split on *separator* at bracket depth 0, outside string literals."""
    parts: list[str] = []
    depth = 0
    in_string = False
    current: list[str] = []
    for i, ch in enumerate(text):
        if ch == '"' and not _is_escaped(text, i):
            in_string = not in_string
        elif not in_string:
            if ch in "([":
                depth += 1
            elif ch in ")]":
                depth -= 1
            elif ch == separator and depth == 0:
                parts.append("".join(current))
                current = []
                continue
        current.append(ch)
    parts.append("".join(current))
    return parts


def _match_function_call(expr: str) -> tuple[str, str] | None:
    """If *expr* is exactly ``name(balanced_args)``, return ``(name, args_str)``."""
    m = _CALL_RE.match(expr)
    if not m:
        return None
    open_idx = m.end() - 1
    close_idx = find_matching(expr, open_idx)
    if close_idx >= 0 and close_idx == len(expr) - 1:
        return m.group(1), expr[open_idx + 1 : close_idx]
    return None


def _find_top_level_split(expr: str) -> tuple[str, str, str] | None:
    """Find the rightmost lowest-precedence binary operator at depth 0.

    Right-to-left scan produces left-to-right associativity. Returns
    ``(left, op, right)`` or ``None``.
    """
    length = len(expr)

    for pass_type in ("cmp", "add", "mul"):
        depth = 0
        in_string = False
        i = length - 1
        while i > 0:
            ch = expr[i]

            if ch == '"' and not _is_escaped(expr, i):
                in_string = not in_string
                i -= 1
                continue
            if in_string:
                i -= 1
                continue

            # Inverted for right-to-left
            if ch in ")]":
                depth += 1
                i -= 1
                continue
            if ch in "([":
                depth -= 1
                i -= 1
                continue
            if depth != 0:
                i -= 1
                continue

            matched_op: str | None = None
            op_start = i

            if pass_type == "cmp":
                pair = expr[i - 1 : i + 1]
                if pair in ("==", "!=", "<=", ">="):
                    matched_op = pair
                    op_start = i - 1
                elif ch in "<>":
                    matched_op = ch
            elif pass_type == "add" and ch in "+-":
                matched_op = ch
            elif pass_type == "mul" and ch in "*/%":
                matched_op = ch

            if matched_op is not None:
                j = op_start - 1
                while j >= 0 and expr[j] == " ":
                    j -= 1
                if j < 0 or expr[j] in _UNARY_CONTEXT:
                    i = op_start - 1
                    continue
                # Skip +/- that are part of scientific notation (e.g. 2.5e-1)
                if matched_op in ("+", "-") and expr[j] in "eE" and j >= 1 and expr[j - 1].isdigit():
                    i = op_start - 1
                    continue

                left = expr[:op_start].strip()
                right = expr[op_start + len(matched_op) :].strip()
                if left and right:
                    return left, matched_op, right

            i -= 1

    return None


def _find_power_split(expr: str) -> tuple[str, str] | None:
    """Split at the leftmost ``^`` at depth 0 (right-associative)."""
    depth = 0
    in_string = False
    for i, ch in enumerate(expr):
        if ch == '"' and not _is_escaped(expr, i):
            in_string = not in_string
        elif in_string:
            continue
        elif ch in "([":
            depth += 1
        elif ch in ")]":
            depth -= 1
        elif ch == "^" and depth == 0:
            left, right = expr[:i].strip(), expr[i + 1 :].strip()
            if left and right:
                return left, right
    return None


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------


def _binary_op(left: Any, op: str, right: Any) -> Any:
    """Evaluate an arithmetic binary operation."""
    if op == "/":
        return divide(left, right)
    left, right = to_operand(left), to_operand(right)
    if op == "+":
        return left + right
    if op == "-":
        return left - right
    if op == "*":
        if isinstance(left, np.ndarray) and isinstance(right, np.ndarray):
            return np.matmul(left, right)
        return left * right
    if op == "%":
        return left % right
    raise EvaluationFailure(f'Unknown operator "{op}"')


def _compare(left: Any, right: Any, op: str) -> Any:
    """Evaluate a comparison; text compares as text unless both sides are numeric."""
    func = _COMPARE[op]
    if isinstance(left, str) and isinstance(right, str):
        return func(left, right)
    try:
        return func(to_operand(left), to_operand(right))
    except TypeError:
        ls = "" if left is None else str(left)
        rs = "" if right is None else str(right)
        return func(ls, rs)


def _negate(value: Any) -> Any:
    return -to_operand(value)


def _as_array(items: list[Any]) -> np.ndarray:
    """Build a numpy array, falling back to object dtype for mixed content."""
    plain = all(
        isinstance(v, (bool, int, float, np.generic))
        or (isinstance(v, np.ndarray) and v.dtype != object)
        for v in items
    )
    if plain:
        return np.array(items)
    return np.array(items, dtype=object)


# ---------------------------------------------------------------------------
# Result normalisation
# ---------------------------------------------------------------------------


def normalize_result(raw: Any) -> Any:
    """Convert numpy/pint results to plain Python values and nested lists."""
    if isinstance(raw, np.ndarray):
        return [normalize_result(v) for v in raw.tolist()] if raw.ndim else normalize_result(raw.item())
    if isinstance(raw, (list, tuple)):
        return [normalize_result(v) for v in raw]
    if isinstance(raw, np.generic):
        return normalize_result(raw.item())
    if is_quantity(raw):
        magnitude = raw.magnitude
        if np.ndim(magnitude) > 0:
            return [normalize_result(m * raw.units) for m in np.asarray(magnitude).tolist()]
        if raw.dimensionless:
            return normalize_result(raw.to("dimensionless").magnitude)
        if isinstance(magnitude, np.generic):
            return magnitude.item() * raw.units
        return raw
    if isinstance(raw, complex):
        raise EvaluationFailure("complex results are not supported")
    if isinstance(raw, float) and raw.is_integer() and abs(raw) < 2**53:
        return int(raw)
    return raw


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------


class MathEvaluator:
    """Default :class:`~tablecalc.ExpressionBackend`.

    Usage::

        backend = MathEvaluator()
        backend.evaluate("sum(1,2,3)*2")        # 12
        backend.evaluate("[[1,2],[3,4]]^2")     # [[7, 10], [15, 22]]
        backend.evaluate('"5 kg" * 2')          # <Quantity(10, 'kilogram')>
    """

    def __init__(self, functions: FunctionRegistry | None = None) -> None:
        self._functions = functions or FunctionRegistry()

    @property
    def functions(self) -> FunctionRegistry:
        return self._functions

    def evaluate(self, expression: str) -> Any:
        """Evaluate *expression* and return a normalised Python value."""
        try:
            with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
                raw = self._eval_expr(expression)
            return normalize_result(raw)
        except FormulaError:
            raise
        except RecursionError as e:
            raise RecursionLimitExceeded("expression nested too deeply") from e
        except Exception as e:
            logger.debug("Error evaluating %r: %s", expression, e)
            raise EvaluationFailure(str(e) or type(e).__name__) from e

    def _eval_expr(self, expr: str) -> Any:
        """Recursively evaluate an expression.

        Dispatch order (first match wins):

        1. Binary/comparison split at top level
        2. Unary sign
        3. Power
        4. Parenthesized sub-expression
        5. Array literal
        6. Function call
        7. Literal atoms (number, quantity, string, constant, unit)
        """
        expr = expr.strip()
        if not expr:
            raise EvaluationFailure("Unexpected end of expression")

        split = _find_top_level_split(expr)
        if split:
            left_str, op, right_str = split
            left_val = self._eval_expr(left_str)
            right_val = self._eval_expr(right_str)
            if op in _COMPARE:
                return _compare(left_val, right_val, op)
            return _binary_op(left_val, op, right_val)

        if expr[0] == "-":
            return _negate(self._eval_expr(expr[1:]))
        if expr[0] == "+":
            return to_operand(self._eval_expr(expr[1:]))

        pow_split = _find_power_split(expr)
        if pow_split:
            return power(self._eval_expr(pow_split[0]), self._eval_expr(pow_split[1]))

        if expr[0] in _OPENERS:
            close = find_matching(expr, 0)
            if close == -1:
                raise EvaluationFailure(f'Parenthesis {_OPENERS[expr[0]]} expected')
            if close == len(expr) - 1:
                inner = expr[1:close]
                if expr[0] == "(":
                    return self._eval_expr(inner)
                return self._eval_array(inner)

        func = _match_function_call(expr)
        if func:
            return self._eval_function(func[0], func[1])

        return self._eval_atom(expr)

    def _eval_array(self, inner: str) -> np.ndarray:
        """``[1, 2]``, ``[[1, 2], [3, 4]]`` or ``[1, 2; 3, 4]``."""
        if not inner.strip():
            return np.array([])
        rows = split_top_level(inner, ";")
        if len(rows) > 1:
            return _as_array([_as_array(self._eval_items(r)) for r in rows])
        return _as_array(self._eval_items(inner))

    def _eval_items(self, text: str) -> list[Any]:
        return [self._eval_expr(part) for part in split_top_level(text, ",")]

    def _eval_function(self, name: str, args_str: str) -> Any:
        func = self._functions.get(name)
        if func is None:
            raise EvaluationFailure(f'Undefined function "{name}"')
        args = self._eval_items(args_str) if args_str.strip() else []
        return func(args)

    def _eval_atom(self, expr: str) -> Any:
        if _NUMBER_RE.match(expr):
            return int(expr) if _INT_RE.match(expr) else float(expr)

        if len(expr) >= 2 and expr[0] == '"' and expr[-1] == '"':
            return self._eval_string(expr)

        if _NAME_RE.match(expr):
            if expr in _CONSTANTS:
                return _CONSTANTS[expr]
            unit = parse_unit(expr)
            if unit is not None:
                return unit
            raise EvaluationFailure(f'Undefined symbol "{expr}"')

        quantity = parse_quantity(expr)
        if quantity is not None:
            return quantity

        raise EvaluationFailure(f'Unexpected "{expr}"')

    @staticmethod
    def _eval_string(expr: str) -> Any:
        try:
            text = json.loads(expr)
        except ValueError:
            text = expr[1:-1]
        if not isinstance(text, str):
            text = expr[1:-1]
        quantity = parse_quantity(text)
        return quantity if quantity is not None else text
