"""FormulaTransformer: expands cell references into literal values.

The formula body (text after ``=``) is scanned left to right. References,
ranges and matrix ranges are resolved against the grid, their values are
fetched (computing them on demand) and substituted as literals, so the
expression backend only ever sees a self-contained expression::

    =sum(a1:a3)*b1      ->  sum(1,2,3)*4
    =[a1:b2]^2          ->  [[1,2],[3,4]]^2
    =a1+0c-1r           ->  1+2        (cell one row up)
"""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any, Callable

from tablecalc._cells import TableState
from tablecalc._errors import EvaluationFailure, OutOfBounds
from tablecalc._protocol import Position
from tablecalc._references import (
    REFERENCE_PATTERN,
    column_index,
    normalize_range,
    position_to_ref,
    resolve_reference,
)
from tablecalc._units import format_quantity, is_quantity

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Token patterns
# ---------------------------------------------------------------------------

# A reference-like token must not run into a longer name or a call: log10(
_END = r"(?![\w(])"

_FUNCTION_HEAD_RE = re.compile(r"[a-zA-Z]{3,}\(")
_MATRIX_RANGE_RE = re.compile(rf"\[({REFERENCE_PATTERN}):({REFERENCE_PATTERN})\]")
_RANGE_RE = re.compile(rf"({REFERENCE_PATTERN}):({REFERENCE_PATTERN}){_END}")
_MATRIX_COLUMN_RANGE_RE = re.compile(r"\[([a-z]+):([a-z]+)\]")
_COLUMN_RANGE_RE = re.compile(rf"([a-z]+):([a-z]+){_END}")
_MATRIX_ROW_RANGE_RE = re.compile(r"\[(\d+):(\d+)\]")
_ROW_RANGE_RE = re.compile(rf"(\d+):(\d+){_END}")
_CELL_RE = re.compile(rf"{REFERENCE_PATTERN}{_END}")
_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?(?:[eE][+-]?\d+)?")
_NAME_RE = re.compile(r"[A-Za-z_]\w*")

# Output characters after which a +/- is a binary operator.
_OPERAND_END = re.compile(r"[\w)\]\".]$")

ValueFetcher = Callable[[Position], Any]


def _find_closing(text: str, start: int) -> int:
    """Index of the ``)`` closing the ``(`` at *text[start]*, skipping strings."""
    depth = 0
    in_string = False
    for i in range(start, len(text)):
        ch = text[i]
        if ch == '"' and (i == 0 or text[i - 1] != "\\"):
            in_string = not in_string
        elif in_string:
            continue
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i
    raise EvaluationFailure("missing closing parenthesis")


def _find_string_end(text: str, start: int) -> int:
    """Index of the quote closing the string literal opened at *text[start]*."""
    i = start + 1
    while i < len(text):
        if text[i] == "\\":
            i += 2
            continue
        if text[i] == '"':
            return i
        i += 1
    raise EvaluationFailure("unterminated string literal")


def format_literal(value: Any, use_bool: bool = False) -> str:
    """Render a cell value as an expression literal."""
    if value is None:
        return "0"
    if isinstance(value, bool):
        if use_bool:
            return "true" if value else "false"
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return "nan"
        text = repr(value)
        return f"({text})" if value < 0 else text
    if is_quantity(value):
        return json.dumps(format_quantity(value))
    if isinstance(value, str):
        return json.dumps(value)
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(format_literal(v, use_bool) for v in value) + "]"
    return json.dumps(str(value))


# ---------------------------------------------------------------------------
# Transformer
# ---------------------------------------------------------------------------


class FormulaTransformer:
    """Rewrites a formula body into a plain expression for one table.

    *fetch* returns the value of a position, computing it when needed; it is
    the evaluator's ``get_value``.
    """

    def __init__(self, state: TableState, fetch: ValueFetcher) -> None:
        self._state = state
        self._fetch = fetch

    def transform(self, body: str, caller: Position) -> str:
        """Expand *body* as written in the cell at *caller*."""
        logger.debug("Transforming %s: %r", position_to_ref(caller), body)
        out: list[str] = []
        i = 0
        length = len(body)
        while i < length:
            ch = body[i]

            if ch == "(":
                close = _find_closing(body, i)
                out.append("(" + self.transform(body[i + 1 : close], caller) + ")")
                i = close + 1
                continue

            if ch == '"':
                end = _find_string_end(body, i)
                out.append(body[i : end + 1])
                i = end + 1
                continue

            m = _FUNCTION_HEAD_RE.match(body, i)
            if m:
                close = _find_closing(body, m.end() - 1)
                out.append(m.group() + self.transform(body[m.end() : close], caller) + ")")
                i = close + 1
                continue

            consumed = self._match_reference(body, i, caller, out)
            if consumed:
                i += consumed
                continue

            m = _NUMBER_RE.match(body, i)
            if m:
                out.append(m.group())
                i = m.end()
                continue

            m = _NAME_RE.match(body, i)
            if m:
                out.append(m.group())
                i = m.end()
                continue

            out.append(ch)
            i += 1

        return "".join(out)

    # -- references ----------------------------------------------------------

    def _match_reference(self, body: str, i: int, caller: Position, out: list[str]) -> int:
        """Expand a range or reference at *body[i]*; return characters consumed."""
        state = self._state

        m = _MATRIX_RANGE_RE.match(body, i)
        if m:
            start = resolve_reference(m.group(1), caller)
            end = resolve_reference(m.group(2), caller)
            self._emit(out, body[i], self._unfold(start, end, caller, matrix=True))
            return m.end() - i

        m = _RANGE_RE.match(body, i)
        if m:
            start = resolve_reference(m.group(1), caller)
            end = resolve_reference(m.group(2), caller)
            self._emit(out, body[i], self._unfold(start, end, caller, matrix=False))
            return m.end() - i

        for pattern, matrix in ((_MATRIX_COLUMN_RANGE_RE, True), (_COLUMN_RANGE_RE, False)):
            m = pattern.match(body, i)
            if m:
                start = (0, column_index(m.group(1)))
                end = (state.max_rows - 1, column_index(m.group(2)))
                out.append(self._unfold(start, end, caller, matrix=matrix))
                return m.end() - i

        for pattern, matrix in ((_MATRIX_ROW_RANGE_RE, True), (_ROW_RANGE_RE, False)):
            m = pattern.match(body, i)
            if m:
                start = (int(m.group(1)) - 1, 0)
                end = (int(m.group(2)) - 1, state.max_cols - 1)
                out.append(self._unfold(start, end, caller, matrix=matrix))
                return m.end() - i

        m = _CELL_RE.match(body, i)
        if m:
            position = resolve_reference(m.group(), caller)
            if not state.in_bounds(position):
                raise OutOfBounds()
            self._emit(out, body[i], self._read(position, caller))
            return m.end() - i

        return 0

    def _emit(self, out: list[str], first: str, literal: str) -> None:
        # "a1+0c-1r": the sign of a relative reference doubles as the operator
        if first in "+-" and out and _OPERAND_END.search("".join(out).rstrip()):
            out.append(first)
        out.append(literal)

    def _read(self, position: Position, caller: Position) -> str:
        # the edge exists only once the read has finished, failed or not
        try:
            value = self._fetch(position)
        finally:
            self._state.graph.add_edge(position, caller)
        return format_literal(value, self._state.settings.use_bool)

    def _unfold(self, start: Position, end: Position, caller: Position, matrix: bool) -> str:
        """Values of a rectangle: ``v,v,v`` or ``[[v,v],[v,v]]`` when *matrix*."""
        state = self._state
        (r0, c0), (r1, c1) = normalize_range(start, end, state.max_rows, state.max_cols)
        logger.debug(
            "Unfolding %s:%s for %s",
            position_to_ref((r0, c0)),
            position_to_ref((r1, c1)),
            position_to_ref(caller),
        )
        rows: list[str] = []
        for r in range(r0, r1 + 1):
            row = ",".join(self._read((r, c), caller) for c in range(c0, c1 + 1))
            rows.append(f"[{row}]" if matrix else row)
        body = ",".join(rows)
        return f"[{body}]" if matrix else body
