"""Cell reference resolution: tokens like ``b3``, ``+1c-2r`` or ``2c5r``."""

from __future__ import annotations

import re

from tablecalc._errors import InvalidReference, OutOfBounds
from tablecalc._protocol import Position

# ---------------------------------------------------------------------------
# Regex building blocks
# ---------------------------------------------------------------------------

# Column: letters (absolute) or a number followed by "c"; a sign makes it relative.
COLUMN_PATTERN = r"(?:[a-z]+|[+-]?\d+c)"
# Row: digits (absolute, 1-based) or a number followed by "r"; a sign makes it relative.
ROW_PATTERN = r"(?:[+-]?\d+r|\d+)"
REFERENCE_PATTERN = COLUMN_PATTERN + ROW_PATTERN

_REFERENCE_RE = re.compile(r"^(?:([a-z]+)|([+-])?(\d+)c)(?:([+-])?(\d+)r|(\d+))$")


# ---------------------------------------------------------------------------
# Column letters
# ---------------------------------------------------------------------------


def column_index(letters: str) -> int:
    """Zero-based column for ``a``, ``b``, ..., ``z``, ``aa``, ..."""
    index = 0
    for ch in letters:
        index = index * 26 + (ord(ch) - ord("a") + 1)
    return index - 1


def column_letters(index: int) -> str:
    """Inverse of :func:`column_index`."""
    letters: list[str] = []
    index += 1
    while index > 0:
        index, rem = divmod(index - 1, 26)
        letters.append(chr(ord("a") + rem))
    return "".join(reversed(letters))


def position_to_ref(position: Position) -> str:
    """``(0, 0)`` -> ``"a1"``. Used in messages and logs."""
    row, col = position
    if col < 0 or row < 0:
        return f"[{row},{col}]"
    return f"{column_letters(col)}{row + 1}"


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def resolve_reference(token: str, origin: Position = (0, 0)) -> Position:
    """Resolve a reference token to a zero-based ``(row, col)``.

    *origin* is the position of the formula holding the token; signed numeric
    parts are offsets from it. An unsigned ``Nr``/``Nc`` is absolute and
    1-based, exactly like plain digits.

    The result is not bounds-checked.
    """
    m = _REFERENCE_RE.match(token)
    if not m:
        raise InvalidReference()
    letters, col_sign, col_num, row_sign, row_num_r, row_digits = m.groups()
    origin_row, origin_col = origin

    if letters is not None:
        col = column_index(letters)
    elif col_sign:
        col = origin_col + int(col_sign + col_num)
    else:
        col = int(col_num) - 1

    if row_digits is not None:
        row = int(row_digits) - 1
    elif row_sign:
        row = origin_row + int(row_sign + row_num_r)
    else:
        row = int(row_num_r) - 1

    return row, col


def normalize_range(
    start: Position,
    end: Position,
    max_rows: int,
    max_cols: int,
) -> tuple[Position, Position]:
    """Order both corners of a range and clamp the far corner to the grid.

    Raises :class:`OutOfBounds` when the near corner lies outside the grid.
    """
    r0, r1 = sorted((start[0], end[0]))
    c0, c1 = sorted((start[1], end[1]))
    if r0 < 0 or c0 < 0 or r0 >= max_rows or c0 >= max_cols:
        raise OutOfBounds()
    return (r0, c0), (min(r1, max_rows - 1), min(c1, max_cols - 1))
