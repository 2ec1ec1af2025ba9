"""Cell tags, the result dataclass and the expression backend protocol."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

Position = tuple[int, int]


class CellType(enum.Enum):
    NUMBER = "number"
    TEXT = "text"
    FORMULA = "formula"
    MATRIX = "matrix"  # value written by another cell's spill
    ESCAPED_TEXT = "escaped-text"


class CellStatus(enum.Enum):
    NONE = "none"
    COMPUTING = "computing"
    COMPUTED = "computed"


@dataclass(frozen=True)
class TableResult:
    """Snapshot of one evaluation pass.

    All grids are row-major and share the input grid's shape.
    """

    values: list[list[Any]]
    errors: list[list[str | None]]
    cell_types: list[list[CellType]]
    parents: list[list[tuple[Position, ...]]]  # cells each cell read
    children: list[list[tuple[Position, ...]]]  # cells that read each cell

    @property
    def shape(self) -> tuple[int, int]:
        rows = len(self.values)
        return rows, len(self.values[0]) if rows else 0

    @property
    def has_errors(self) -> bool:
        return any(err is not None for row in self.errors for err in row)

    def error_cells(self) -> list[Position]:
        """Positions holding an error message, in row-major order."""
        return [
            (r, c)
            for r, row in enumerate(self.errors)
            for c, err in enumerate(row)
            if err is not None
        ]


@runtime_checkable
class ExpressionBackend(Protocol):
    """Evaluates a fully expanded expression string."""

    def evaluate(self, expression: str) -> Any:
        """Return a scalar, a quantity, or a (nested) list for array results.

        Raises :class:`~tablecalc.EvaluationFailure` when the expression is
        rejected.
        """
        ...
