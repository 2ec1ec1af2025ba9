"""Per-cell state and the table that holds it."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Sequence

from tablecalc._graph import DependencyGraph
from tablecalc._protocol import CellStatus, CellType, Position, TableResult
from tablecalc._settings import EvaluatorSettings
from tablecalc._units import parse_quantity

logger = logging.getLogger(__name__)

_INT_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?$")


@dataclass(slots=True)
class Cell:
    """Mutable evaluation state of one grid position."""

    value: Any = None
    formula: str | None = None  # raw text including the leading "="
    error: str | None = None
    cell_type: CellType = CellType.NUMBER
    status: CellStatus = CellStatus.COMPUTED


def classify(raw: Any, settings: EvaluatorSettings) -> Cell:
    """Build the initial :class:`Cell` for one raw grid entry."""
    if raw is None:
        return Cell()
    if not isinstance(raw, str):
        if isinstance(raw, (bool, int, float)):
            return Cell(value=raw)
        raw = str(raw)

    text = raw.strip()
    if not text:
        return Cell()
    if text.startswith("="):
        return Cell(value=text, formula=text, cell_type=CellType.FORMULA, status=CellStatus.NONE)

    marker = settings.escape_marker
    if text.startswith(marker + "="):
        return Cell(value=text[len(marker) :], cell_type=CellType.ESCAPED_TEXT)

    if _INT_RE.match(text):
        return Cell(value=int(text))
    if _FLOAT_RE.match(text):
        return Cell(value=float(text))

    quantity = parse_quantity(text)
    if quantity is not None:
        return Cell(value=quantity)

    return Cell(value=raw, cell_type=CellType.TEXT)


class TableState:
    """All cells of one grid plus the dependency graph between them."""

    __slots__ = ("cells", "max_rows", "max_cols", "graph", "settings")

    def __init__(self, grid: Sequence[Sequence[Any]], settings: EvaluatorSettings) -> None:
        self.settings = settings
        self.max_rows = len(grid)
        self.max_cols = max((len(row) for row in grid), default=0)
        self.graph = DependencyGraph()
        self.cells: dict[Position, Cell] = {}
        for r in range(self.max_rows):
            row = grid[r]
            for c in range(self.max_cols):
                raw = row[c] if c < len(row) else ""
                self.cells[(r, c)] = classify(raw, settings)
        logger.debug(
            "Loaded %dx%d grid with %d formulas",
            self.max_rows,
            self.max_cols,
            sum(1 for cell in self.cells.values() if cell.cell_type is CellType.FORMULA),
        )

    def __getitem__(self, position: Position) -> Cell:
        return self.cells[position]

    def in_bounds(self, position: Position) -> bool:
        row, col = position
        return 0 <= row < self.max_rows and 0 <= col < self.max_cols

    def positions(self) -> list[Position]:
        """Every position in row-major order."""
        return [(r, c) for r in range(self.max_rows) for c in range(self.max_cols)]

    def snapshot(self) -> TableResult:
        rows, cols = self.max_rows, self.max_cols
        parents, children = self.graph.snapshot(rows, cols)
        return TableResult(
            values=[[self.cells[(r, c)].value for c in range(cols)] for r in range(rows)],
            errors=[[self.cells[(r, c)].error for c in range(cols)] for r in range(rows)],
            cell_types=[[self.cells[(r, c)].cell_type for c in range(cols)] for r in range(rows)],
            parents=parents,
            children=children,
        )
