"""SpillManager: writes an array result across the cells below and right of it."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from tablecalc._cells import TableState
from tablecalc._errors import (
    EvaluationFailure,
    MatrixLoop,
    MatrixOutOfBounds,
    RecursionLimitExceeded,
)
from tablecalc._protocol import CellStatus, CellType, Position
from tablecalc._references import position_to_ref

if TYPE_CHECKING:
    from tablecalc._evaluator import TableEvaluator

logger = logging.getLogger(__name__)


def as_matrix(values: Any) -> list[list[Any]]:
    """Normalise a list result to rows; a flat list becomes a single column."""
    if not isinstance(values, (list, tuple)):
        return [[values]]
    if values and all(isinstance(v, (list, tuple)) for v in values):
        return [list(row) for row in values]
    return [[v] for v in values]


class SpillManager:
    """Distributes array results and keeps the dependency graph consistent.

    Every spilled-into cell becomes a child of the origin formula. Formulas
    that read a spilled-into cell are invalidated and recomputed so they see
    the new values.
    """

    def __init__(self, state: TableState, evaluator: TableEvaluator) -> None:
        self._state = state
        self._evaluator = evaluator

    def spill(self, origin: Position, values: Any) -> Any:
        """Write *values* starting at *origin* and return the top-left value."""
        state = self._state
        settings = state.settings
        matrix = as_matrix(values)
        if not matrix or not matrix[0]:
            raise EvaluationFailure("matrix is empty")

        height = len(matrix)
        width = max(len(row) for row in matrix)
        row0, col0 = origin
        if row0 + height > state.max_rows or col0 + width > state.max_cols:
            raise MatrixOutOfBounds()

        targets: list[Position] = [
            (row0 + dr, col0 + dc)
            for dr in range(height)
            for dc in range(len(matrix[dr]))
        ]
        for position in targets:
            if position != origin and state[position].status is CellStatus.COMPUTING:
                raise MatrixLoop(f"matrix loop\n{position_to_ref(position)}")
        self._check_readers([p for p in targets if p != origin])

        logger.debug(
            "Spilling %dx%d matrix from %s", height, width, position_to_ref(origin)
        )

        for position in targets:
            value = matrix[position[0] - row0][position[1] - col0]
            if isinstance(value, bool) and not settings.use_bool:
                value = int(value)
            state[position].value = value

        origin_cell = state[origin]
        origin_cell.status = CellStatus.COMPUTED

        spilled = [p for p in targets if p != origin]
        for position in spilled:
            cell = state[position]
            cell.formula = None
            cell.error = None
            cell.status = CellStatus.COMPUTED
            state.graph.detach(position)
            try:
                self.invalidate(position, origin)
            except MatrixLoop as exc:
                logger.debug("Spill from %s reaches itself: %s", position_to_ref(origin), exc)
                origin_cell.error = str(exc)
            state.graph.add_edge(origin, position)
            cell.cell_type = CellType.MATRIX

        if origin_cell.status is not CellStatus.COMPUTED:
            raise MatrixLoop("matrix loop")

        for position in spilled:
            self._evaluator.compute_children(position)

        return matrix[0][0]

    def _check_readers(self, targets: list[Position]) -> None:
        """Raise :class:`MatrixLoop` when a formula still being computed has
        already read one of *targets*, directly or through other cells.
        """
        graph = self._state.graph
        seen: set[Position] = set()
        pending = list(targets)
        while pending:
            position = pending.pop()
            for reader in graph.readers_of(position):
                if reader in seen:
                    continue
                seen.add(reader)
                if self._state[reader].status is CellStatus.COMPUTING:
                    raise MatrixLoop(f"matrix loop\n{position_to_ref(position)}")
                pending.append(reader)

    def invalidate(self, position: Position, origin: Position, depth: int = 0) -> None:
        """Reset every computed reader of *position* so it is recomputed.

        Raises :class:`MatrixLoop` when the walk reaches *origin*.
        """
        limit = self._state.settings.cleanup_depth_limit
        if depth > limit:
            raise RecursionLimitExceeded("too high recursion on cleanup")
        for child in self._state.graph.readers_of(position):
            if child == origin:
                raise MatrixLoop(f"matrix loop\n{position_to_ref(position)}")
            cell = self._state[child]
            if cell.status is CellStatus.COMPUTED:
                logger.debug("Invalidating %s", position_to_ref(child))
                cell.status = CellStatus.NONE
                self.invalidate(child, origin, depth + 1)
