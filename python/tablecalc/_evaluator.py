"""TableEvaluator: lazy, memoised evaluation of a grid of cells.

Each formula cell is computed on first use. References inside a formula are
expanded by :class:`~tablecalc._transformer.FormulaTransformer`, which calls
back into :meth:`TableEvaluator.get_value` for every cell it reads, so cells
are computed in dependency order without building a topological sort first.
A cell re-entered while still computing is a circular reference.

Failures never abort a pass: every error ends up as a message on the cell
that caused it (and, for reference failures, on every formula that read it).
"""

from __future__ import annotations

import json
import logging
from typing import Any, Sequence

from tablecalc._cells import Cell, TableState
from tablecalc._errors import (
    CircularReference,
    FormulaError,
    RecursionLimitExceeded,
)
from tablecalc._expression import MathEvaluator
from tablecalc._protocol import CellStatus, ExpressionBackend, Position, TableResult
from tablecalc._references import position_to_ref
from tablecalc._sanitize import sanitize_expression, sanitize_formula
from tablecalc._settings import EvaluatorSettings
from tablecalc._spill import SpillManager
from tablecalc._transformer import FormulaTransformer
from tablecalc._units import is_quantity

logger = logging.getLogger(__name__)


def _describe(exc: Exception) -> str:
    return str(exc) or type(exc).__name__


def _array_result(result: Any) -> list[Any] | None:
    """The result as a list when it should spill, else None."""
    if isinstance(result, (list, tuple)):
        return list(result)
    if isinstance(result, str) and result.lstrip().startswith("["):
        try:
            parsed = json.loads(result)
        except ValueError:
            return None
        if isinstance(parsed, list):
            return parsed
    return None


class TableEvaluator:
    """Evaluates one grid per :meth:`evaluate_table` call.

    Usage::

        evaluator = TableEvaluator()
        result = evaluator.evaluate_table([["1", "2", "=a1+b1"]])
        result.values  # [[1, 2, 3]]
    """

    def __init__(
        self,
        settings: EvaluatorSettings | None = None,
        backend: ExpressionBackend | None = None,
    ) -> None:
        self.settings = settings or EvaluatorSettings()
        self.backend: ExpressionBackend = backend or MathEvaluator()
        self._state: TableState | None = None
        self._transformer: FormulaTransformer | None = None
        self._spill: SpillManager | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def evaluate_table(self, grid: Sequence[Sequence[Any]]) -> TableResult:
        """Evaluate every cell of *grid* and return values, errors and links.

        *grid* is row-major; short rows are padded with empty cells.
        """
        self.load(grid)
        state = self.state
        for position in state.positions():
            try:
                self.get_value(position)
            except FormulaError as exc:
                logger.debug("Cell %s failed: %s", position_to_ref(position), exc)
            except Exception as exc:
                logger.exception("Unexpected error evaluating %s", position_to_ref(position))
                cell = state[position]
                if cell.error is None:
                    cell.error = _describe(exc)
                    cell.value = None
                cell.status = CellStatus.COMPUTED
        result = state.snapshot()
        logger.debug(
            "Evaluated %dx%d grid, %d cells with errors",
            state.max_rows,
            state.max_cols,
            len(result.error_cells()),
        )
        return result

    def load(self, grid: Sequence[Sequence[Any]]) -> None:
        """Classify *grid* into fresh cell state without computing anything."""
        self._state = TableState(grid, self.settings)
        self._transformer = FormulaTransformer(self._state, self.get_value)
        self._spill = SpillManager(self._state, self)

    @property
    def state(self) -> TableState:
        if self._state is None:
            raise RuntimeError("no table loaded; call evaluate_table() or load() first")
        return self._state

    def get_value(self, position: Position) -> Any:
        """Value of the cell at *position*, computing it if needed.

        Raises :class:`CircularReference` when the cell is already being
        computed further up the stack, and re-raises reference failures so
        the formula that read this cell fails too. Evaluation failures,
        including unexpected backend errors, are recorded on the cell and
        give ``None``.
        """
        state = self.state
        cell = state[position]
        if cell.status is CellStatus.COMPUTED:
            return cell.value
        ref = position_to_ref(position)
        if cell.status is CellStatus.COMPUTING:
            logger.debug("Circular reference at %s", ref)
            raise CircularReference(ref)

        if cell.formula is None:
            return self._refresh_spilled(position, cell)

        cell.status = CellStatus.COMPUTING
        cell.error = None
        logger.debug("Computing %s: %s", ref, cell.formula)

        try:
            body = sanitize_formula(cell.formula[1:], self.settings.max_formula_length)
            expression = self._transformer.transform(body, position)
        except CircularReference as exc:
            self._fail(cell, f"loop\n{exc}")
            raise CircularReference(ref) from exc
        except RecursionError as exc:
            self._fail(cell, "too high recursion on recompute")
            raise RecursionLimitExceeded("too high recursion on recompute") from exc
        except FormulaError as exc:
            self._fail(cell, str(exc))
            raise
        except Exception as exc:
            self._fail(cell, _describe(exc))
            raise

        try:
            expression = sanitize_expression(expression)
            logger.debug("Evaluating %s: %s", ref, expression)
            result = self.backend.evaluate(expression)
            return self._store(position, cell, result)
        except CircularReference as exc:
            self._fail(cell, str(exc))
            raise CircularReference(ref) from exc
        except FormulaError as exc:
            logger.debug("Evaluation of %s failed: %s", ref, exc)
            self._fail(cell, str(exc))
            return None
        except Exception as exc:
            logger.exception("Unexpected error evaluating %s", ref)
            self._fail(cell, _describe(exc))
            return None

    def compute_children(self, position: Position, depth: int = 0) -> None:
        """Recompute every invalidated reader of *position*, transitively."""
        if depth > self.settings.recompute_depth_limit:
            raise RecursionLimitExceeded("too high recursion on recompute")
        state = self.state
        for child in state.graph.readers_of(position):
            status = state[child].status
            if status is CellStatus.COMPUTED:
                continue
            try:
                self.get_value(child)
            except RecursionLimitExceeded:
                raise
            except FormulaError as exc:
                if status is CellStatus.COMPUTING:
                    raise
                logger.debug("Recomputing %s failed: %s", position_to_ref(child), exc)
            self.compute_children(child, depth + 1)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _store(self, position: Position, cell: Cell, result: Any) -> Any:
        if not is_quantity(result):
            values = _array_result(result)
            if values is not None:
                return self._spill.spill(position, values)
        cell.value = result
        cell.status = CellStatus.COMPUTED
        return result

    def _refresh_spilled(self, position: Position, cell: Cell) -> Any:
        """A spilled-into cell was invalidated: let its owner write it again."""
        for owner in self.state.graph.sources_of(position):
            if self.state[owner].status is CellStatus.NONE:
                self.get_value(owner)
        cell.status = CellStatus.COMPUTED
        return cell.value

    @staticmethod
    def _fail(cell: Cell, message: str) -> None:
        cell.error = message
        cell.value = None
        cell.status = CellStatus.COMPUTED


def evaluate_table(
    grid: Sequence[Sequence[Any]],
    settings: EvaluatorSettings | None = None,
    backend: ExpressionBackend | None = None,
) -> TableResult:
    """Evaluate *grid* with a fresh :class:`TableEvaluator`."""
    return TableEvaluator(settings, backend).evaluate_table(grid)
