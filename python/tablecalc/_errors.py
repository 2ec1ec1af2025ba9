"""Exception hierarchy for formula evaluation.

Every failure inside a pass is turned into a per-cell message; these classes
only travel on the call stack while a formula is being computed.
"""

from __future__ import annotations


class FormulaError(Exception):
    """Base class for all errors raised while computing a cell."""


class InvalidReference(FormulaError):
    """A reference token failed to parse."""

    def __init__(self, message: str = "invalid cell reference") -> None:
        super().__init__(message)


class OutOfBounds(FormulaError):
    """A resolved reference points outside the grid."""

    def __init__(self, message: str = "cell out of table") -> None:
        super().__init__(message)


class CircularReference(FormulaError):
    """A cell was re-entered while still computing.

    The message is the reference text of the cell that raised it, so each
    level that re-raises can leave its own breadcrumb.
    """


InfiniteLoop = CircularReference


class MatrixLoop(CircularReference):
    """A spill would force its own origin formula to recompute."""


class MatrixOutOfBounds(FormulaError):
    """A spilled array would extend past the grid."""

    def __init__(self, message: str = "matrix extends beyond table") -> None:
        super().__init__(message)


class RecursionLimitExceeded(FormulaError):
    """Cleanup or cascading recompute went deeper than its guard."""


class EvaluationFailure(FormulaError):
    """The expression backend rejected the expanded expression."""


class ForbiddenPattern(FormulaError):
    """Formula text matched a denylisted pattern."""


class FormulaTooLong(FormulaError):
    """Formula text exceeded the configured length bound."""

    def __init__(self, message: str = "formula too long") -> None:
        super().__init__(message)
