"""Evaluation settings."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class EvaluatorSettings:
    """Knobs for one :class:`~tablecalc.TableEvaluator`.

    Display concerns (precision, separators) belong to the caller.
    """

    use_bool: bool = False  # keep true/false instead of converting to 1/0
    max_formula_length: int = 1000
    cleanup_depth_limit: int = 10
    recompute_depth_limit: int = 100
    escape_marker: str = "'"  # "'=1+1" is shown as the literal "=1+1"

    def __post_init__(self) -> None:
        if self.max_formula_length < 1:
            raise ValueError("max_formula_length must be positive")
        if self.cleanup_depth_limit < 0 or self.recompute_depth_limit < 0:
            raise ValueError("depth limits must not be negative")
        if not self.escape_marker:
            raise ValueError("escape_marker must not be empty")
