"""Tests for array results spilling across neighbouring cells."""

from __future__ import annotations

import pytest
from tablecalc import CellStatus, CellType, EvaluatorSettings, TableEvaluator, evaluate_table
from tablecalc._errors import CircularReference, MatrixLoop, RecursionLimitExceeded
from tablecalc._spill import as_matrix


class TestAsMatrix:
    def test_flat_list_becomes_column(self) -> None:
        assert as_matrix([1, 2, 3]) == [[1], [2], [3]]

    def test_nested_kept(self) -> None:
        assert as_matrix([[1, 2], [3, 4]]) == [[1, 2], [3, 4]]

    def test_scalar(self) -> None:
        assert as_matrix(5) == [[5]]


class TestSpill:
    def test_two_by_two(self) -> None:
        result = evaluate_table([["=[[1,2],[3,4]]", ""], ["", ""]])
        assert result.values == [[1, 2], [3, 4]]
        assert result.cell_types == [
            [CellType.FORMULA, CellType.MATRIX],
            [CellType.MATRIX, CellType.MATRIX],
        ]
        assert not result.has_errors

    def test_spilled_cells_become_children(self) -> None:
        result = evaluate_table([["=[1,2]"], [""]])
        assert result.children[0][0] == ((1, 0),)
        assert result.parents[1][0] == ((0, 0),)

    def test_overwrites_literal_and_formula(self) -> None:
        result = evaluate_table([["=[5,6,7]"], ["99"], ["=1+1"]])
        assert result.values == [[5], [6], [7]]
        assert result.errors == [[None], [None], [None]]

    def test_beyond_table(self) -> None:
        result = evaluate_table([["=[1,2,3]"], [""]])
        assert result.errors[0][0] == "matrix extends beyond table"
        assert result.values[0][0] is None

    def test_empty_array(self) -> None:
        result = evaluate_table([["=[]"]])
        assert result.errors[0][0] == "matrix is empty"

    def test_from_matrix_range(self) -> None:
        grid = [["1", "2", "=transpose([a1:b1])"], ["", "", ""]]
        result = evaluate_table(grid)
        assert result.values[0][2] == 1
        assert result.values[1][2] == 2

    def test_readers_recomputed_after_spill(self) -> None:
        # a1 reads b2 and b3 before b1 spills into them
        grid = [["=b2+b3", "=[1,2,3]"], ["", ""], ["", ""]]
        result = evaluate_table(grid)
        assert result.values[0][0] == 5
        assert result.values[0][1] == 1
        assert result.errors[0][0] is None

    def test_respill_after_input_spill(self) -> None:
        grid = [["=[b3, b3*2]", "=[7,8,9]"], ["", ""], ["", ""]]
        result = evaluate_table(grid)
        assert [row[0] for row in result.values[:2]] == [9, 18]
        assert [row[1] for row in result.values] == [7, 8, 9]

    def test_reading_own_spill_is_a_matrix_loop(self) -> None:
        result = evaluate_table([["=[1, a2]"], [""]])
        assert result.errors[0][0].startswith("matrix loop")

    def test_spill_over_cell_read_by_computing_formula(self) -> None:
        # a1 has read b2 before b1 spills into it
        result = evaluate_table([["=b2+b1", "=[[7],[8]]"], ["", ""]])
        assert result.errors[0][1] == "matrix loop\nb2"
        assert result.errors[0][0] == "loop\nb1"
        assert result.values[0][0] is None
        assert result.values[1][1] is None

    def test_spill_under_computing_formula_through_other_cell(self) -> None:
        # a1 reads c2 through b1, then c1 spills into c2
        result = evaluate_table([["=b1+c1", "=c2", "=[[7],[8]]"], ["", "", ""]])
        assert result.errors[0][2] == "matrix loop\nb1"
        assert result.errors[0][0] == "loop\nc1"
        assert result.values[0][1] == 0
        assert result.values[1][2] is None

    def test_reading_spilled_cell_that_respills(self) -> None:
        ev = TableEvaluator()
        ev.load([["=[1,2]", "=a2*10"], ["", ""]])
        ev.get_value((0, 0))
        ev.state[(0, 0)].status = CellStatus.NONE
        ev.state[(1, 0)].status = CellStatus.NONE
        assert ev.get_value((0, 1)) == 20
        assert ev.state[(0, 0)].error is None

    def test_cleanup_depth_limit(self) -> None:
        grid = [["=d2", "=a1", "=b1", "=[1,2]"], ["", "", "", ""]]
        result = evaluate_table(grid, EvaluatorSettings(cleanup_depth_limit=1))
        assert result.errors[0][3] == "too high recursion on cleanup"


class TestSpillManager:
    def test_invalidate_detects_origin(self) -> None:
        ev = TableEvaluator()
        ev.load([["=a2", ""], ["", ""]])
        ev.state.graph.add_edge((1, 0), (0, 0))
        with pytest.raises(MatrixLoop, match="matrix loop"):
            ev._spill.invalidate((1, 0), (0, 0))

    def test_invalidate_depth(self) -> None:
        ev = TableEvaluator(EvaluatorSettings(cleanup_depth_limit=0))
        ev.load([["1", "=a1", "=b1"]])
        ev.get_value((0, 2))
        with pytest.raises(RecursionLimitExceeded, match="cleanup"):
            ev._spill.invalidate((0, 0), (5, 5))

    def test_compute_children_rejects_computing_reader(self) -> None:
        ev = TableEvaluator()
        ev.load([["1", "=a1"]])
        ev.state.graph.add_edge((0, 0), (0, 1))
        ev.state[(0, 1)].status = CellStatus.COMPUTING
        with pytest.raises(CircularReference):
            ev.compute_children((0, 0))

    def test_compute_children_depth(self) -> None:
        ev = TableEvaluator(EvaluatorSettings(recompute_depth_limit=0))
        ev.load([["1"]])
        with pytest.raises(RecursionLimitExceeded, match="recompute"):
            ev.compute_children((0, 0), depth=1)
