"""End-to-end tests: raw text grids through evaluate_table."""

from __future__ import annotations

import pytest
from tablecalc import CellType, TableEvaluator, evaluate_table


class TestBasicTables:
    def test_sum_of_row(self) -> None:
        result = evaluate_table([["1", "2", "=a1+b1"]])
        assert result.values == [[1, 2, 3]]
        assert result.errors == [[None, None, None]]
        assert result.cell_types == [[CellType.NUMBER, CellType.NUMBER, CellType.FORMULA]]

    def test_sum_of_range(self) -> None:
        result = evaluate_table([["1"], ["2"], ["3"], ["=sum(a1:a3)"]])
        assert result.values[3][0] == 6

    def test_self_reference(self) -> None:
        result = evaluate_table([["=a1"], ["1"]])
        assert "loop" in result.errors[0][0]

    def test_matrix_literal_spills(self) -> None:
        result = evaluate_table([["=[[1,2],[3,4]]", ""], ["", ""]])
        assert result.values == [[1, 2], [3, 4]]
        assert result.cell_types == [
            [CellType.FORMULA, CellType.MATRIX],
            [CellType.MATRIX, CellType.MATRIX],
        ]

    def test_parents_and_children(self) -> None:
        result = evaluate_table([["1", "2", "=a1+b1"]])
        assert result.parents[0][2] == ((0, 0), (0, 1))
        assert result.children[0][0] == ((0, 2),)
        assert result.children[0][1] == ((0, 2),)

    def test_short_rows_padded(self) -> None:
        result = evaluate_table([["1", "2"], ["=a1*b1"]])
        assert result.shape == (2, 2)
        assert result.values == [[1, 2], [2, None]]

    def test_empty_grid(self) -> None:
        result = evaluate_table([])
        assert result.values == []
        assert result.shape == (0, 0)


class TestFormulas:
    def test_forward_reference_chain(self) -> None:
        result = evaluate_table([["=b1+1", "=c1+1", "=d1+1", "1"]])
        assert result.values == [[4, 3, 2, 1]]

    def test_column_and_row_ranges(self) -> None:
        grid = [["1", "2", ""], ["3", "4", "=sum(a:b)"], ["=sum(1:1)", "", ""]]
        result = evaluate_table(grid)
        assert result.values[1][2] == 13
        assert result.values[2][0] == 3

    def test_matrix_math(self) -> None:
        grid = [
            ["1", "2", "=det([a1:b2])"],
            ["3", "4", ""],
        ]
        result = evaluate_table(grid)
        assert result.values[0][2] == pytest.approx(-2)

    def test_relative_references(self) -> None:
        grid = [["10", "=-1c+0r*2"], ["20", "=-1c+0r*2"], ["=sum(a1:a2)", "=+0c-1r++0c-2r"]]
        result = evaluate_table(grid)
        assert result.values == [[10, 20], [20, 40], [30, 60]]

    def test_text_and_conditionals(self) -> None:
        grid = [["alice", "7", '=if(b1>5, upper(a1), "small")']]
        result = evaluate_table(grid)
        assert result.values[0][2] == "ALICE"

    def test_escaped_text_is_not_evaluated(self) -> None:
        result = evaluate_table([["'=1+1", "=a1"]])
        assert result.values == [["=1+1", "=1+1"]]
        assert result.cell_types[0][0] is CellType.ESCAPED_TEXT

    def test_text_with_double_underscore_is_readable(self) -> None:
        result = evaluate_table([["my__var", "=upper(a1)"]])
        assert result.values[0][1] == "MY__VAR"
        assert result.errors[0][1] is None

    def test_dangling_operator_is_an_error(self) -> None:
        result = evaluate_table([["1", "=a1+"]])
        assert result.errors[0][1] is not None


class TestUnits:
    def test_quantity_arithmetic(self) -> None:
        result = evaluate_table([["5 kg", "=a1*2", "=to(b1, g)"]])
        assert result.values[0][1].to("kg").magnitude == pytest.approx(10)
        assert result.values[0][2].magnitude == pytest.approx(10000)

    def test_sum_of_lengths(self) -> None:
        result = evaluate_table([["1 m"], ["50 cm"], ["=sum(a1:a2)"]])
        assert result.values[2][0].to("cm").magnitude == pytest.approx(150)


class TestDeterminism:
    GRID = [
        ["=b1*2", "=[c1, c1+1]", "3"],
        ["=a1+b2", "", ""],
        ["=sum(a1:c2)", "'=x", "text"],
    ]

    def test_same_result_twice(self) -> None:
        first = evaluate_table(self.GRID)
        second = evaluate_table(self.GRID)
        assert first == second

    def test_evaluator_reusable(self) -> None:
        ev = TableEvaluator()
        first = ev.evaluate_table(self.GRID)
        second = ev.evaluate_table(self.GRID)
        assert first.values == second.values

    def test_values(self) -> None:
        result = evaluate_table(self.GRID)
        assert result.values[0][0] == 6
        assert result.values[0][1] == 3
        assert result.values[1][1] == 4
        assert result.values[1][0] == 10
        assert result.values[2][0] == 26
