"""Tests for the builtin function library."""

from __future__ import annotations

import math

import numpy as np
import pytest
from tablecalc import is_supported
from tablecalc._functions import (
    FunctionRegistry,
    divide,
    flatten,
    power,
    to_number,
)
from tablecalc._units import parse_quantity


def call(name: str, *args: object) -> object:
    func = FunctionRegistry().get(name)
    assert func is not None, name
    return func(list(args))


class TestCoercion:
    def test_to_number(self) -> None:
        assert to_number(True) == 1
        assert to_number(None) == 0
        assert to_number("42") == 42
        assert to_number(" 2.5 ") == 2.5
        assert to_number(np.int64(3)) == 3

    def test_to_number_quantity_text(self) -> None:
        q = to_number("3 m")
        assert q.magnitude == 3

    def test_to_number_rejects_text(self) -> None:
        with pytest.raises(TypeError, match="Cannot convert"):
            to_number("abc")

    def test_flatten(self) -> None:
        assert flatten([1, [2, [3]], np.array([4, 5])]) == [1, 2, 3, 4, 5]


class TestArithmeticHelpers:
    def test_divide_by_zero(self) -> None:
        assert divide(3, 0) == math.inf
        assert divide(-3, 0) == -math.inf
        assert math.isnan(divide(0, 0))

    def test_power_scalar(self) -> None:
        assert power(2, 10) == 1024

    def test_power_matrix(self) -> None:
        result = power(np.array([[1, 1], [1, 0]]), 5)
        assert result.tolist() == [[8, 5], [5, 3]]

    def test_power_elementwise_for_vector(self) -> None:
        assert power(np.array([1, 2, 3]), 2).tolist() == [1, 4, 9]


class TestMath:
    def test_elementwise(self) -> None:
        assert call("abs", -3) == 3
        assert call("sqrt", np.array([4, 9])).tolist() == [2, 3]
        assert call("floor", 2.7) == 2
        assert call("fix", -2.7) == -2

    def test_log(self) -> None:
        assert call("log", math.e) == pytest.approx(1)
        assert call("log", 8, 2) == pytest.approx(3)
        assert call("log10", 1000) == pytest.approx(3)

    def test_round_half_away_from_zero(self) -> None:
        assert call("round", 2.5) == 3
        assert call("round", -2.5) == -3
        assert call("round", 3.14159, 2) == pytest.approx(3.14)

    def test_integer_helpers(self) -> None:
        assert call("gcd", 12, 18) == 6
        assert call("lcm", 4, 6) == 12
        assert call("factorial", 5) == 120
        assert call("mod", 7, 3) == 1

    def test_factorial_rejects_fraction(self) -> None:
        with pytest.raises(ValueError):
            call("factorial", 2.5)

    def test_arity_checked(self) -> None:
        with pytest.raises(TypeError, match="exactly 1 argument"):
            call("sqrt", 1, 2)


class TestStatistics:
    def test_aggregates(self) -> None:
        assert call("sum", 1, [2, 3]) == 6
        assert call("prod", 2, 3, 4) == 24
        assert call("mean", 1, 2, 3, 4) == 2.5
        assert call("median", 3, 1, 2) == 2
        assert call("min", [4, 2, 8]) == 2
        assert call("max", 4, 2, 8) == 8
        assert call("count", [1, 2, 3]) == 3

    def test_spread(self) -> None:
        assert call("variance", 2, 4, 4, 4, 5, 5, 7, 9) == pytest.approx(32 / 7)
        assert call("std", 1, 3) == pytest.approx(math.sqrt(2))

    def test_empty(self) -> None:
        assert call("sum") == 0
        with pytest.raises(ValueError):
            call("mean")

    def test_sum_of_quantities(self) -> None:
        total = call("sum", parse_quantity("1 m"), parse_quantity("50 cm"))
        assert total.to("cm").magnitude == pytest.approx(150)


class TestMatrix:
    def test_det_and_inv(self) -> None:
        assert call("det", np.array([[1, 2], [3, 4]])) == pytest.approx(-2)
        inv = call("inv", np.array([[2, 0], [0, 4]]))
        assert inv.tolist() == [[0.5, 0], [0, 0.25]]

    def test_shapes(self) -> None:
        assert call("transpose", np.array([[1, 2, 3]])).tolist() == [[1], [2], [3]]
        assert call("size", np.array([[1, 2, 3]])).tolist() == [1, 3]
        assert call("zeros", 2, 3).tolist() == [[0, 0, 0], [0, 0, 0]]
        assert call("identity", 2).tolist() == [[1, 0], [0, 1]]

    def test_range(self) -> None:
        assert call("range", 0, 4).tolist() == [0, 1, 2, 3]
        assert call("range", 0, 10, 5).tolist() == [0, 5]

    def test_products(self) -> None:
        assert call("dot", np.array([1, 2, 3]), np.array([4, 5, 6])) == 32
        assert call("cross", np.array([1, 0, 0]), np.array([0, 1, 0])).tolist() == [0, 0, 1]
        assert call("trace", np.array([[1, 2], [3, 4]])) == 5
        assert call("cumsum", np.array([1, 2, 3])).tolist() == [1, 3, 6]


class TestLogicAndText:
    def test_if(self) -> None:
        assert call("if", True, "yes", "no") == "yes"
        assert call("if", 0, "yes", "no") == "no"
        assert call("if", 0, "yes") is False

    def test_boolean_ops(self) -> None:
        assert call("and", 1, True) is True
        assert call("or", 0, "") is False
        assert call("not", 0) is True
        assert call("xor", 1, 1, 1) is True

    def test_text(self) -> None:
        assert call("concat", "ab", "cd") == "abcd"
        assert call("concat", np.array([1, 2]), np.array([3])).tolist() == [1, 2, 3]
        assert call("lower", "ABC") == "abc"
        assert call("string", 12) == "12"
        assert call("number", "7") == 7

    def test_units(self) -> None:
        assert call("number", parse_quantity("2 km"), "m") == pytest.approx(2000)
        q = call("unit", 5, "kg")
        assert str(q.units) == "kilogram"
        assert call("to", q, "g").magnitude == pytest.approx(5000)


class TestRegistry:
    def test_case_insensitive(self) -> None:
        reg = FunctionRegistry()
        assert reg.has("SUM")
        assert reg.get("Sum") is reg.get("sum")

    def test_register(self) -> None:
        reg = FunctionRegistry()
        reg.register("Twice", lambda args: args[0] * 2)
        assert reg.get("twice")([4]) == 8
        assert "twice" in reg.supported_functions

    def test_registries_are_independent(self) -> None:
        FunctionRegistry().register("only_here", lambda args: 1)
        assert not FunctionRegistry().has("only_here")

    def test_is_supported(self) -> None:
        assert is_supported("det")
        assert not is_supported("vlookup")
