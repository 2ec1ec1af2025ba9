"""Function library for the math expression evaluator.

Names follow the usual math-library spelling (``sum``, ``mean``, ``det``)
and are looked up case-insensitively. Every builtin takes the list of already
evaluated arguments.
"""

from __future__ import annotations

import functools
import math
import operator
import re
import statistics
from typing import Any, Callable

import numpy as np

from tablecalc._units import is_quantity, parse_quantity, unit_registry

# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------

_INT_RE = re.compile(r"^[+-]?\d+$")


def to_number(value: Any) -> Any:
    """Coerce a scalar operand to a number (quantities pass through).

    Raises TypeError for text that is not numeric.
    """
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)) or is_quantity(value):
        return value
    if isinstance(value, np.generic):
        return value.item()
    if value is None:
        return 0
    if isinstance(value, str):
        text = value.strip()
        if _INT_RE.match(text):
            return int(text)
        try:
            return float(text)
        except ValueError:
            pass
        quantity = parse_quantity(text)
        if quantity is not None:
            return quantity
        raise TypeError(f'Cannot convert "{value}" to a number')
    raise TypeError(f"Cannot convert {value!r} to a number")


def to_operand(value: Any) -> Any:
    """Like :func:`to_number` but keeps arrays as numpy arrays."""
    if isinstance(value, np.ndarray):
        return value
    if isinstance(value, (list, tuple)):
        return np.asarray(value)
    return to_number(value)


def flatten(values: Any) -> list[Any]:
    """Flatten nested lists, numpy arrays and array-valued quantities."""
    result: list[Any] = []
    for v in values:
        if isinstance(v, np.ndarray):
            result.extend(flatten(v.tolist()))
        elif isinstance(v, (list, tuple)):
            result.extend(flatten(v))
        elif is_quantity(v) and np.ndim(v.magnitude) > 0:
            result.extend(m * v.units for m in np.ravel(v.magnitude).tolist())
        else:
            result.append(v)
    return result


def _coerce_numeric(values: list[Any]) -> list[Any]:
    """Flatten and coerce every element to a number or quantity."""
    return [to_number(v) for v in flatten(values)]


def _expect(name: str, args: list[Any], low: int, high: int | None = None) -> None:
    high = low if high is None else high
    if not low <= len(args) <= high:
        if low == high:
            raise TypeError(f"{name} requires exactly {low} argument{'s' if low != 1 else ''}")
        raise TypeError(f"{name} requires {low} to {high} arguments")


def _truthy(value: Any) -> bool:
    if isinstance(value, np.ndarray):
        return bool(value.size) and bool(np.all(value))
    if isinstance(value, str):
        return value != ""
    return bool(value)


# ---------------------------------------------------------------------------
# Arithmetic shared with the expression evaluator
# ---------------------------------------------------------------------------


def power(base: Any, exponent: Any) -> Any:
    base, exponent = to_operand(base), to_operand(exponent)
    if (
        isinstance(base, np.ndarray)
        and base.ndim == 2
        and isinstance(exponent, int)
    ):
        return np.linalg.matrix_power(base, exponent)
    if isinstance(base, np.ndarray) or isinstance(exponent, np.ndarray):
        return np.power(base, exponent)
    result = base**exponent
    if isinstance(result, complex):
        raise ValueError("complex results are not supported")
    return result


def divide(left: Any, right: Any) -> Any:
    left, right = to_operand(left), to_operand(right)
    if isinstance(left, (int, float)) and isinstance(right, (int, float)) and right == 0:
        if left == 0 or math.isnan(left):
            return math.nan
        return math.copysign(math.inf, left)
    return left / right


def _round_half_away(x: float, digits: int) -> float:
    factor = 10.0**digits
    return math.copysign(math.floor(abs(x) * factor + 0.5) / factor, x)


# ---------------------------------------------------------------------------
# Builtins
# ---------------------------------------------------------------------------


def _elementwise(ufunc: Callable[[Any], Any], name: str) -> Callable[[list[Any]], Any]:
    def builtin(args: list[Any]) -> Any:
        _expect(name, args, 1)
        return ufunc(to_operand(args[0]))

    builtin.__name__ = f"_builtin_{name}"
    return builtin


def _builtin_sum(args: list[Any]) -> Any:
    nums = _coerce_numeric(args)
    return functools.reduce(operator.add, nums) if nums else 0


def _builtin_prod(args: list[Any]) -> Any:
    nums = _coerce_numeric(args)
    return functools.reduce(operator.mul, nums) if nums else 1


def _builtin_mean(args: list[Any]) -> Any:
    nums = _coerce_numeric(args)
    if not nums:
        raise ValueError("mean requires at least 1 value")
    return functools.reduce(operator.add, nums) / len(nums)


def _builtin_median(args: list[Any]) -> Any:
    nums = _coerce_numeric(args)
    if not nums:
        raise ValueError("median requires at least 1 value")
    return statistics.median(nums)


def _builtin_min(args: list[Any]) -> Any:
    nums = _coerce_numeric(args)
    if not nums:
        raise ValueError("min requires at least 1 value")
    return min(nums)


def _builtin_max(args: list[Any]) -> Any:
    nums = _coerce_numeric(args)
    if not nums:
        raise ValueError("max requires at least 1 value")
    return max(nums)


def _builtin_std(args: list[Any]) -> float:
    nums = _coerce_numeric(args)
    if len(nums) < 2:
        raise ValueError("std requires at least 2 values")
    return statistics.stdev(nums)


def _builtin_variance(args: list[Any]) -> float:
    nums = _coerce_numeric(args)
    if len(nums) < 2:
        raise ValueError("variance requires at least 2 values")
    return statistics.variance(nums)


def _builtin_count(args: list[Any]) -> int:
    if len(args) == 1 and isinstance(args[0], str):
        return len(args[0])
    return len(flatten(args))


def _builtin_log(args: list[Any]) -> Any:
    _expect("log", args, 1, 2)
    x = to_operand(args[0])
    if len(args) == 1:
        return np.log(x)
    return np.log(x) / np.log(to_operand(args[1]))


def _builtin_pow(args: list[Any]) -> Any:
    _expect("pow", args, 2)
    return power(args[0], args[1])


def _builtin_round(args: list[Any]) -> Any:
    _expect("round", args, 1, 2)
    digits = int(to_number(args[1])) if len(args) > 1 else 0
    x = to_operand(args[0])
    if isinstance(x, np.ndarray):
        return np.vectorize(lambda v: _round_half_away(float(v), digits))(x)
    if is_quantity(x):
        return _round_half_away(float(x.magnitude), digits) * x.units
    return _round_half_away(float(x), digits)


def _builtin_mod(args: list[Any]) -> Any:
    _expect("mod", args, 2)
    return to_operand(args[0]) % to_operand(args[1])


def _builtin_gcd(args: list[Any]) -> int:
    nums = [int(n) for n in _coerce_numeric(args)]
    if not nums:
        raise ValueError("gcd requires at least 1 value")
    return functools.reduce(math.gcd, nums)


def _builtin_lcm(args: list[Any]) -> int:
    nums = [int(n) for n in _coerce_numeric(args)]
    if not nums:
        raise ValueError("lcm requires at least 1 value")
    return functools.reduce(lambda a, b: abs(a * b) // math.gcd(a, b) if a and b else 0, nums)


def _builtin_hypot(args: list[Any]) -> float:
    return math.hypot(*(float(n) for n in _coerce_numeric(args)))


def _builtin_factorial(args: list[Any]) -> int:
    _expect("factorial", args, 1)
    n = to_number(args[0])
    if int(n) != n or n < 0:
        raise ValueError("factorial requires a non-negative integer")
    return math.factorial(int(n))


def _builtin_atan2(args: list[Any]) -> Any:
    _expect("atan2", args, 2)
    return np.arctan2(to_operand(args[0]), to_operand(args[1]))


# Matrix functions


def _as_matrix(value: Any) -> np.ndarray:
    arr = to_operand(value)
    if not isinstance(arr, np.ndarray):
        arr = np.asarray([[arr]])
    return arr


def _builtin_det(args: list[Any]) -> float:
    _expect("det", args, 1)
    return float(np.linalg.det(_as_matrix(args[0]).astype(float)))


def _builtin_inv(args: list[Any]) -> np.ndarray:
    _expect("inv", args, 1)
    return np.linalg.inv(_as_matrix(args[0]).astype(float))


def _builtin_transpose(args: list[Any]) -> np.ndarray:
    _expect("transpose", args, 1)
    return np.transpose(_as_matrix(args[0]))


def _builtin_size(args: list[Any]) -> np.ndarray:
    _expect("size", args, 1)
    value = args[0]
    if isinstance(value, str):
        return np.asarray([len(value)])
    return np.asarray(np.shape(to_operand(value)))


def _shape_args(name: str, args: list[Any]) -> tuple[int, ...]:
    _expect(name, args, 1, 2)
    return tuple(int(to_number(a)) for a in args)


def _builtin_zeros(args: list[Any]) -> np.ndarray:
    return np.zeros(_shape_args("zeros", args), dtype=int)


def _builtin_ones(args: list[Any]) -> np.ndarray:
    return np.ones(_shape_args("ones", args), dtype=int)


def _builtin_identity(args: list[Any]) -> np.ndarray:
    shape = _shape_args("identity", args)
    return np.eye(shape[0], shape[-1], dtype=int)


def _builtin_range(args: list[Any]) -> np.ndarray:
    _expect("range", args, 2, 3)
    start, end = to_number(args[0]), to_number(args[1])
    step = to_number(args[2]) if len(args) > 2 else 1
    if step == 0:
        raise ValueError("range step must not be zero")
    return np.arange(start, end, step)


def _builtin_flatten(args: list[Any]) -> np.ndarray:
    _expect("flatten", args, 1)
    return np.ravel(_as_matrix(args[0]))


def _builtin_dot(args: list[Any]) -> Any:
    _expect("dot", args, 2)
    return np.dot(np.ravel(to_operand(args[0])), np.ravel(to_operand(args[1])))


def _builtin_cross(args: list[Any]) -> np.ndarray:
    _expect("cross", args, 2)
    return np.cross(to_operand(args[0]), to_operand(args[1]))


def _builtin_trace(args: list[Any]) -> Any:
    _expect("trace", args, 1)
    return np.trace(_as_matrix(args[0]))


def _builtin_diag(args: list[Any]) -> np.ndarray:
    _expect("diag", args, 1)
    return np.diag(to_operand(args[0]))


def _builtin_cumsum(args: list[Any]) -> np.ndarray:
    _expect("cumsum", args, 1)
    return np.cumsum(to_operand(args[0]))


def _builtin_concat(args: list[Any]) -> Any:
    if not args:
        raise TypeError("concat requires at least 1 argument")
    if all(isinstance(a, str) for a in args):
        return "".join(args)
    arrays = [np.atleast_1d(to_operand(a)) for a in args]
    return np.concatenate(arrays, axis=-1)


# Logic


def _builtin_if(args: list[Any]) -> Any:
    _expect("if", args, 2, 3)
    if _truthy(args[0]):
        return args[1]
    return args[2] if len(args) > 2 else False


def _builtin_and(args: list[Any]) -> bool:
    if not args:
        raise TypeError("and requires at least 1 argument")
    return all(_truthy(a) for a in args)


def _builtin_or(args: list[Any]) -> bool:
    if not args:
        raise TypeError("or requires at least 1 argument")
    return any(_truthy(a) for a in args)


def _builtin_not(args: list[Any]) -> bool:
    _expect("not", args, 1)
    return not _truthy(args[0])


def _builtin_xor(args: list[Any]) -> bool:
    if not args:
        raise TypeError("xor requires at least 1 argument")
    return sum(_truthy(a) for a in args) % 2 == 1


# Text


def _builtin_upper(args: list[Any]) -> str:
    _expect("upper", args, 1)
    return str(args[0]).upper()


def _builtin_lower(args: list[Any]) -> str:
    _expect("lower", args, 1)
    return str(args[0]).lower()


def _builtin_string(args: list[Any]) -> str:
    _expect("string", args, 1)
    return str(args[0])


def _builtin_number(args: list[Any]) -> Any:
    _expect("number", args, 1, 2)
    value = to_number(args[0])
    if len(args) == 2:
        if not is_quantity(value):
            raise TypeError("number with a unit requires a quantity")
        return value.to(str(args[1])).magnitude
    if is_quantity(value):
        return value.magnitude
    return value


# Units


def _builtin_unit(args: list[Any]) -> Any:
    _expect("unit", args, 1, 2)
    registry = unit_registry()
    if len(args) == 2:
        return registry.Quantity(to_number(args[0]), str(args[1]))
    if is_quantity(args[0]):
        return args[0]
    return registry.Quantity(str(args[0]))


def _builtin_to(args: list[Any]) -> Any:
    _expect("to", args, 2)
    value = to_number(args[0])
    if not is_quantity(value):
        raise TypeError("to requires a quantity")
    target = args[1].units if is_quantity(args[1]) else str(args[1])
    return value.to(target)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_BUILTINS: dict[str, Callable[[list[Any]], Any]] = {
    # Math
    "abs": _elementwise(np.abs, "abs"),
    "sqrt": _elementwise(np.sqrt, "sqrt"),
    "cbrt": _elementwise(np.cbrt, "cbrt"),
    "exp": _elementwise(np.exp, "exp"),
    "log": _builtin_log,
    "log10": _elementwise(np.log10, "log10"),
    "log2": _elementwise(np.log2, "log2"),
    "pow": _builtin_pow,
    "round": _builtin_round,
    "floor": _elementwise(np.floor, "floor"),
    "ceil": _elementwise(np.ceil, "ceil"),
    "fix": _elementwise(np.trunc, "fix"),
    "sign": _elementwise(np.sign, "sign"),
    "mod": _builtin_mod,
    "gcd": _builtin_gcd,
    "lcm": _builtin_lcm,
    "hypot": _builtin_hypot,
    "factorial": _builtin_factorial,
    # Trigonometry
    "sin": _elementwise(np.sin, "sin"),
    "cos": _elementwise(np.cos, "cos"),
    "tan": _elementwise(np.tan, "tan"),
    "asin": _elementwise(np.arcsin, "asin"),
    "acos": _elementwise(np.arccos, "acos"),
    "atan": _elementwise(np.arctan, "atan"),
    "atan2": _builtin_atan2,
    "sinh": _elementwise(np.sinh, "sinh"),
    "cosh": _elementwise(np.cosh, "cosh"),
    "tanh": _elementwise(np.tanh, "tanh"),
    # Statistics
    "sum": _builtin_sum,
    "prod": _builtin_prod,
    "mean": _builtin_mean,
    "median": _builtin_median,
    "min": _builtin_min,
    "max": _builtin_max,
    "std": _builtin_std,
    "variance": _builtin_variance,
    "count": _builtin_count,
    # Matrix
    "det": _builtin_det,
    "inv": _builtin_inv,
    "transpose": _builtin_transpose,
    "size": _builtin_size,
    "zeros": _builtin_zeros,
    "ones": _builtin_ones,
    "identity": _builtin_identity,
    "range": _builtin_range,
    "flatten": _builtin_flatten,
    "dot": _builtin_dot,
    "cross": _builtin_cross,
    "trace": _builtin_trace,
    "diag": _builtin_diag,
    "cumsum": _builtin_cumsum,
    # Logic
    "if": _builtin_if,
    "and": _builtin_and,
    "or": _builtin_or,
    "not": _builtin_not,
    "xor": _builtin_xor,
    # Text
    "concat": _builtin_concat,
    "upper": _builtin_upper,
    "lower": _builtin_lower,
    "string": _builtin_string,
    "number": _builtin_number,
    # Units
    "unit": _builtin_unit,
    "to": _builtin_to,
}


def is_supported(func_name: str) -> bool:
    """Check if a function name has a builtin implementation."""
    return func_name.lower() in _BUILTINS


class FunctionRegistry:
    """Registry of callable function implementations.

    Starts with builtins and can be extended with custom functions.
    """

    def __init__(self) -> None:
        self._functions: dict[str, Callable[[list[Any]], Any]] = dict(_BUILTINS)

    def register(self, name: str, func: Callable[[list[Any]], Any]) -> None:
        self._functions[name.lower()] = func

    def get(self, name: str) -> Callable[[list[Any]], Any] | None:
        return self._functions.get(name.lower())

    def has(self, name: str) -> bool:
        return name.lower() in self._functions

    @property
    def supported_functions(self) -> frozenset[str]:
        return frozenset(self._functions.keys())
