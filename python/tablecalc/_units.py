"""Physical quantities backed by pint."""

from __future__ import annotations

import re
from typing import Any

import pint

_registry: pint.UnitRegistry | None = None

# "<number> <unit>", the unit starting with a letter
_QUANTITY_RE = re.compile(r"^\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?\s*[^\W\d]")

_PARSE_ERRORS = (pint.PintError, AttributeError, ValueError, TypeError, SyntaxError)


def unit_registry() -> pint.UnitRegistry:
    """Process-wide registry, built on first use (construction is slow)."""
    global _registry
    if _registry is None:
        _registry = pint.UnitRegistry()
    return _registry


def is_quantity(value: Any) -> bool:
    return isinstance(value, pint.Quantity)


def parse_quantity(text: str) -> pint.Quantity | None:
    """Parse ``"5 kg"``-style text, or return None when it is not a quantity."""
    if not _QUANTITY_RE.match(text):
        return None
    try:
        quantity = unit_registry().Quantity(text.strip())
    except _PARSE_ERRORS:
        return None
    if not is_quantity(quantity) or quantity.dimensionless:
        return None
    return quantity


def parse_unit(name: str) -> pint.Quantity | None:
    """A bare unit name such as ``kg`` as a quantity of magnitude 1."""
    try:
        units = unit_registry().parse_units(name)
    except _PARSE_ERRORS:
        return None
    return unit_registry().Quantity(1, units)


def format_quantity(quantity: pint.Quantity) -> str:
    """``"<magnitude> <unit>"``, parseable again by :func:`parse_quantity`."""
    return f"{quantity.magnitude} {quantity.units}"
