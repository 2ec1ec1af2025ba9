"""Boundary checks applied to formula text before and after expansion."""

from __future__ import annotations

import re

from tablecalc._errors import ForbiddenPattern, FormulaTooLong

# Dynamic code execution, object-model access and global-object access.
_FORBIDDEN_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"import\s*\(",
        r"require\s*\(",
        r"eval\s*\(",
        r"exec\s*\(",
        r"compile\s*\(",
        r"function\s*\(",
        r"\blambda\b",
        r"constructor",
        r"prototype",
        r"__proto__",
        r"__\w+__",
        r"getattr\s*\(",
        r"globals\s*\(",
        r"process\.",
        r"global\.",
        r"window\.",
        r"document\.",
        r"\bos\.",
        r"\bsys\.",
    )
)

_SUSPICIOUS_EXPANDED: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"eval\s*\(",
        r"function\s*\(",
        r"constructor\s*\(",
        r"__",
    )
)

_STRING_LITERAL = re.compile(r'"(?:[^"\\]|\\.)*"')


def sanitize_formula(formula: str, max_length: int = 1000) -> str:
    """Validate a raw formula body and return it stripped."""
    if len(formula) > max_length:
        raise FormulaTooLong()
    for pattern in _FORBIDDEN_PATTERNS:
        if pattern.search(formula):
            raise ForbiddenPattern(f"formula contains forbidden pattern: {pattern.pattern}")
    return formula.strip()


def sanitize_expression(expression: str) -> str:
    """Validate an expanded expression right before it is evaluated.

    Text inside string literals is cell data, not code, and is not checked.
    """
    code = _STRING_LITERAL.sub('""', expression)
    for pattern in _SUSPICIOUS_EXPANDED:
        if pattern.search(code):
            raise ForbiddenPattern("processed formula contains suspicious patterns")
    return expression
