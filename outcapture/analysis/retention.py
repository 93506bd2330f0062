"""Static analysis deciding whether the last-output variable is replaced.

A command that only assigns, declares, increments, or looks at a variable
should not wipe out the last captured output: the user is most likely still
working with it. The decision is made from the parsed tree alone; no user code
is evaluated.

Decision order, first rule that applies wins:

1. No tree or an empty statement list: preserve.
2. Every top-level statement is an assignment, a function/class declaration,
   an increment/decrement, or a bare variable reference (possibly reached
   through subscripts and attribute access): preserve.
3. Otherwise, if the capture variable is referenced anywhere in the tree,
   preserve; the user is reading or refining the previous output.
4. Otherwise overwrite.
"""

from __future__ import annotations

import ast
import datetime
import decimal
import enum
import fractions
import uuid
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from ..protocol.records import EmittedObject
from ..session.config import CaptureConfig


class RetentionDecision(enum.Enum):
    PRESERVE = "preserve"
    OVERWRITE = "overwrite"
    NEEDS_DEEPER_SCAN = "needs_deeper_scan"


_ASSIGNMENTS = (ast.Assign, ast.AugAssign, ast.AnnAssign)
_DECLARATIONS = (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)
_ACCESSORS = (ast.Subscript, ast.Attribute)

# Objects cheap enough to retype that capturing them is opt-in
VALUE_TYPES: tuple[type, ...] = (
    bool,
    int,
    float,
    complex,
    decimal.Decimal,
    fractions.Fraction,
    datetime.date,
    datetime.time,
    datetime.timedelta,
    enum.Enum,
    uuid.UUID,
)


def _statements(tree: Optional[ast.AST]) -> list[ast.stmt]:
    if tree is None:
        return []
    if isinstance(tree, ast.Expression):
        return [ast.Expr(value=tree.body)]
    body = getattr(tree, "body", None)
    return list(body) if isinstance(body, list) else []


def _root_of(expr: ast.expr) -> ast.expr:
    while isinstance(expr, _ACCESSORS):
        expr = expr.value
    return expr


def _is_increment(expr: ast.UnaryOp) -> bool:
    # ``++x`` and ``--x`` parse as the same unary operator applied twice
    if not isinstance(expr.op, (ast.UAdd, ast.USub)):
        return False
    inner = expr.operand
    return (
        isinstance(inner, ast.UnaryOp)
        and type(inner.op) is type(expr.op)
        and isinstance(_root_of(inner.operand), ast.Name)
    )


def _keeps_last_output(stmt: ast.stmt) -> bool:
    if isinstance(stmt, _ASSIGNMENTS) or isinstance(stmt, _DECLARATIONS):
        return True
    if not isinstance(stmt, ast.Expr):
        return False
    value = stmt.value
    if isinstance(value, ast.UnaryOp):
        return _is_increment(value)
    return isinstance(_root_of(value), ast.Name)


def classify_statements(tree: Optional[ast.AST]) -> RetentionDecision:
    """Shape pass over the top-level statements only.

    Returns:
        PRESERVE, or NEEDS_DEEPER_SCAN when some statement produces output
    """
    statements = _statements(tree)
    if not statements:
        return RetentionDecision.PRESERVE
    if all(_keeps_last_output(stmt) for stmt in statements):
        return RetentionDecision.PRESERVE
    return RetentionDecision.NEEDS_DEEPER_SCAN


def references_variable(tree: Optional[ast.AST], name: str) -> bool:
    """True if ``name`` is referenced anywhere in ``tree``, directly or indexed."""
    if tree is None:
        return False
    for node in ast.walk(tree):
        if isinstance(node, ast.Name) and node.id == name:
            return True
        if isinstance(node, ast.Subscript) and isinstance(node.value, ast.Name) and node.value.id == name:
            return True
    return False


def decide_retention(tree: Optional[ast.AST], variable_name: str) -> RetentionDecision:
    """Decide whether the last-output variable is preserved or overwritten."""
    decision = classify_statements(tree)
    if decision is RetentionDecision.NEEDS_DEEPER_SCAN:
        if references_variable(tree, variable_name):
            return RetentionDecision.PRESERVE
        return RetentionDecision.OVERWRITE
    return decision


@dataclass(frozen=True)
class CaptureAssignment:
    """Value to assign to the last-output variable."""

    value: Any


def _unwrap(item: Any) -> Any:
    return item.base if isinstance(item, EmittedObject) else item


def is_value_type(value: Any) -> bool:
    return isinstance(value, VALUE_TYPES)


def select_capture_value(
    items: Sequence[Any],
    config: CaptureConfig,
    wrap_single: bool = False,
) -> Optional[CaptureAssignment]:
    """Pick what the last-output variable becomes, or None to leave it alone.

    Args:
        items: Captured envelopes in emission order
        config: Capture settings
        wrap_single: Assign a single item as a one-element list. Set when the
            command also bound its output to the capture variable.
    """
    if not items or (len(items) == 1 and _unwrap(items[0]) is None):
        if config.capture_null:
            return CaptureAssignment(None)
        return None

    if len(items) == 1:
        value = _unwrap(items[0])
        if is_value_type(value) and not config.capture_value_types:
            return None
        if wrap_single:
            return CaptureAssignment([value])
        return CaptureAssignment(value)

    return CaptureAssignment([_unwrap(item) for item in items])
