"""Safety checks for form expressions.

Expressions are authored by study builders and evaluated on every value
change, so anything outside the expression grammar is rejected before it
is stored and again before it is evaluated:

- source longer than ``max_expression_length``
- parenthesis nesting deeper than ``max_expression_depth``
- unbalanced parentheses
- any syntax node that is not part of the grammar (attribute access,
  subscripts, lambdas, comprehensions, assignment, containers, f-strings)
- calls to anything but whitelisted functions, keyword arguments, splats
- bare identifiers (fields must be referenced as ``{field_id}``)
"""

import ast
import re
from typing import Iterable

from edc_engine.config import get_settings

# Single- or double-quoted string literal, backslash escapes allowed
STRING_LITERAL_RE = re.compile(r""""(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*'""")

# Literal keywords accepted as bare names
LITERAL_NAMES = {"true": True, "false": False, "null": None}

ALLOWED_NODES = (
    ast.Expression,
    ast.BoolOp, ast.And, ast.Or,
    ast.UnaryOp, ast.Not, ast.USub, ast.UAdd,
    ast.BinOp, ast.Add, ast.Sub, ast.Mult, ast.Div, ast.Mod, ast.Pow,
    ast.Compare, ast.Eq, ast.NotEq, ast.Lt, ast.LtE, ast.Gt, ast.GtE,
    ast.In, ast.NotIn,
    ast.Call, ast.Name, ast.Load, ast.Constant,
)

ALLOWED_CONSTANT_TYPES = (bool, int, float, str, type(None))


class UnsafeExpressionError(Exception):
    """Raised when an expression uses a construct outside the grammar."""
    pass


def strip_string_literals(source: str) -> str:
    """Replace string literal contents so structural checks ignore them."""
    return STRING_LITERAL_RE.sub('""', source)


def check_limits(source: str) -> list[str]:
    """Check length and parenthesis structure of an expression source.

    Args:
        source: Expression as written by the form author

    Returns:
        List of error messages (empty if within limits)
    """
    settings = get_settings()
    errors: list[str] = []

    if len(source) > settings.max_expression_length:
        errors.append(
            f"Expression exceeds maximum length of {settings.max_expression_length} characters"
        )
        return errors

    max_depth = 0
    depth = 0
    for char in strip_string_literals(source):
        if char == "(":
            depth += 1
            max_depth = max(max_depth, depth)
        elif char == ")":
            depth -= 1
            if depth < 0:
                break

    if max_depth > settings.max_expression_depth:
        errors.append(
            f"Expression nesting depth exceeds maximum of {settings.max_expression_depth}"
        )
    if depth != 0:
        errors.append("Unbalanced parentheses")

    return errors


def check_tree(
    tree: ast.AST,
    ref_names: Iterable[str],
    function_names: Iterable[str],
) -> None:
    """Walk a parsed expression and reject anything outside the grammar.

    Args:
        tree: Parsed expression (``ast.parse(..., mode="eval")``)
        ref_names: Internal names produced for ``{field}`` references
        function_names: Whitelisted function names

    Raises:
        UnsafeExpressionError: On the first disallowed construct
    """
    refs = set(ref_names)
    functions = set(function_names)
    called = set()

    for node in ast.walk(tree):
        if not isinstance(node, ALLOWED_NODES):
            raise UnsafeExpressionError(
                f"'{type(node).__name__}' is not allowed in expressions"
            )

        if isinstance(node, ast.Constant):
            if not isinstance(node.value, ALLOWED_CONSTANT_TYPES):
                raise UnsafeExpressionError("Only number, text and boolean literals are allowed")

        elif isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in functions:
                name = node.func.id if isinstance(node.func, ast.Name) else "expression"
                raise UnsafeExpressionError(f"Unknown function: {name}")
            if node.keywords:
                raise UnsafeExpressionError("Keyword arguments are not allowed")
            called.add(id(node.func))

        elif isinstance(node, ast.Name):
            if id(node) in called:
                continue
            if node.id in refs or node.id in LITERAL_NAMES:
                continue
            if node.id.startswith("_"):
                raise UnsafeExpressionError(f"Identifier not allowed: {node.id}")
            raise UnsafeExpressionError(
                f"Unknown identifier '{node.id}' (reference fields as {{{node.id}}})"
            )
