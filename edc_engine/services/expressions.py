"""Expression evaluation service using simpleeval for safe evaluation.

Form schemas embed a small expression language for visibility, dynamic
required-ness, custom validation and calculated values::

    {age} >= 18 and {consent} == 'yes'
    round({weight} / ({height} / 100) ^ 2, 1)
    {visit1.weight} - {weight}            # cross-form reference

Field references are written ``{field_id}`` (or ``{form_slug.field_id}``
for data from another form). They are rewritten to internal names, the
source is parsed once into an AST, checked against the grammar whitelist
(see ``expression_safety``) and cached by source text. Evaluation then
binds the internal names to the payload; a reference to a field that has
no value evaluates to ``None`` instead of raising.

The two public entry points never raise:

- ``evaluate_boolean`` returns False on any error
- ``evaluate`` returns None on any error
"""

import ast
import math
import operator as op
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from functools import lru_cache
from typing import Any, Optional, Union

from simpleeval import InvalidExpression, SimpleEval, safe_add, safe_mult, safe_power

from edc_engine.logging_config import get_logger
from edc_engine.services.expression_safety import (
    LITERAL_NAMES,
    STRING_LITERAL_RE,
    UnsafeExpressionError,
    check_limits,
    check_tree,
    strip_string_literals,
)

logger = get_logger(__name__)

Scalar = Union[int, float, str, bool]

# Match {field_id} or {form_slug.field_id}
FIELD_REF_REGEX = re.compile(r"\{([a-z][a-z0-9_]*(?:\.[a-z][a-z0-9_]*)?)\}")

REF_PREFIX = "ref__"


class ExpressionError(Exception):
    """Raised when an expression cannot be parsed or evaluated."""
    pass


def _round(value: float, digits: int = 0) -> Union[int, float]:
    """Round half away from zero, like a calculator (not banker's rounding)."""
    try:
        quantum = Decimal(1).scaleb(-int(digits))
        rounded = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError) as e:
        raise ExpressionError(f"Cannot round {value!r}: {e}")
    return int(rounded) if digits <= 0 else float(rounded)


def _length(value: Any) -> int:
    if isinstance(value, (str, list)):
        return len(value)
    return 0


FUNCTIONS = {
    "round": _round,
    "abs": abs,
    "min": min,
    "max": max,
    "floor": math.floor,
    "ceil": math.ceil,
    "sqrt": math.sqrt,
    "pow": safe_power,
    "lower": lambda s: str(s).lower(),
    "upper": lambda s: str(s).upper(),
    "length": _length,
}

OPERATORS = {
    ast.Add: safe_add,
    ast.Sub: op.sub,
    ast.Mult: safe_mult,
    ast.Div: op.truediv,
    ast.Mod: op.mod,
    ast.Pow: safe_power,
    ast.Eq: op.eq,
    ast.NotEq: op.ne,
    ast.Gt: op.gt,
    ast.Lt: op.lt,
    ast.GtE: op.ge,
    ast.LtE: op.le,
    ast.Not: op.not_,
    ast.USub: op.neg,
    ast.UAdd: op.pos,
    ast.In: lambda x, y: op.contains(y, x),
    ast.NotIn: lambda x, y: not op.contains(y, x),
}


@dataclass(frozen=True)
class CompiledExpression:
    """A parsed, safety-checked expression ready for evaluation.

    Attributes:
        source: Expression as written by the form author
        tree: Parsed expression body
        refs: Internal name -> field reference (``age`` or ``visit1.weight``)
    """
    source: str
    tree: ast.AST
    refs: tuple[tuple[str, str], ...]

    @property
    def field_refs(self) -> list[str]:
        return [ref for _, ref in self.refs]

    def bind(
        self,
        data: dict,
        cross_form_data: Optional[dict] = None,
    ) -> dict:
        """Build the name table for one evaluation."""
        names: dict[str, Any] = dict(LITERAL_NAMES)
        for name, ref in self.refs:
            if "." in ref:
                form_slug, field_id = ref.split(".", 1)
                form_data = (cross_form_data or {}).get(form_slug)
                names[name] = form_data.get(field_id) if isinstance(form_data, dict) else None
            else:
                names[name] = data.get(ref)
        return names


def resolve_field_refs(expression: str) -> tuple[str, list[str]]:
    """Rewrite ``{ref}`` placeholders (outside string literals) to names.

    ``^`` is rewritten to ``**`` so exponentiation binds tighter than
    multiplication.

    Args:
        expression: Expression source

    Returns:
        Tuple of (resolved source, field references in order of appearance)
    """
    refs: list[str] = []

    def _replace_ref(match: re.Match) -> str:
        ref = match.group(1)
        refs.append(ref)
        return REF_PREFIX + ref.replace(".", "__")

    parts: list[str] = []
    position = 0
    for literal in STRING_LITERAL_RE.finditer(expression):
        code = expression[position:literal.start()]
        parts.append(FIELD_REF_REGEX.sub(_replace_ref, code).replace("^", "**"))
        parts.append(literal.group(0))
        position = literal.end()
    tail = expression[position:]
    parts.append(FIELD_REF_REGEX.sub(_replace_ref, tail).replace("^", "**"))

    return "".join(parts), refs


@lru_cache(maxsize=1024)
def compile_expression(expression: str) -> CompiledExpression:
    """Parse and safety-check an expression, cached by source text.

    Args:
        expression: Expression source

    Returns:
        CompiledExpression

    Raises:
        ExpressionError: If the expression is empty, too long, too deeply
            nested, syntactically invalid, or uses constructs outside the
            grammar
    """
    if not isinstance(expression, str) or not expression.strip():
        raise ExpressionError("Expression is required")

    limit_errors = check_limits(expression)
    if limit_errors:
        raise ExpressionError("; ".join(limit_errors))

    if "**" in strip_string_literals(expression):
        raise ExpressionError("Use ^ for exponentiation")

    resolved, refs = resolve_field_refs(expression)

    try:
        tree = ast.parse(resolved.strip(), mode="eval")
    except SyntaxError as e:
        raise ExpressionError(f"Invalid expression syntax: {e.msg}")

    names = tuple(
        dict.fromkeys((REF_PREFIX + ref.replace(".", "__"), ref) for ref in refs)
    )
    try:
        check_tree(tree, [name for name, _ in names], FUNCTIONS.keys())
    except UnsafeExpressionError as e:
        raise ExpressionError(str(e))

    return CompiledExpression(source=expression, tree=tree.body, refs=names)


def _run(
    expression: str,
    data: Optional[dict],
    cross_form_data: Optional[dict],
) -> Any:
    if not isinstance(expression, str):
        raise ExpressionError("Expression must be text")
    if not isinstance(data, dict):
        data = {}
    if not isinstance(cross_form_data, dict):
        cross_form_data = None

    compiled = compile_expression(expression)
    evaluator = SimpleEval(
        operators=OPERATORS,
        functions=FUNCTIONS,
        names=compiled.bind(data, cross_form_data),
    )
    try:
        return evaluator.eval(expression, previously_parsed=compiled.tree)
    except InvalidExpression as e:
        raise ExpressionError(f"Invalid expression: {e}")
    except (ArithmeticError, TypeError, ValueError, RecursionError) as e:
        raise ExpressionError(f"Error evaluating expression: {e}")


def evaluate(
    expression: str,
    data: Optional[dict],
    cross_form_data: Optional[dict] = None,
) -> Optional[Scalar]:
    """Evaluate an expression to a scalar value.

    Used for calculated fields. Any parse or evaluation failure, and any
    non-scalar or non-finite result, yields None.

    Args:
        expression: Expression source
        data: Current response payload (field id -> value)
        cross_form_data: Payloads of other forms keyed by form slug

    Returns:
        Number, text, boolean, or None

    Example:
        >>> evaluate("round({weight} / ({height} / 100) ^ 2, 1)", {"weight": 70, "height": 175})
        22.9
    """
    try:
        result = _run(expression, data, cross_form_data)
    except ExpressionError as e:
        logger.debug(f"Expression '{expression}' evaluated to null: {e}")
        return None

    if isinstance(result, float) and not math.isfinite(result):
        return None
    if result is None or isinstance(result, (bool, int, float, str)):
        return result
    logger.debug(f"Expression '{expression}' produced non-scalar {type(result).__name__}")
    return None


def evaluate_boolean(
    expression: str,
    data: Optional[dict],
    cross_form_data: Optional[dict] = None,
) -> bool:
    """Evaluate an expression as a condition.

    Used for visibility, dynamic required-ness and custom validation.
    Any parse or evaluation failure yields False.

    Args:
        expression: Expression source
        data: Current response payload (field id -> value)
        cross_form_data: Payloads of other forms keyed by form slug

    Returns:
        Truthiness of the result

    Example:
        >>> evaluate_boolean("{age} >= 18", {"age": 25})
        True
        >>> evaluate_boolean("{age} >= 18", {})
        False
    """
    try:
        result = _run(expression, data, cross_form_data)
    except ExpressionError as e:
        logger.debug(f"Condition '{expression}' evaluated to false: {e}")
        return False
    return bool(result)


def extract_field_refs(expression: str) -> list[str]:
    """Return every ``{ref}`` in an expression, in order of appearance."""
    if not isinstance(expression, str):
        return []
    _, refs = resolve_field_refs(expression)
    return refs


def validate_expression(expression: str) -> list[str]:
    """Check an expression before it is saved on a form schema.

    Args:
        expression: Expression source

    Returns:
        List of error messages (empty if the expression is acceptable)
    """
    if not isinstance(expression, str) or not expression.strip():
        return ["Expression is required"]

    limit_errors = check_limits(expression)
    if limit_errors:
        return limit_errors

    try:
        compile_expression(expression)
    except ExpressionError as e:
        return [str(e)]
    return []
