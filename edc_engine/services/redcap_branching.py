"""Conversion of REDCap branching logic into form expressions.

Studies migrating from REDCap bring data dictionaries whose branching logic
uses a different syntax:

- ``[field]`` becomes ``{field}``
- ``=`` becomes ``==`` and ``<>`` becomes ``!=``
- ``[checkbox(code)] = '1'`` becomes ``'code' in {checkbox}``
- ``AND`` / ``OR`` / ``NOT`` are lower-cased
"""

import re

_CHECKBOX_CHECKED = re.compile(r"\[(\w+)\((\w+)\)\]\s*=\s*'1'")
_CHECKBOX_UNCHECKED = re.compile(r"\[(\w+)\((\w+)\)\]\s*=\s*'0'")
_FIELD = re.compile(r"\[(\w+)\]")
_SINGLE_EQUALS = re.compile(r"(?<![!<>=])=(?!=)")
_SINGLE_QUOTED = re.compile(r"'([^']*)'")


def convert_redcap_branching(expression: str) -> str:
    """Convert a REDCap branching expression to the form expression syntax.

    Args:
        expression: REDCap branching logic

    Returns:
        Equivalent form expression, or an empty string for blank input

    Example:
        >>> convert_redcap_branching("[age] >= 18 AND [sex] = '2'")
        '{age} >= 18 and {sex} == "2"'
    """
    if not expression or not expression.strip():
        return ""

    result = expression.strip()

    result = _CHECKBOX_CHECKED.sub(r'"\2" in {\1}', result)
    result = _CHECKBOX_UNCHECKED.sub(r'not ("\2" in {\1})', result)
    result = _FIELD.sub(r"{\1}", result)
    result = result.replace("<>", "!=")
    result = _SINGLE_EQUALS.sub("==", result)
    result = _SINGLE_QUOTED.sub(r'"\1"', result)

    result = re.sub(r"\bAND\b", "and", result, flags=re.IGNORECASE)
    result = re.sub(r"\bOR\b", "or", result, flags=re.IGNORECASE)
    result = re.sub(r"\bNOT\b", "not", result, flags=re.IGNORECASE)

    return result
