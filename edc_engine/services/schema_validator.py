"""Structural validation of form schemas.

Called before a form definition is stored. Every violation is collected so
the form builder can show them all at once; nothing is raised past
``validate_form_schema``.

Checks:
- at least one page
- page, section and field ids match ``^[a-z][a-z0-9_]*$`` and are unique
  (fields of a repeatable section are scoped to the section's items)
- kind-specific attributes (matrix rows and columns, calculated
  expression, choice options or option list)
- option values unique within a field
- ``minLength <= maxLength`` and ``min <= max``
- repeat bounds non-negative, ordered, and only on repeatable sections
- every expression passes the expression safety check and references
  only fields that exist in the schema
- every pattern passes the regex safety check
- no circular dependencies between expressions
"""

import re
from typing import Any, Iterable, Optional, Union

from edc_engine.schemas.form import (
    BaseField,
    CalculatedField,
    ChoiceField,
    FormSchema,
    MatrixField,
    NumericField,
    Section,
)
from edc_engine.services.cycle_detector import detect_expression_cycles
from edc_engine.services.expressions import extract_field_refs, validate_expression
from edc_engine.services.regex_safety import validate_regex_pattern
from edc_engine.services.schema_parser import (
    SchemaParseError,
    StructuralError,
    parse_form_schema,
)
from edc_engine.logging_config import get_logger

logger = get_logger(__name__)

ID_REGEX = re.compile(r"^[a-z][a-z0-9_]*$")

ID_FORMAT_MESSAGE = (
    "ID must start with lowercase letter, contain only lowercase letters, "
    "digits, and underscores"
)

LABEL_PLACEHOLDER_REGEX = re.compile(r"#\{(.*?)\}")

OPTION_KINDS = ("radio", "dropdown", "checkbox")


class _Collector:
    """Accumulates structural errors while walking a schema."""

    def __init__(self, known_fields: set):
        self.errors: list[StructuralError] = []
        self.known_fields = known_fields

    def add(self, path: str, message: str) -> None:
        self.errors.append(StructuralError(path, message))

    def expression(self, path: str, label: str, source: Optional[str]) -> None:
        if not isinstance(source, str):
            return
        problems = validate_expression(source)
        for problem in problems:
            self.add(path, f"{label}: {problem}")
        if problems:
            return
        for ref in extract_field_refs(source):
            if "." not in ref and ref not in self.known_fields:
                self.add(path, f"{label}: Unknown field reference {{{ref}}}")

    def identifier(self, kind: str, element_id: str, seen: set) -> None:
        if not ID_REGEX.match(element_id):
            self.add(element_id, f"{kind} {ID_FORMAT_MESSAGE}")
        if element_id in seen:
            self.add(element_id, f"Duplicate {kind.lower()} ID: {element_id}")
        seen.add(element_id)


def _duplicates(values: Iterable[str]) -> list[str]:
    seen = set()
    duplicates = []
    for value in values:
        if value in seen and value not in duplicates:
            duplicates.append(value)
        seen.add(value)
    return duplicates


def _check_bounds(
    collector: _Collector,
    path: str,
    low: Any,
    high: Any,
    message: str,
) -> None:
    if low is not None and high is not None and low > high:
        collector.add(path, message)


def _check_section(collector: _Collector, section: Section) -> None:
    path = section.id
    if section.min_repeat < 0:
        collector.add(path, "minRepeat must not be negative")
    if section.max_repeat is not None and section.max_repeat < 0:
        collector.add(path, "maxRepeat must not be negative")
    _check_bounds(
        collector, path, section.min_repeat, section.max_repeat,
        "minRepeat must not exceed maxRepeat",
    )

    if not section.repeatable:
        if section.min_repeat or section.max_repeat is not None:
            collector.add(path, "Repeat bounds are only allowed on repeatable sections")
    elif section.repeat_label is not None:
        if "#{n}" not in section.repeat_label:
            collector.add(path, "Repeat label must contain the #{n} placeholder")
        placeholders = LABEL_PLACEHOLDER_REGEX.findall(section.repeat_label)
        if any(p.strip() != "n" for p in placeholders) or "{%" in section.repeat_label:
            collector.add(path, "Repeat label may only use the #{n} placeholder")

    collector.expression(path, "Section visibility", section.visibility)


def _check_field(collector: _Collector, field: BaseField) -> None:
    path = field.id

    collector.expression(path, "Visibility expression", field.visibility)
    if isinstance(field.required, str):
        collector.expression(path, "Required expression", field.required)
    if isinstance(field.disabled, str):
        collector.expression(path, "Disabled expression", field.disabled)

    if isinstance(field, CalculatedField):
        if not field.expression or not field.expression.strip():
            collector.add(path, "Calculated field must define an expression")
        else:
            collector.expression(path, "Calculated expression", field.expression)

    if isinstance(field, ChoiceField):
        if field.type in OPTION_KINDS and not field.options and not field.option_list_slug:
            collector.add(path, "Must have options or optionListSlug")
        for value in _duplicates(field.option_values):
            collector.add(path, f"Duplicate option value: {value}")

    if isinstance(field, MatrixField):
        if not field.matrix_rows:
            collector.add(path, "Matrix field must define at least one row")
        if not field.columns:
            collector.add(path, "Matrix field must define at least one column")
        for value in _duplicates(row.value for row in field.matrix_rows):
            collector.add(path, f"Duplicate matrix row value: {value}")
        for value in _duplicates(column.id for column in field.columns):
            collector.add(path, f"Duplicate matrix column ID: {value}")

    if isinstance(field, NumericField):
        _check_bounds(collector, path, field.min, field.max, "min must not exceed max")

    rules = field.validation
    if rules is None:
        return

    for name, bound in (("minLength", rules.min_length), ("maxLength", rules.max_length)):
        if bound is not None and bound < 0:
            collector.add(path, f"{name} must not be negative")
    _check_bounds(
        collector, path, rules.min_length, rules.max_length,
        "minLength must not exceed maxLength",
    )
    _check_bounds(collector, path, rules.min, rules.max, "Validation min must not exceed max")

    if rules.pattern is not None:
        problem = validate_regex_pattern(rules.pattern)
        if problem:
            collector.add(path, problem)

    collector.expression(path, "Custom validation", rules.custom)


def validate_form_schema(schema: Union[FormSchema, dict, Any]) -> list[StructuralError]:
    """Validate a form schema for structural correctness and safety.

    Args:
        schema: Parsed FormSchema or its raw JSON document

    Returns:
        List of StructuralError (empty if the schema is valid)

    Example:
        >>> validate_form_schema({"pages": []})
        [StructuralError(path='_schema', message='Schema must have at least one page')]
    """
    try:
        parsed = parse_form_schema(schema)
    except SchemaParseError as e:
        return list(e.errors)

    if not parsed.pages:
        return [StructuralError("_schema", "Schema must have at least one page")]

    known_fields = {field.id for field in parsed.all_fields()}
    collector = _Collector(known_fields)

    page_ids: set = set()
    section_ids: set = set()
    field_ids: set = set()

    for page in parsed.pages:
        collector.identifier("Page", page.id, page_ids)
        collector.expression(page.id, "Page visibility", page.visibility)

        for section in page.sections:
            collector.identifier("Section", section.id, section_ids)
            _check_section(collector, section)

            # Fields of a repeatable section live in their own item object
            scope = set() if section.repeatable else field_ids
            for field in section.fields:
                collector.identifier("Field", field.id, scope)
                _check_field(collector, field)

    # A repeatable section and a top-level field would share one payload key
    for _, section in parsed.iter_sections():
        if section.repeatable and section.id in field_ids:
            collector.add(
                section.id,
                f"Repeatable section ID conflicts with field ID: {section.id}",
            )

    for message in detect_expression_cycles(parsed):
        collector.add("_schema", message)

    if collector.errors:
        logger.debug(f"Schema has {len(collector.errors)} structural error(s)")
    return collector.errors
