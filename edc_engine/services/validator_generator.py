"""Compile form schemas into payload validators.

``compile_validator`` walks every page, section and field once and builds,
per field kind, the narrowest list of checks matching the field's type and
ValidationRules. The resulting ``FormValidator`` is pure and reusable: the
same instance validates drafts while a form is being filled and the full
payload on the server right before a response leaves ``draft``.

Each field yields at most one error: the required check first, then the
field's checks in order until one fails.

Repeatable sections validate as lists of item objects. Errors inside an
item are reported under ``section_id.<index>.field_id``.
"""

import math
import re
from dataclasses import dataclass, field as dataclass_field
from datetime import date, datetime
from functools import singledispatch
from typing import Any, Callable, Optional, Union

from edc_engine.config import get_settings
from edc_engine.schemas.form import (
    BaseField,
    CalculatedField,
    ChoiceField,
    DescriptiveField,
    FileField,
    FormSchema,
    MatrixField,
    NumericField,
    Section,
    SignatureField,
    TemporalField,
    TextField,
)
from edc_engine.services.expressions import evaluate_boolean
from edc_engine.services.schema_parser import (
    SchemaParseError,
    StructuralError,
    parse_form_schema,
)
from edc_engine.services.schema_validator import validate_form_schema
from edc_engine.logging_config import get_logger

logger = get_logger(__name__)

REQUIRED_MESSAGE = "This field is required"

DATE_REGEX = re.compile(r"^\d{4}-\d{2}-\d{2}$")
DATETIME_REGEX = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:\d{2})?$"
)
TIME_REGEX = re.compile(r"^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$")

# A check receives the value and the evaluation context, returns a message or None
Check = Callable[[Any, dict], Optional[str]]


@dataclass(frozen=True)
class FieldError:
    """A payload validation failure for one field.

    Attributes:
        field_id: Field id, or ``section.<index>.field`` inside repeatable sections
        message: Message shown to the person filling the form
    """
    field_id: str
    message: str

    def to_dict(self) -> dict:
        return {"fieldId": self.field_id, "message": self.message}


@dataclass
class ValidationResult:
    """Result of validating a payload."""
    valid: bool
    errors: list[FieldError] = dataclass_field(default_factory=list)

    def to_dict(self) -> dict:
        return {"valid": self.valid, "errors": [e.to_dict() for e in self.errors]}


def is_empty(value: Any) -> bool:
    """Whether a value counts as "not answered"."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


def _format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def is_required(field: BaseField, context: dict) -> bool:
    """Resolve a field's required flag against the candidate payload."""
    if isinstance(field, CalculatedField):
        return False
    if isinstance(field.required, str):
        return evaluate_boolean(field.required, context)
    return bool(field.required)


# ---------------------------------------------------------------------------
# Shared checks


def _custom_check(field: BaseField) -> Optional[Check]:
    rules = field.validation
    if rules is None or not rules.custom:
        return None
    expression = rules.custom
    message = rules.custom_message or "Invalid value"

    def check(value: Any, context: dict) -> Optional[str]:
        if not evaluate_boolean(expression, context):
            return message
        return None

    return check


def _range_checks(low: Optional[float], high: Optional[float]) -> list[Check]:
    checks: list[Check] = []
    if low is not None:
        checks.append(
            lambda v, _: f"Must be at least {_format_number(low)}" if v < low else None
        )
    if high is not None:
        checks.append(
            lambda v, _: f"Must be at most {_format_number(high)}" if v > high else None
        )
    return checks


def _with_custom(field: BaseField, checks: list[Check]) -> list[Check]:
    custom = _custom_check(field)
    if custom is not None:
        checks.append(custom)
    return checks


# ---------------------------------------------------------------------------
# Per-kind check builders


@singledispatch
def build_checks(field: BaseField) -> Optional[list[Check]]:
    """Build the value checks for a field.

    Returns None for fields that carry no value.

    Raises:
        TypeError: For a field class without a registered builder
    """
    raise TypeError(f"No validator for field kind {type(field).__name__}")


@build_checks.register
def _(field: DescriptiveField) -> Optional[list[Check]]:
    return None


@build_checks.register
def _(field: TextField) -> Optional[list[Check]]:
    checks: list[Check] = [
        lambda v, _: None if isinstance(v, str) else "Must be text",
    ]
    rules = field.validation
    if rules is None:
        return checks

    if rules.min_length is not None:
        min_length = rules.min_length
        checks.append(
            lambda v, _: f"Must be at least {min_length} characters"
            if len(v) < min_length else None
        )
    if rules.max_length is not None:
        max_length = rules.max_length
        checks.append(
            lambda v, _: f"Must be at most {max_length} characters"
            if len(v) > max_length else None
        )
    if rules.pattern:
        compiled = re.compile(rules.pattern)
        pattern_message = rules.pattern_message or "Invalid format"
        input_limit = get_settings().pattern_max_input_length

        def pattern_check(value: str, _: dict) -> Optional[str]:
            # Bound the input a pattern ever runs against
            if len(value) > input_limit:
                return f"Must be at most {input_limit} characters to check its format"
            if not compiled.search(value):
                return pattern_message
            return None

        checks.append(pattern_check)

    return _with_custom(field, checks)


@build_checks.register
def _(field: NumericField) -> Optional[list[Check]]:
    if field.type == "integer":
        checks: list[Check] = [
            lambda v, _: None
            if _is_number(v) and float(v).is_integer() else "Must be a whole number",
        ]
    else:
        checks = [lambda v, _: None if _is_number(v) else "Must be a number"]

    rules = field.validation
    low = rules.min if rules is not None and rules.min is not None else field.min
    high = rules.max if rules is not None and rules.max is not None else field.max
    checks.extend(_range_checks(low, high))
    return _with_custom(field, checks)


def _check_date(value: Any, _: dict) -> Optional[str]:
    if not isinstance(value, str) or not DATE_REGEX.match(value):
        return "Invalid date format (YYYY-MM-DD)"
    try:
        date.fromisoformat(value)
    except ValueError:
        return "Invalid date"
    return None


def _check_datetime(value: Any, _: dict) -> Optional[str]:
    if not isinstance(value, str) or not DATETIME_REGEX.match(value):
        return "Invalid datetime format"
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return "Invalid datetime"
    return None


def _check_time(value: Any, _: dict) -> Optional[str]:
    if not isinstance(value, str) or not TIME_REGEX.match(value):
        return "Invalid time format (HH:MM)"
    return None


@build_checks.register
def _(field: TemporalField) -> Optional[list[Check]]:
    format_check = {
        "date": _check_date,
        "datetime": _check_datetime,
        "time": _check_time,
    }[field.type]
    return _with_custom(field, [format_check])


@build_checks.register
def _(field: ChoiceField) -> Optional[list[Check]]:
    allowed = set(field.option_values)
    # Options from an external list are unknown here
    constrained = bool(allowed)

    if field.type == "checkbox":
        def checkbox_check(value: Any, _: dict) -> Optional[str]:
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                return "Must be a list of options"
            if constrained and any(v not in allowed for v in value):
                return "Contains an option that is not listed"
            return None

        return _with_custom(field, [checkbox_check])

    def choice_check(value: Any, _: dict) -> Optional[str]:
        if not isinstance(value, str):
            return "Must be text"
        if constrained and value not in allowed:
            return "Must be one of the listed options"
        return None

    return _with_custom(field, [choice_check])


@build_checks.register
def _(field: MatrixField) -> Optional[list[Check]]:
    rows = [row.value for row in field.matrix_rows]
    answers = set(field.column_values)

    def matrix_check(value: Any, context: dict) -> Optional[str]:
        if not isinstance(value, dict) or not all(isinstance(k, str) for k in value):
            return "Must be an object keyed by row"

        if not rows:
            for entry in value.values():
                if isinstance(entry, bool) or not isinstance(entry, (str, int, float)):
                    return "Matrix entries must be text or numbers"
            return None

        for key in value:
            if key not in rows:
                return f"Unknown matrix row: {key}"
        for row in rows:
            entry = value.get(row)
            if is_empty(entry):
                continue
            if not isinstance(entry, str) or (answers and entry not in answers):
                return f"Invalid answer for row {row}"
        if is_required(field, context) and any(is_empty(value.get(row)) for row in rows):
            return "Every row must be answered"
        return None

    return _with_custom(field, [matrix_check])


@build_checks.register
def _(field: CalculatedField) -> Optional[list[Check]]:
    def scalar_check(value: Any, _: dict) -> Optional[str]:
        if isinstance(value, (str, bool)) or _is_number(value):
            return None
        return "Calculated value must be a number, text or boolean"

    return [scalar_check]


@build_checks.register
def _(field: FileField) -> Optional[list[Check]]:
    max_size = field.max_file_size

    def file_check(value: Any, _: dict) -> Optional[str]:
        if not isinstance(value, dict):
            return "Must be an uploaded file"
        if is_empty(value.get("filename")) or not isinstance(value.get("filename"), str):
            return "File name is required"
        if is_empty(value.get("path")) or not isinstance(value.get("path"), str):
            return "File path is required"
        size = value.get("size")
        if not _is_number(size) or size <= 0:
            return "File size must be greater than 0"
        if max_size is not None and size > max_size:
            return f"File exceeds the maximum size of {max_size} bytes"
        return None

    return _with_custom(field, [file_check])


@build_checks.register
def _(field: SignatureField) -> Optional[list[Check]]:
    def signature_check(value: Any, _: dict) -> Optional[str]:
        if not isinstance(value, dict):
            return "Must be a signature"
        name = value.get("name")
        if not isinstance(name, str) or len(name.strip()) < 2:
            return "Signature name must be at least 2 characters"
        if value.get("confirmed") is not True:
            return "Signature must be confirmed"
        timestamp = value.get("timestamp")
        if not isinstance(timestamp, str) or not timestamp.strip():
            return "Signature timestamp is required"
        return None

    return _with_custom(field, [signature_check])


# ---------------------------------------------------------------------------
# Compiled validator


@dataclass
class FieldRule:
    """Compiled checks for one value-holding field."""
    field: BaseField
    checks: list[Check]

    def validate(self, value: Any, context: dict) -> Optional[str]:
        """Return the first failing message for a value, or None."""
        if is_empty(value):
            if is_required(self.field, context):
                return REQUIRED_MESSAGE
            return None
        for check in self.checks:
            message = check(value, context)
            if message:
                return message
        return None


@dataclass
class RepeatRule:
    """Compiled rules for a repeatable section."""
    section: Section
    item_rules: list[FieldRule]

    def validate(self, value: Any, payload: dict) -> list[FieldError]:
        section = self.section
        items = [] if value is None else value
        if not isinstance(items, list):
            return [FieldError(section.id, "Must be a list of items")]

        errors: list[FieldError] = []
        if len(items) < section.min_repeat:
            errors.append(FieldError(
                section.id, f"At least {section.min_repeat} item(s) required"
            ))
        elif section.max_repeat is not None and len(items) > section.max_repeat:
            errors.append(FieldError(
                section.id, f"At most {section.max_repeat} item(s) allowed"
            ))

        for index, item in enumerate(items):
            prefix = f"{section.id}.{index}"
            if not isinstance(item, dict):
                errors.append(FieldError(prefix, "Each item must be an object"))
                continue
            context = {**payload, **item}
            for rule in self.item_rules:
                message = rule.validate(item.get(rule.field.id), context)
                if message:
                    errors.append(FieldError(f"{prefix}.{rule.field.id}", message))
        return errors


class FormValidator:
    """Validator for payloads of one form schema."""

    def __init__(self, schema: FormSchema, rules: list[Union[FieldRule, RepeatRule]]):
        self.schema = schema
        self.rules = rules

    def validate_field(self, field_id: str, payload: Optional[dict]) -> Optional[str]:
        """Validate a single top-level field, for per-keystroke feedback.

        Returns:
            Error message, or None if the field is valid or unknown
        """
        payload = payload if isinstance(payload, dict) else {}
        for rule in self.rules:
            if isinstance(rule, FieldRule) and rule.field.id == field_id:
                return rule.validate(payload.get(field_id), payload)
        return None

    def validate(self, payload: Optional[dict]) -> ValidationResult:
        """Validate a complete payload.

        Args:
            payload: Response payload keyed by field id

        Returns:
            ValidationResult with one FieldError per offending field

        Example:
            >>> result = validator.validate({"age": 150})
            >>> result.errors
            [FieldError(field_id='age', message='Must be at most 120')]
        """
        if not isinstance(payload, dict):
            return ValidationResult(
                valid=False, errors=[FieldError("_form", "Payload must be an object")]
            )

        errors: list[FieldError] = []
        for rule in self.rules:
            if isinstance(rule, RepeatRule):
                errors.extend(rule.validate(payload.get(rule.section.id), payload))
                continue
            message = rule.validate(payload.get(rule.field.id), payload)
            if message:
                errors.append(FieldError(rule.field.id, message))

        return ValidationResult(valid=not errors, errors=errors)


def _compile_fields(fields: list[BaseField]) -> list[FieldRule]:
    rules = []
    for field in fields:
        checks = build_checks(field)
        if checks is not None:
            rules.append(FieldRule(field=field, checks=checks))
    return rules


@dataclass
class CompileResult:
    """Either a validator or the structural errors that prevented one."""
    validator: Optional[FormValidator] = None
    errors: list[StructuralError] = dataclass_field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.validator is not None


def compile_validator(schema: Union[FormSchema, dict, Any]) -> CompileResult:
    """Compile a form schema into a FormValidator.

    Never raises: a schema that fails parsing or structural validation
    comes back as a CompileResult carrying the errors.

    Args:
        schema: Parsed FormSchema or its raw JSON document

    Returns:
        CompileResult
    """
    try:
        parsed = parse_form_schema(schema)
    except SchemaParseError as e:
        return CompileResult(errors=list(e.errors))

    structural_errors = validate_form_schema(parsed)
    if structural_errors:
        return CompileResult(errors=structural_errors)

    rules: list[Union[FieldRule, RepeatRule]] = []
    try:
        for _, section in parsed.iter_sections():
            if section.repeatable:
                rules.append(RepeatRule(section=section, item_rules=_compile_fields(section.fields)))
            else:
                rules.extend(_compile_fields(section.fields))
    except (TypeError, re.error) as e:
        logger.error(f"Failed to compile validator: {e}")
        return CompileResult(errors=[StructuralError("_schema", str(e))])

    logger.debug(f"Compiled validator with {len(rules)} rule(s)")
    return CompileResult(validator=FormValidator(parsed, rules))
