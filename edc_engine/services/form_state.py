"""Fill-time form state.

While a form is being filled the UI asks which pages, sections and fields
are visible, which fields are currently required or disabled, and what the
calculated fields evaluate to. ``compute_form_state`` answers all of that
for one payload.

Calculated fields are evaluated in dependency order so a calculation that
uses another calculated field sees its fresh value. Hidden pages hide their
sections and hidden sections hide their fields.
"""

import copy
from dataclasses import dataclass, field as dataclass_field
from typing import Any, Optional

from edc_engine.schemas.form import BaseField, CalculatedField, FormSchema, Section
from edc_engine.services.cycle_detector import dependency_order, node_id
from edc_engine.services.expressions import evaluate, evaluate_boolean
from edc_engine.services.template_renderer import render_repeat_label
from edc_engine.services.validator_generator import is_required
from edc_engine.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class FormState:
    """Visibility and derived values for one payload.

    Field paths use the field id, or ``section.<index>.field`` for fields
    inside repeatable sections.
    """
    visible_pages: list[str] = dataclass_field(default_factory=list)
    visible_sections: list[str] = dataclass_field(default_factory=list)
    visible_fields: list[str] = dataclass_field(default_factory=list)
    required_fields: list[str] = dataclass_field(default_factory=list)
    disabled_fields: list[str] = dataclass_field(default_factory=list)
    calculated_values: dict[str, Any] = dataclass_field(default_factory=dict)
    repeat_labels: dict[str, list[str]] = dataclass_field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "visiblePages": self.visible_pages,
            "visibleSections": self.visible_sections,
            "visibleFields": self.visible_fields,
            "requiredFields": self.required_fields,
            "disabledFields": self.disabled_fields,
            "calculatedValues": self.calculated_values,
            "repeatLabels": self.repeat_labels,
        }


def _is_visible(expression: Optional[str], context: dict, cross_form_data: Optional[dict]) -> bool:
    if not expression:
        return True
    return evaluate_boolean(expression, context, cross_form_data)


def _is_disabled(field: BaseField, context: dict, cross_form_data: Optional[dict]) -> bool:
    if isinstance(field.disabled, str):
        return evaluate_boolean(field.disabled, context, cross_form_data)
    return bool(field.disabled)


def _items(data: dict, section: Section) -> list:
    items = data.get(section.id)
    return items if isinstance(items, list) else []


def apply_calculated_values(
    schema: FormSchema,
    data: Optional[dict],
    cross_form_data: Optional[dict] = None,
) -> dict:
    """Return a copy of the payload with every calculated field evaluated.

    Args:
        schema: Parsed form schema
        data: Response payload
        cross_form_data: Payloads of other forms keyed by form slug

    Returns:
        New payload dict; the input is not modified
    """
    result = copy.deepcopy(data) if isinstance(data, dict) else {}

    calculated: dict[str, tuple[Section, CalculatedField]] = {}
    for _, section in schema.iter_sections():
        for field in section.fields:
            if isinstance(field, CalculatedField) and field.expression:
                calculated[node_id(section, field.id)] = (section, field)

    for node in dependency_order(schema):
        if node not in calculated:
            continue
        section, field = calculated[node]
        if not section.repeatable:
            result[field.id] = evaluate(field.expression, result, cross_form_data)
            continue
        for item in _items(result, section):
            if isinstance(item, dict):
                item[field.id] = evaluate(
                    field.expression, {**result, **item}, cross_form_data
                )

    return result


def compute_form_state(
    schema: FormSchema,
    data: Optional[dict],
    cross_form_data: Optional[dict] = None,
) -> FormState:
    """Compute visibility, required-ness, disabled state and calculated values.

    Args:
        schema: Parsed form schema
        data: Current (possibly partial) response payload
        cross_form_data: Payloads of other forms keyed by form slug

    Returns:
        FormState for the payload

    Example:
        >>> state = compute_form_state(schema, {"sex": "female"})
        >>> "pregnant" in state.visible_fields
        True
    """
    payload = apply_calculated_values(schema, data, cross_form_data)
    state = FormState()

    for page in schema.pages:
        if not _is_visible(page.visibility, payload, cross_form_data):
            continue
        state.visible_pages.append(page.id)

        for section in page.sections:
            if not _is_visible(section.visibility, payload, cross_form_data):
                continue
            state.visible_sections.append(section.id)

            if not section.repeatable:
                for field in section.fields:
                    _add_field(state, field, field.id, payload, payload, cross_form_data)
                continue

            items = _items(payload, section)
            state.repeat_labels[section.id] = [
                render_repeat_label(section, index) for index in range(len(items))
            ]
            for index, item in enumerate(items):
                if not isinstance(item, dict):
                    continue
                context = {**payload, **item}
                for field in section.fields:
                    path = f"{section.id}.{index}.{field.id}"
                    _add_field(state, field, path, item, context, cross_form_data)

    return state


def _add_field(
    state: FormState,
    field: BaseField,
    path: str,
    values: dict,
    context: dict,
    cross_form_data: Optional[dict],
) -> None:
    if not _is_visible(field.visibility, context, cross_form_data):
        return
    state.visible_fields.append(path)
    if is_required(field, context):
        state.required_fields.append(path)
    if _is_disabled(field, context, cross_form_data):
        state.disabled_fields.append(path)
    if isinstance(field, CalculatedField):
        state.calculated_values[path] = values.get(field.id)
