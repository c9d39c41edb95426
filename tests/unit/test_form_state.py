"""Unit tests for fill-time form state and calculated values."""

import pytest

from edc_engine.services.form_state import apply_calculated_values, compute_form_state
from edc_engine.services.schema_parser import parse_form_schema


@pytest.fixture
def schema():
    """Two-page schema with visibility rules, a calculation chain and a repeat."""
    return parse_form_schema({
        "pages": [
            {
                "id": "screening",
                "sections": [
                    {
                        "id": "basics",
                        "fields": [
                            {"id": "sex", "type": "radio",
                             "options": [{"value": "male"}, {"value": "female"}]},
                            {"id": "pregnant", "type": "radio",
                             "visibility": "{sex} == 'female'",
                             "required": "{sex} == 'female'",
                             "options": [{"value": "yes"}, {"value": "no"}]},
                            {"id": "weight", "type": "number", "required": True},
                            {"id": "height", "type": "number", "disabled": "{weight} == null"},
                            {"id": "bmi_class", "type": "calculated",
                             "expression": "{bmi} >= 30"},
                            {"id": "bmi", "type": "calculated",
                             "expression": "round({weight} / ({height} / 100) ^ 2, 1)"},
                        ],
                    },
                    {
                        "id": "meds",
                        "title": "Medication",
                        "repeatable": True,
                        "repeatLabel": "Medication #{n}",
                        "fields": [
                            {"id": "dose", "type": "number"},
                            {"id": "per_kg", "type": "calculated",
                             "expression": "round({dose} / {weight}, 2)"},
                        ],
                    },
                ],
            },
            {
                "id": "pregnancy",
                "visibility": "{pregnant} == 'yes'",
                "sections": [
                    {"id": "pregnancy_details",
                     "fields": [{"id": "due_date", "type": "date"}]},
                ],
            },
        ]
    })


class TestApplyCalculatedValues:
    """Tests for apply_calculated_values."""

    def test_calculation_chain_in_dependency_order(self, schema):
        """Test that a calculation using another calculation sees its value."""
        result = apply_calculated_values(schema, {"weight": 100, "height": 175})
        assert result["bmi"] == 32.7
        assert result["bmi_class"] is True

    def test_input_is_not_modified(self, schema):
        data = {"weight": 70, "height": 175, "meds": [{"dose": 140}]}
        apply_calculated_values(schema, data)
        assert "bmi" not in data
        assert "per_kg" not in data["meds"][0]

    def test_repeat_items_use_top_level_values(self, schema):
        result = apply_calculated_values(
            schema, {"weight": 70, "height": 175, "meds": [{"dose": 140}, {"dose": 35}]}
        )
        assert [item["per_kg"] for item in result["meds"]] == [2.0, 0.5]

    def test_missing_inputs_give_null(self, schema):
        result = apply_calculated_values(schema, {})
        assert result["bmi"] is None
        assert result["bmi_class"] is None

    def test_non_dict_payload(self, schema):
        result = apply_calculated_values(schema, None)
        assert result["bmi"] is None


class TestComputeFormState:
    """Tests for compute_form_state."""

    def test_conditional_field_hidden(self, schema):
        state = compute_form_state(schema, {"sex": "male"})
        assert "pregnant" not in state.visible_fields
        assert "pregnant" not in state.required_fields

    def test_conditional_field_visible_and_required(self, schema):
        state = compute_form_state(schema, {"sex": "female"})
        assert "pregnant" in state.visible_fields
        assert "pregnant" in state.required_fields

    def test_page_visibility(self, schema):
        hidden = compute_form_state(schema, {"sex": "female", "pregnant": "no"})
        assert hidden.visible_pages == ["screening"]
        assert "due_date" not in hidden.visible_fields

        shown = compute_form_state(schema, {"sex": "female", "pregnant": "yes"})
        assert shown.visible_pages == ["screening", "pregnancy"]
        assert "pregnancy_details" in shown.visible_sections
        assert "due_date" in shown.visible_fields

    def test_disabled_expression(self, schema):
        assert "height" in compute_form_state(schema, {}).disabled_fields
        assert "height" not in compute_form_state(schema, {"weight": 70}).disabled_fields

    def test_calculated_values(self, schema):
        state = compute_form_state(schema, {"weight": 70, "height": 175})
        assert state.calculated_values["bmi"] == 22.9
        assert state.calculated_values["bmi_class"] is False

    def test_repeatable_section_paths_and_labels(self, schema):
        state = compute_form_state(
            schema, {"weight": 70, "meds": [{"dose": 140}, {"dose": 70}]}
        )
        assert state.repeat_labels["meds"] == ["Medication 1", "Medication 2"]
        assert "meds.0.dose" in state.visible_fields
        assert state.calculated_values["meds.1.per_kg"] == 1.0

    def test_to_dict_keys(self, schema):
        assert set(compute_form_state(schema, {}).to_dict()) == {
            "visiblePages",
            "visibleSections",
            "visibleFields",
            "requiredFields",
            "disabledFields",
            "calculatedValues",
            "repeatLabels",
        }
