"""Unit tests for the expression service.

Tests field references, safe evaluation with simpleeval, and the
never-raise contract of evaluate / evaluate_boolean.
"""

import pytest

from edc_engine.services.expressions import (
    ExpressionError,
    compile_expression,
    evaluate,
    evaluate_boolean,
    extract_field_refs,
    resolve_field_refs,
    validate_expression,
)


class TestFieldReferences:
    """Tests for {field} reference handling."""

    def test_extracts_refs_in_order(self):
        """Test that references are returned in order of appearance."""
        assert extract_field_refs("{weight} / {height} + {weight}") == [
            "weight", "height", "weight"
        ]

    def test_extracts_cross_form_refs(self):
        """Test that form.field references are kept whole."""
        assert extract_field_refs("{visit1.weight} - {weight}") == ["visit1.weight", "weight"]

    def test_ignores_braces_inside_string_literals(self):
        """Test that text literals are not scanned for references."""
        assert extract_field_refs("{name} == '{not_a_ref}'") == ["name"]

    def test_resolve_rewrites_caret_to_power(self):
        """Test that ^ becomes exponentiation outside literals."""
        resolved, refs = resolve_field_refs("{height} ^ 2 == '^'")
        assert "**" in resolved
        assert "'^'" in resolved
        assert refs == ["height"]

    def test_non_string_has_no_refs(self):
        """Test that non-text input yields no references."""
        assert extract_field_refs(None) == []


class TestEvaluateBoolean:
    """Tests for condition evaluation."""

    def test_simple_comparisons(self):
        """Test comparison operators against payload values."""
        assert evaluate_boolean("{age} >= 18", {"age": 25}) is True
        assert evaluate_boolean("{age} >= 18", {"age": 12}) is False
        assert evaluate_boolean("{sex} == 'female'", {"sex": "female"}) is True
        assert evaluate_boolean("{sex} != 'female'", {"sex": "female"}) is False

    def test_boolean_operators(self):
        """Test and / or / not."""
        data = {"age": 30, "consent": "yes"}
        assert evaluate_boolean("{age} > 18 and {consent} == 'yes'", data) is True
        assert evaluate_boolean("{age} > 40 or {consent} == 'yes'", data) is True
        assert evaluate_boolean("not ({age} > 18)", data) is False

    def test_membership_in_checkbox_values(self):
        """Test 'in' against a checkbox list."""
        data = {"symptoms": ["fever", "cough"]}
        assert evaluate_boolean("'fever' in {symptoms}", data) is True
        assert evaluate_boolean("'rash' in {symptoms}", data) is False
        assert evaluate_boolean("'rash' not in {symptoms}", data) is True

    def test_missing_field_is_false(self):
        """Test that a comparison against a missing value is false, not an error."""
        assert evaluate_boolean("{age} >= 18", {}) is False

    def test_literal_keywords(self):
        """Test true / false / null literals."""
        assert evaluate_boolean("{flag} == true", {"flag": True}) is True
        assert evaluate_boolean("{note} == null", {}) is True

    def test_invalid_expression_is_false(self):
        """Test that malformed or unsafe expressions evaluate to false."""
        assert evaluate_boolean("{age} >=", {"age": 25}) is False
        assert evaluate_boolean("__import__('os')", {}) is False
        assert evaluate_boolean("", {}) is False

    def test_non_dict_data_is_treated_as_empty(self):
        """Test that a non-object payload does not raise."""
        assert evaluate_boolean("{age} > 1", None) is False
        assert evaluate_boolean("1 < 2", "not a dict") is True


class TestEvaluate:
    """Tests for value evaluation (calculated fields)."""

    def test_bmi_calculation(self):
        """Test the canonical BMI expression with ^ and round."""
        result = evaluate(
            "round({weight} / ({height} / 100) ^ 2, 1)",
            {"weight": 70, "height": 175},
        )
        assert result == 22.9

    def test_caret_binds_tighter_than_multiplication(self):
        """Test that 2 * 3 ^ 2 is 18."""
        assert evaluate("2 * 3 ^ 2", {}) == 18

    def test_round_half_up(self):
        """Test that rounding is half away from zero."""
        assert evaluate("round(2.5)", {}) == 3
        assert evaluate("round(0.125, 2)", {}) == 0.13

    def test_functions(self):
        """Test whitelisted functions."""
        data = {"a": 2, "b": 5, "s": "AbC"}
        assert evaluate("max({a}, {b})", data) == 5
        assert evaluate("min({a}, {b})", data) == 2
        assert evaluate("abs(-{b})", data) == 5
        assert evaluate("length({s})", data) == 3
        assert evaluate("lower({s})", data) == "abc"
        assert evaluate("sqrt(16)", data) == 4.0

    def test_cross_form_reference(self):
        """Test values from another form's payload."""
        result = evaluate(
            "{visit1.weight} - {weight}",
            {"weight": 75},
            {"visit1": {"weight": 80}},
        )
        assert result == 5

    def test_missing_cross_form_data_is_null(self):
        """Test that arithmetic with an unknown form yields None."""
        assert evaluate("{visit1.weight} - {weight}", {"weight": 75}) is None

    def test_division_by_zero_is_null(self):
        """Test that arithmetic errors yield None."""
        assert evaluate("{a} / 0", {"a": 1}) is None

    def test_non_scalar_result_is_null(self):
        """Test that lists are not returned as calculated values."""
        assert evaluate("{items}", {"items": [1, 2]}) is None

    def test_python_power_operator_is_rejected(self):
        """Test that ** is not accepted in place of ^."""
        assert evaluate("2 ** 3", {}) is None


class TestCompileExpression:
    """Tests for parse-and-check compilation."""

    def test_compiled_expression_is_cached(self):
        """Test that the same source compiles to the same object."""
        assert compile_expression("{a} + 1") is compile_expression("{a} + 1")

    def test_compiled_refs(self):
        """Test that compiled expressions list their references once each."""
        compiled = compile_expression("{a} + {a} + {form1.b}")
        assert compiled.field_refs == ["a", "form1.b"]

    def test_bare_identifier_raises(self):
        """Test that fields must be referenced with braces."""
        with pytest.raises(ExpressionError) as exc_info:
            compile_expression("age > 18")
        assert "reference fields as {age}" in str(exc_info.value)


class TestValidateExpression:
    """Tests for author-time expression checks."""

    def test_valid_expression(self):
        """Test that a well-formed expression has no errors."""
        assert validate_expression("{age} >= 18 and {sex} == 'female'") == []

    def test_empty_expression(self):
        """Test that blank expressions are rejected."""
        assert validate_expression("   ") == ["Expression is required"]

    def test_syntax_error(self):
        """Test that syntax errors are reported."""
        errors = validate_expression("{age} >=")
        assert len(errors) == 1
        assert errors[0].startswith("Invalid expression syntax")

    def test_unknown_function(self):
        """Test that only whitelisted functions may be called."""
        assert validate_expression("__import__('os')") == ["Unknown function: __import__"]
        assert validate_expression("open('x')") == ["Unknown function: open"]

    def test_attribute_access_rejected(self):
        """Test that attribute access is outside the grammar."""
        assert validate_expression("{name}.upper()") != []

    def test_subscript_and_containers_rejected(self):
        """Test that subscripts, lists and comprehensions are rejected."""
        assert validate_expression("{items}[0]") != []
        assert validate_expression("[1, 2, 3]") != []
        assert validate_expression("[x for x in {items}]") != []

    def test_lambda_rejected(self):
        """Test that lambdas are rejected."""
        assert validate_expression("(lambda: 1)()") != []

    def test_keyword_arguments_rejected(self):
        """Test that calls may not use keyword arguments."""
        assert validate_expression("round({a}, ndigits=1)") == [
            "Keyword arguments are not allowed"
        ]

    def test_power_operator_message(self):
        """Test the hint for Python's power operator."""
        assert validate_expression("{a} ** 2") == ["Use ^ for exponentiation"]

    def test_too_long(self):
        """Test the length limit."""
        errors = validate_expression("1 + " * 200 + "1")
        assert errors == ["Expression exceeds maximum length of 500 characters"]
