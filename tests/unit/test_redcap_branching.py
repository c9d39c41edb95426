"""Unit tests for REDCap branching logic conversion."""

from edc_engine.services.expressions import evaluate_boolean, validate_expression
from edc_engine.services.redcap_branching import convert_redcap_branching


class TestConvertRedcapBranching:
    """Tests for convert_redcap_branching."""

    def test_field_and_equality(self):
        """Test field brackets, = and quote conversion."""
        assert convert_redcap_branching("[sex] = '2'") == '{sex} == "2"'

    def test_comparison_operators_are_kept(self):
        """Test that >=, <= and == are not rewritten."""
        assert convert_redcap_branching("[age] >= 18") == "{age} >= 18"
        assert convert_redcap_branching("[age] <= 65") == "{age} <= 65"
        assert convert_redcap_branching("[age] == 18") == "{age} == 18"

    def test_not_equal(self):
        """Test <> becomes !=."""
        assert convert_redcap_branching("[status] <> 'done'") == '{status} != "done"'

    def test_boolean_keywords(self):
        """Test AND / OR / NOT lower-casing."""
        assert convert_redcap_branching("[age] >= 18 AND [sex] = '2'") == (
            '{age} >= 18 and {sex} == "2"'
        )
        assert convert_redcap_branching("[a] = '1' OR [b] = '1'") == (
            '{a} == "1" or {b} == "1"'
        )

    def test_checkbox_checked(self):
        """Test [field(code)] = '1' becomes membership."""
        assert convert_redcap_branching("[symptoms(fever)] = '1'") == '"fever" in {symptoms}'

    def test_checkbox_unchecked(self):
        """Test [field(code)] = '0' becomes negated membership."""
        assert convert_redcap_branching("[symptoms(fever)] = '0'") == (
            'not ("fever" in {symptoms})'
        )

    def test_blank_input(self):
        """Test that blank logic converts to an empty string."""
        assert convert_redcap_branching("") == ""
        assert convert_redcap_branching("   ") == ""

    def test_converted_expression_is_valid_and_evaluates(self):
        """Test that converted logic passes the expression checks."""
        converted = convert_redcap_branching("[age] >= 18 AND [symptoms(fever)] = '1'")
        assert validate_expression(converted) == []
        assert evaluate_boolean(converted, {"age": 30, "symptoms": ["fever"]}) is True
        assert evaluate_boolean(converted, {"age": 30, "symptoms": []}) is False
