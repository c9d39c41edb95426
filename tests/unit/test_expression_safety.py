"""Unit tests for expression safety checks."""

import ast

import pytest

from edc_engine.services.expression_safety import (
    UnsafeExpressionError,
    check_limits,
    check_tree,
    strip_string_literals,
)


def _tree(source: str) -> ast.AST:
    return ast.parse(source, mode="eval")


class TestCheckLimits:
    """Tests for length and nesting limits."""

    def test_within_limits(self):
        """Test a normal expression."""
        assert check_limits("((ref__a + 1) * 2)") == []

    def test_nesting_depth(self):
        """Test that more than ten nested parentheses are rejected."""
        source = "(" * 11 + "1" + ")" * 11
        assert check_limits(source) == ["Expression nesting depth exceeds maximum of 10"]

    def test_nesting_at_limit(self):
        """Test that exactly ten levels are accepted."""
        source = "(" * 10 + "1" + ")" * 10
        assert check_limits(source) == []

    def test_unbalanced(self):
        """Test unbalanced parentheses."""
        assert check_limits("(1 + 2") == ["Unbalanced parentheses"]
        assert check_limits("1 + 2)") == ["Unbalanced parentheses"]

    def test_parentheses_in_literals_are_ignored(self):
        """Test that text literals do not count towards nesting."""
        assert check_limits("{a} == '((((((((((((('") == []


class TestStripStringLiterals:
    """Tests for literal masking."""

    def test_masks_both_quote_styles(self):
        """Test single- and double-quoted literals."""
        assert strip_string_literals("{a} == 'x**y' or {b} == \"(\"") == '{a} == "" or {b} == ""'

    def test_escaped_quotes(self):
        """Test that escaped quotes stay inside the literal."""
        assert strip_string_literals(r"'it\'s' + 1") == '"" + 1'


class TestCheckTree:
    """Tests for the grammar whitelist."""

    def test_allows_grammar(self):
        """Test that grammar constructs pass."""
        check_tree(_tree("ref__a > 1 and not ref__b or round(ref__c, 1) in ref__d"),
                   ["ref__a", "ref__b", "ref__c", "ref__d"], ["round"])

    @pytest.mark.parametrize("source", [
        "ref__a.__class__",
        "ref__a[0]",
        "(1, 2)",
        "{1: 2}",
        "lambda: 1",
        "ref__a if ref__a else 1",
        "f'{ref__a}'",
    ])
    def test_rejects_constructs(self, source):
        """Test that constructs outside the grammar raise."""
        with pytest.raises(UnsafeExpressionError):
            check_tree(_tree(source), ["ref__a"], ["round"])

    def test_rejects_dunder_identifier(self):
        """Test that underscore names are refused."""
        with pytest.raises(UnsafeExpressionError) as exc_info:
            check_tree(_tree("__builtins__"), [], [])
        assert "Identifier not allowed" in str(exc_info.value)

    def test_rejects_bytes_literal(self):
        """Test that only number, text and boolean literals are allowed."""
        with pytest.raises(UnsafeExpressionError):
            check_tree(_tree("b'abc'"), [], [])
