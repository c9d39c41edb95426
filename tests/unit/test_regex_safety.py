"""Unit tests for validation pattern safety checks."""

import pytest

from edc_engine.services.regex_safety import is_redos_vulnerable, validate_regex_pattern


class TestIsRedosVulnerable:
    """Tests for the catastrophic backtracking heuristic."""

    @pytest.mark.parametrize("pattern", [
        r"^\d{3}-\d{4}$",
        r"^[A-Z]{2}\d{6}$",
        r"^[^@]+@[^@]+\.[^@]+$",
        r"^(yes|no)$",
        r"^(a|b)*$",
        r"^\w+\s\w+$",
        r"^[a-z0-9_]{1,20}$",
        r"^(?:\+1)?\d{10}$",
    ])
    def test_safe_patterns(self, pattern):
        """Test that common field patterns are accepted."""
        assert is_redos_vulnerable(pattern) is False

    @pytest.mark.parametrize("pattern", [
        r"(a+)+",
        r"(a*)*b",
        r"^(\w+\s?)*$",
        r"(a|a)*",
        r"(a|ab)+c",
        r"(\w|\d)+",
        r"(.*a){2}",
    ])
    def test_vulnerable_patterns(self, pattern):
        """Test nested quantifiers and overlapping repeated alternations."""
        assert is_redos_vulnerable(pattern) is True

    def test_large_repetition_count(self):
        """Test that counted repetitions above the limit are rejected."""
        assert is_redos_vulnerable(r"a{1000}") is True
        assert is_redos_vulnerable(r"a{1,25}") is False

    def test_too_long_pattern(self):
        """Test that over-long patterns count as vulnerable."""
        assert is_redos_vulnerable("a" * 201) is True


class TestValidateRegexPattern:
    """Tests for author-time pattern checks."""

    def test_accepts_safe_pattern(self):
        """Test that a safe pattern has no error."""
        assert validate_regex_pattern(r"^\d{5}$") is None

    def test_rejects_invalid_regex(self):
        """Test that patterns that do not compile are reported."""
        message = validate_regex_pattern("([a-z]")
        assert message.startswith("Invalid regex:")

    def test_rejects_vulnerable_pattern(self):
        """Test the ReDoS message."""
        assert validate_regex_pattern(r"(a+)+$") == "Pattern is vulnerable to ReDoS attacks"

    def test_rejects_long_pattern(self):
        """Test the length message."""
        assert validate_regex_pattern("a" * 201) == "Pattern too long (max 200 characters)"
