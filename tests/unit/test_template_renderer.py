"""Unit tests for repeat label rendering."""

import pytest

from edc_engine.schemas.form import Section
from edc_engine.services.template_renderer import (
    TemplateRenderError,
    TemplateRenderer,
    get_template_renderer,
    render_repeat_label,
)


class TestTemplateRenderer:
    """Tests for TemplateRenderer."""

    @pytest.fixture
    def renderer(self):
        return TemplateRenderer()

    def test_renders_placeholder(self, renderer):
        assert renderer.render("Medication #{n}", {"n": 2}) == "Medication 2"

    def test_plain_text_is_unchanged(self, renderer):
        assert renderer.render("Visit notes", {}) == "Visit notes"

    def test_jinja_braces_are_literal(self, renderer):
        """Test that standard Jinja2 delimiters are not interpreted."""
        assert renderer.render("{{ n }} #{n}", {"n": 1}) == "{{ n }} 1"

    def test_missing_variable_raises(self, renderer):
        with pytest.raises(TemplateRenderError):
            renderer.render("Item #{index}", {"n": 1})

    def test_singleton(self):
        assert get_template_renderer() is get_template_renderer()


class TestRenderRepeatLabel:
    """Tests for render_repeat_label."""

    def test_one_based_number(self):
        section = Section(id="meds", repeatable=True, repeat_label="Medication #{n}")
        assert render_repeat_label(section, 0) == "Medication 1"
        assert render_repeat_label(section, 4) == "Medication 5"

    def test_fallback_to_title(self):
        section = Section(id="meds", title="Medication", repeatable=True)
        assert render_repeat_label(section, 1) == "Medication 2"

    def test_fallback_to_id(self):
        section = Section(id="meds", repeatable=True)
        assert render_repeat_label(section, 0) == "meds 1"

    def test_broken_label_falls_back(self):
        section = Section(id="meds", title="Medication", repeatable=True,
                          repeat_label="Dose #{count}")
        assert render_repeat_label(section, 0) == "Medication 1"


class TestSandbox:
    """Tests that author labels cannot reach server internals."""

    def test_private_attribute_access_is_blocked(self):
        renderer = TemplateRenderer()
        with pytest.raises(TemplateRenderError):
            renderer.render("#{ lipsum.__globals__['os'].getcwd() }", {"n": 1})

    def test_injected_label_falls_back(self):
        section = Section(
            id="meds",
            title="Medication",
            repeatable=True,
            repeat_label="Item #{n} #{ lipsum.__globals__['os'].getcwd() }",
        )
        assert render_repeat_label(section, 0) == "Medication 1"
