"""Repeat label rendering using Jinja2.

Repeatable sections carry a ``repeatLabel`` such as ``"Medication #{n}"``.
Labels are rendered as Jinja2 templates whose variable delimiters are
``#{`` and ``}`` so that authors never have to type Jinja2 syntax.
Labels come from form authors and are rendered in the Jinja2 sandbox.
StrictUndefined reports unknown placeholders instead of dropping them.
"""

from typing import Optional
from jinja2 import BaseLoader, StrictUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from edc_engine.schemas.form import Section
from edc_engine.logging_config import get_logger

logger = get_logger(__name__)


class TemplateRenderError(Exception):
    """Raised when label rendering fails."""
    pass


class TemplateRenderer:
    """Service for rendering ``#{...}`` label templates."""

    def __init__(self):
        """Initialize a sandboxed Jinja2 environment with label delimiters."""
        self.env = SandboxedEnvironment(
            loader=BaseLoader(),
            variable_start_string="#{",
            variable_end_string="}",
            block_start_string="#{%",
            block_end_string="%}",
            comment_start_string="#{#",
            comment_end_string="#}",
            autoescape=False,  # Labels are returned as JSON text
            undefined=StrictUndefined,
        )

    def render(self, template_text: str, context: dict) -> str:
        """Render a label template with context variables.

        Args:
            template_text: Label with ``#{name}`` placeholders
            context: Dictionary of variables for the label

        Returns:
            Rendered text

        Raises:
            TemplateRenderError: If the template is invalid or variables are missing

        Example:
            >>> renderer = TemplateRenderer()
            >>> renderer.render("Medication #{n}", {"n": 2})
            'Medication 2'
        """
        try:
            return self.env.from_string(template_text).render(context)
        except TemplateError as e:
            logger.warning(f"Label rendering error: {e}")
            raise TemplateRenderError(f"Failed to render label: {e}")


# Global singleton instance
_renderer_instance: Optional[TemplateRenderer] = None


def get_template_renderer() -> TemplateRenderer:
    """Get global TemplateRenderer instance."""
    global _renderer_instance
    if _renderer_instance is None:
        _renderer_instance = TemplateRenderer()
    return _renderer_instance


def render_repeat_label(section: Section, index: int) -> str:
    """Label for one instance of a repeatable section.

    Args:
        section: Repeatable section
        index: 0-based position of the instance

    Returns:
        Rendered ``repeatLabel`` with ``#{n}`` as the 1-based number, or
        ``"<title> <n>"`` when the section has no usable label
    """
    number = index + 1
    fallback = f"{section.title or section.id} {number}"
    if not section.repeat_label:
        return fallback
    try:
        return get_template_renderer().render(section.repeat_label, {"n": number})
    except TemplateRenderError:
        return fallback
