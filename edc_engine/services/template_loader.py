"""Form template loader with caching and validation.

This module loads ready-made form templates (demographics, vital signs,
adverse events, ...) from YAML files, validates them against the Pydantic
schemas and the structural schema validator, and caches the results.
"""

from pathlib import Path
from functools import lru_cache
from typing import Optional
import yaml
from pydantic import ValidationError

from edc_engine.config import get_settings
from edc_engine.schemas.form import FormTemplate
from edc_engine.services.schema_validator import validate_form_schema
from edc_engine.logging_config import get_logger

logger = get_logger(__name__)


class TemplateNotFoundError(Exception):
    """Raised when a template file is not found."""
    pass


class TemplateValidationError(Exception):
    """Raised when a template fails validation."""
    pass


class FormTemplateLoader:
    """Service for loading and caching form templates.

    Templates are loaded from YAML files in the templates directory and
    validated before they are offered to form builders.
    """

    def __init__(self, templates_dir: Optional[str] = None):
        """Initialize template loader.

        Args:
            templates_dir: Path to templates directory (defaults to the
                ``templates_dir`` setting, relative to the project root)
        """
        if templates_dir is None:
            templates_dir = Path(get_settings().templates_dir)
            if not templates_dir.is_absolute():
                project_root = Path(__file__).parent.parent.parent
                templates_dir = project_root / templates_dir

        self.templates_dir = Path(templates_dir)

        if not self.templates_dir.exists():
            logger.warning(f"Templates directory not found: {self.templates_dir}")

    @lru_cache(maxsize=128)
    def load_template(self, template_id: str) -> FormTemplate:
        """Load and validate a form template from its YAML file.

        Results are cached. Clear cache with clear_cache() if needed.

        Args:
            template_id: Template identifier (YAML filename without .yaml)

        Returns:
            Validated FormTemplate

        Raises:
            TemplateNotFoundError: If the template file doesn't exist
            TemplateValidationError: If the template fails validation

        Example:
            >>> loader = FormTemplateLoader()
            >>> template = loader.load_template("vitals")
            >>> template.metadata.name
            'Vital Signs'
        """
        yaml_path = self.templates_dir / f"{template_id}.yaml"

        if not yaml_path.exists():
            logger.error(f"Template file not found: {yaml_path}")
            raise TemplateNotFoundError(f"Template '{template_id}' not found at {yaml_path}")

        try:
            with open(yaml_path, "r", encoding="utf-8") as f:
                raw_data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"YAML parsing error for {template_id}: {e}")
            raise TemplateValidationError(f"Invalid YAML in template '{template_id}': {e}")
        except OSError as e:
            logger.error(f"Error reading template file {yaml_path}: {e}")
            raise TemplateValidationError(f"Error reading template '{template_id}': {e}")

        if not isinstance(raw_data, dict):
            raise TemplateValidationError(f"Template '{template_id}' must be a mapping")

        try:
            template = FormTemplate.model_validate(raw_data)
        except ValidationError as e:
            logger.error(f"Validation error for template {template_id}: {e}")
            raise TemplateValidationError(f"Validation failed for template '{template_id}': {e}")

        errors = validate_form_schema(template.form_schema)
        if errors:
            details = "; ".join(f"{err.path}: {err.message}" for err in errors)
            logger.error(f"Structural errors in template {template_id}: {details}")
            raise TemplateValidationError(f"Template '{template_id}' is invalid: {details}")

        logger.info(f"Loaded form template: {template_id} ({template.field_count} fields)")
        return template

    def list_templates(self) -> list[str]:
        """List all available template IDs.

        Returns:
            Sorted template IDs (filenames without .yaml extension)
        """
        if not self.templates_dir.exists():
            return []

        template_ids = [f.stem for f in self.templates_dir.glob("*.yaml")]
        logger.debug(f"Found {len(template_ids)} templates: {template_ids}")
        return sorted(template_ids)

    def clear_cache(self):
        """Clear the template cache."""
        self.load_template.cache_clear()
        logger.info("Template cache cleared")


# Global singleton instance
_loader_instance: Optional[FormTemplateLoader] = None


def get_template_loader() -> FormTemplateLoader:
    """Get global FormTemplateLoader instance.

    Returns:
        Global FormTemplateLoader instance
    """
    global _loader_instance
    if _loader_instance is None:
        _loader_instance = FormTemplateLoader()
    return _loader_instance
