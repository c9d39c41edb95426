"""Form schema parsing.

Turns the JSON document stored on a form definition into a ``FormSchema``.
Pydantic validation errors are converted into the same ``StructuralError``
list the schema validator produces, so callers handle one error shape.
"""

from dataclasses import dataclass
from typing import Any, Union

from pydantic import ValidationError

from edc_engine.schemas.form import FormSchema
from edc_engine.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class StructuralError:
    """A schema authoring violation.

    Attributes:
        path: Dotted location in the schema, or the offending element id
        message: Human-readable description for the form author
    """
    path: str
    message: str

    def to_dict(self) -> dict:
        return {"path": self.path, "message": self.message}


class SchemaParseError(Exception):
    """Raised when raw JSON does not fit the form schema shape."""

    def __init__(self, errors: list[StructuralError]):
        self.errors = errors
        super().__init__("; ".join(f"{e.path}: {e.message}" for e in errors))


def _path_from_loc(loc: tuple) -> str:
    return ".".join(str(part) for part in loc) or "_schema"


def parse_form_schema(raw: Union[FormSchema, dict, Any]) -> FormSchema:
    """Parse and normalize a form schema.

    Defaults for optional attributes (``repeatable``, ``minRepeat``,
    ``required``, ``disabled``) are applied by the models.

    Args:
        raw: A FormSchema (returned as-is) or its JSON document

    Returns:
        Parsed FormSchema

    Raises:
        SchemaParseError: If the document does not fit the schema shape

    Example:
        >>> schema = parse_form_schema({"pages": [{"id": "p1", "sections": []}]})
        >>> schema.pages[0].id
        'p1'
    """
    if isinstance(raw, FormSchema):
        return raw

    if not isinstance(raw, dict):
        raise SchemaParseError([
            StructuralError("_schema", "Schema must be a JSON object with a pages array")
        ])

    try:
        return FormSchema.model_validate(raw)
    except ValidationError as e:
        errors = [
            StructuralError(_path_from_loc(err["loc"]), err["msg"])
            for err in e.errors()
        ]
        logger.debug(f"Schema failed to parse with {len(errors)} error(s)")
        raise SchemaParseError(errors)
