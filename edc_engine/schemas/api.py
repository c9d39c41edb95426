"""Request bodies of the HTTP API.

JSON bodies use camelCase keys like the form schema itself.
"""

from typing import Any, Optional

from pydantic import Field

from edc_engine.schemas.form import SchemaModel


class SchemaValidateRequest(SchemaModel):
    """Raw schema document to check before saving."""
    form_schema: Any = Field(alias="schema")


class ExpressionRequest(SchemaModel):
    """Expression to check or evaluate against sample data."""
    expression: str
    data: dict[str, Any] = Field(default_factory=dict)
    cross_form_data: Optional[dict[str, dict[str, Any]]] = None


class FormCreateRequest(SchemaModel):
    """New form definition version."""
    study_id: str = Field(min_length=1, max_length=100)
    slug: str = Field(pattern=r"^[a-z][a-z0-9_]*$", max_length=100)
    name: str = Field(min_length=1, max_length=200)
    form_schema: Any = Field(alias="schema")


class PayloadRequest(SchemaModel):
    """Response payload to validate or compute form state for."""
    data: dict[str, Any] = Field(default_factory=dict)
    cross_form_data: Optional[dict[str, dict[str, Any]]] = None


class DraftRequest(SchemaModel):
    """Save a draft: create when ``responseId`` is absent, else replace its payload."""
    response_id: Optional[int] = None
    form_id: Optional[int] = None
    participant_id: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)
    expected_updated_at: Optional[str] = None


class TransitionRequest(SchemaModel):
    """Lifecycle transition parameters."""
    expected_updated_at: Optional[str] = None
    data: Optional[dict[str, Any]] = None
    reason: Optional[str] = None
    meaning: Optional[str] = None
    credential: Optional[str] = None
