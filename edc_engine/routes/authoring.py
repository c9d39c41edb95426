"""Form authoring endpoints.

Used by the form builder while a schema is being designed: structural
validation of a whole schema, safety checks and trial evaluation of single
expressions, REDCap branching conversion, and ready-made form templates.
None of these endpoints touch stored data.
"""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from edc_engine.schemas.api import ExpressionRequest, SchemaValidateRequest
from edc_engine.services.expressions import evaluate, extract_field_refs, validate_expression
from edc_engine.services.redcap_branching import convert_redcap_branching
from edc_engine.services.schema_validator import validate_form_schema
from edc_engine.services.template_loader import (
    TemplateNotFoundError,
    TemplateValidationError,
    get_template_loader,
)
from edc_engine.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api")


class RedcapConvertRequest(BaseModel):
    expression: str


@router.post("/schemas/validate")
def validate_schema(body: SchemaValidateRequest) -> dict:
    """Report every structural error of a schema document.

    Example response:
        {"valid": false, "errors": [{"path": "age", "message": "min must not exceed max"}]}
    """
    errors = validate_form_schema(body.form_schema)
    return {"valid": not errors, "errors": [e.to_dict() for e in errors]}


@router.post("/expressions/validate")
def check_expression(body: ExpressionRequest) -> dict:
    """Safety-check an expression and list the fields it references."""
    errors = validate_expression(body.expression)
    return {
        "valid": not errors,
        "errors": errors,
        "fieldRefs": [] if errors else extract_field_refs(body.expression),
    }


@router.post("/expressions/evaluate")
def evaluate_expression(body: ExpressionRequest) -> dict:
    """Evaluate an expression against sample data (null on any error)."""
    errors = validate_expression(body.expression)
    if errors:
        return {"value": None, "errors": errors}
    return {
        "value": evaluate(body.expression, body.data, body.cross_form_data),
        "errors": [],
    }


@router.post("/expressions/convert-redcap")
def convert_redcap(body: RedcapConvertRequest) -> dict:
    """Convert REDCap branching logic and check the result."""
    converted = convert_redcap_branching(body.expression)
    return {
        "expression": converted,
        "errors": validate_expression(converted) if converted else [],
    }


@router.get("/templates")
def list_templates() -> dict:
    """List available form templates."""
    loader = get_template_loader()
    templates = []
    for template_id in loader.list_templates():
        try:
            template = loader.load_template(template_id)
        except TemplateValidationError as e:
            logger.error(f"Skipping invalid template {template_id}: {e}")
            continue
        templates.append({
            "id": template.metadata.id,
            "name": template.metadata.name,
            "description": template.metadata.description,
            "fieldCount": template.field_count,
        })
    return {"templates": templates}


@router.get("/templates/{template_id}")
def get_template(template_id: str) -> dict:
    """Get a form template including its schema."""
    try:
        template = get_template_loader().load_template(template_id)
    except TemplateNotFoundError:
        raise HTTPException(status_code=404, detail=f"Template '{template_id}' not found")
    except TemplateValidationError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return template.model_dump(by_alias=True, exclude_none=True)
