"""Form definition endpoints.

Form definitions are versioned: posting a schema for an existing
(study, slug) stores the next version instead of changing the old one,
so responses always point at the exact schema they were filled against.
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from edc_engine.middleware.identity import require_study_permission, require_user_id
from edc_engine.models.database import get_db
from edc_engine.models.form_definition import FormDefinition
from edc_engine.schemas.api import FormCreateRequest, PayloadRequest
from edc_engine.services.form_state import apply_calculated_values, compute_form_state
from edc_engine.services.permissions import Permission
from edc_engine.services.validator_generator import compile_validator
from edc_engine.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/forms")


def _form_to_dict(form: FormDefinition) -> dict:
    return {
        "id": form.id,
        "studyId": form.study_id,
        "slug": form.slug,
        "version": form.version,
        "name": form.name,
        "schema": form.schema_json,
        "createdBy": form.created_by,
        "createdAt": form.created_at.isoformat(),
    }


def _load_form(db: Session, form_id: int, user_id: str) -> FormDefinition:
    form = db.get(FormDefinition, form_id)
    if form is None:
        raise HTTPException(status_code=404, detail="Form definition not found")
    require_study_permission(db, form.study_id, user_id, Permission.VIEW_DATA)
    return form


@router.post("", status_code=201)
def create_form(
    body: FormCreateRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
):
    """Store a new form definition version.

    Returns 422 with the structural errors when the schema is invalid.
    """
    require_study_permission(db, body.study_id, user_id, Permission.EDIT_STUDY_CONFIG)

    compiled = compile_validator(body.form_schema)
    if not compiled.ok:
        return JSONResponse(
            status_code=422,
            content={
                "error": "Invalid form schema",
                "errors": [e.to_dict() for e in compiled.errors],
            },
        )

    latest = db.execute(
        select(func.max(FormDefinition.version)).where(
            FormDefinition.study_id == body.study_id,
            FormDefinition.slug == body.slug,
        )
    ).scalar()

    form = FormDefinition(
        study_id=body.study_id,
        slug=body.slug,
        version=(latest or 0) + 1,
        name=body.name,
        schema_json=compiled.validator.schema.model_dump(by_alias=True, exclude_none=True),
        created_by=user_id,
    )
    try:
        db.add(form)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to store form {body.slug}: {e}", extra={"study_id": body.study_id})
        raise HTTPException(status_code=409, detail="Form version already exists")

    db.refresh(form)
    logger.info(
        f"Stored form {form.slug} v{form.version}",
        extra={"study_id": form.study_id, "form_id": form.id, "actor_id": user_id},
    )
    return _form_to_dict(form)


@router.get("/{form_id}")
def get_form(
    form_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> dict:
    """Get a stored form definition."""
    return _form_to_dict(_load_form(db, form_id, user_id))


@router.post("/{form_id}/validate")
def validate_payload(
    form_id: int,
    body: PayloadRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> dict:
    """Validate a payload against a stored form without saving it."""
    form = _load_form(db, form_id, user_id)
    compiled = compile_validator(form.schema_json)
    if not compiled.ok:
        logger.error(f"Stored form {form_id} no longer compiles", extra={"form_id": form_id})
        raise HTTPException(status_code=500, detail="Stored form schema is invalid")

    data = apply_calculated_values(compiled.validator.schema, body.data, body.cross_form_data)
    return compiled.validator.validate(data).to_dict()


@router.post("/{form_id}/state")
def form_state(
    form_id: int,
    body: PayloadRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> dict:
    """Visible pages, sections and fields plus calculated values for a payload."""
    form = _load_form(db, form_id, user_id)
    state = compute_form_state(form.form_schema, body.data, body.cross_form_data)
    return state.to_dict()
