"""Response lifecycle endpoints.

Thin HTTP layer over ``ResponseLifecycle``: the caller's role is resolved
for the response's study, the transition is applied, and lifecycle errors
are mapped to status codes:

- permission -> 403
- not found -> 404
- conflict (stale ``expectedUpdatedAt``) -> 409
- precondition or validation -> 422
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from edc_engine.middleware.identity import require_study_permission, require_user_id
from edc_engine.models.database import get_db
from edc_engine.models.form_definition import FormDefinition
from edc_engine.models.response import FormResponse
from edc_engine.schemas.api import DraftRequest, TransitionRequest
from edc_engine.services.audit import AuditTrail
from edc_engine.services.lifecycle import (
    ErrorKind,
    ResponseLifecycle,
    TransitionKind,
    TransitionResult,
)
from edc_engine.services.permissions import Permission, get_member_role
from edc_engine.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/responses")

STATUS_CODES = {
    ErrorKind.PERMISSION: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.PRECONDITION: 422,
    ErrorKind.VALIDATION: 422,
}


def _to_http(result: TransitionResult, success_status: int = 200) -> JSONResponse:
    if result.ok:
        return JSONResponse(status_code=success_status, content=result.response.to_dict())
    return JSONResponse(
        status_code=STATUS_CODES[result.error.kind],
        content={"error": result.error.to_dict()},
    )


def _load_response(db: Session, response_id: int) -> FormResponse:
    response = db.get(FormResponse, response_id)
    if response is None:
        raise HTTPException(status_code=404, detail="Form response not found")
    return response


@router.post("")
def save_draft(
    body: DraftRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> JSONResponse:
    """Create a draft response, or replace the payload of an existing draft."""
    lifecycle = ResponseLifecycle(db)

    if body.response_id is not None:
        response = _load_response(db, body.response_id)
        role = get_member_role(db, response.study_id, user_id)
        result = lifecycle.save_draft(
            body.response_id,
            role=role,
            actor_id=user_id,
            payload=body.data,
            expected_updated_at=body.expected_updated_at,
        )
        return _to_http(result)

    form = db.get(FormDefinition, body.form_id) if body.form_id is not None else None
    if form is None:
        raise HTTPException(status_code=404, detail="Form definition not found")

    role = get_member_role(db, form.study_id, user_id)
    result = lifecycle.save_draft(
        role=role,
        actor_id=user_id,
        payload=body.data,
        study_id=form.study_id,
        participant_id=body.participant_id,
        form_id=form.id,
    )
    return _to_http(result, success_status=201)


@router.get("/{response_id}")
def get_response(
    response_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> dict:
    """Get a response with its current lock token."""
    response = _load_response(db, response_id)
    require_study_permission(db, response.study_id, user_id, Permission.VIEW_DATA)
    return response.to_dict()


@router.post("/{response_id}/{transition}")
def apply_transition(
    response_id: int,
    transition: str,
    body: TransitionRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> JSONResponse:
    """Apply a lifecycle transition (submit, verify, lock, sign, unlock, edit-completed)."""
    try:
        kind = TransitionKind(transition.replace("-", "_"))
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown transition: {transition}")

    response = _load_response(db, response_id)
    role = get_member_role(db, response.study_id, user_id)

    result = ResponseLifecycle(db).transition(
        kind,
        response_id,
        role,
        body.expected_updated_at,
        actor_id=user_id,
        payload=body.data,
        reason=body.reason,
        meaning=body.meaning,
        credential=body.credential,
    )
    return _to_http(result)


@router.get("/{response_id}/signatures")
def list_signatures(
    response_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> dict:
    """Signatures applied to a response, oldest first."""
    response = _load_response(db, response_id)
    require_study_permission(db, response.study_id, user_id, Permission.VIEW_DATA)
    return {"signatures": [s.to_dict() for s in response.signatures]}


@router.get("/{response_id}/audit")
def list_audit_entries(
    response_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> dict:
    """Audit trail of a response, oldest first."""
    response = _load_response(db, response_id)
    require_study_permission(db, response.study_id, user_id, Permission.VIEW_AUDIT_TRAIL)
    entries = AuditTrail.history(db, FormResponse.__tablename__, response.id)
    return {"entries": [e.to_dict() for e in entries]}
