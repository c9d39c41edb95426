"""Caller identity resolution.

Authentication is handled upstream (an API gateway or identity-aware
proxy) which forwards the authenticated user id in the ``X-User-Id``
header. Routes resolve the caller's study role from StudyMember.
"""

from typing import Optional
from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from edc_engine.services.permissions import Permission, get_member_role, has_permission
from edc_engine.logging_config import get_logger

logger = get_logger(__name__)

USER_HEADER = "X-User-Id"


async def require_user_id(request: Request) -> str:
    """FastAPI dependency returning the authenticated user id.

    Raises:
        HTTPException(401): If the identity header is missing or blank

    Usage:
        @router.post("/api/forms")
        def create_form(user_id: str = Depends(require_user_id)):
            ...
    """
    user_id = (request.headers.get(USER_HEADER) or "").strip()
    if not user_id:
        client_ip = request.client.host if request.client else "unknown"
        logger.warning(
            f"Missing {USER_HEADER} header from IP: {client_ip}",
            extra={"client_ip": client_ip}
        )
        raise HTTPException(status_code=401, detail=f"Missing {USER_HEADER} header")
    return user_id


def require_study_permission(
    db: Session,
    study_id: str,
    user_id: str,
    permission: Permission,
) -> Optional[str]:
    """Resolve the caller's role and check it grants a permission.

    Returns:
        The caller's role

    Raises:
        HTTPException(403): If the caller is not a member or lacks the permission
    """
    role = get_member_role(db, study_id, user_id)
    if not has_permission(role, permission):
        logger.warning(
            f"User {user_id} lacks {permission.value} in study {study_id}",
            extra={"study_id": study_id, "actor_id": user_id}
        )
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return role

