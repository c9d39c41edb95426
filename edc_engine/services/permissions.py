"""Study roles and the permissions they grant.

Lifecycle transitions are gated by permission, and permissions are granted
per study role:

- editor roles (pi, co_investigator, data_entry) may enter data
- elevated roles (pi, co_investigator) may verify, lock, sign and unlock
- the highest role (pi) may edit a completed record and store form
  definitions
"""

from enum import Enum
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from edc_engine.models.membership import StudyMember
from edc_engine.logging_config import get_logger

logger = get_logger(__name__)


class Role(str, Enum):
    """Study member roles."""
    PI = "pi"
    CO_INVESTIGATOR = "co_investigator"
    DATA_ENTRY = "data_entry"
    MONITOR = "monitor"
    READ_ONLY = "read_only"


class Permission(str, Enum):
    VIEW_DATA = "view_data"
    EDIT_DATA = "edit_data"
    VERIFY_FORMS = "verify_forms"
    LOCK_FORMS = "lock_forms"
    SIGN_FORMS = "sign_forms"
    UNLOCK_FORMS = "unlock_forms"
    EDIT_COMPLETED = "edit_completed"
    EDIT_STUDY_CONFIG = "edit_study_config"
    VIEW_AUDIT_TRAIL = "view_audit_trail"


ROLE_PERMISSIONS: dict[Role, frozenset] = {
    Role.PI: frozenset(Permission),
    Role.CO_INVESTIGATOR: frozenset(Permission) - {
        Permission.EDIT_COMPLETED,
        Permission.EDIT_STUDY_CONFIG,
    },
    Role.DATA_ENTRY: frozenset({
        Permission.VIEW_DATA,
        Permission.EDIT_DATA,
        Permission.VIEW_AUDIT_TRAIL,
    }),
    Role.MONITOR: frozenset({
        Permission.VIEW_DATA,
        Permission.VIEW_AUDIT_TRAIL,
    }),
    Role.READ_ONLY: frozenset({Permission.VIEW_DATA}),
}


def has_permission(role: Optional[str], permission: Permission) -> bool:
    """Check whether a role grants a permission.

    Unknown or missing roles grant nothing.

    Example:
        >>> has_permission("data_entry", Permission.EDIT_DATA)
        True
        >>> has_permission("data_entry", Permission.LOCK_FORMS)
        False
    """
    try:
        member_role = Role(role)
    except ValueError:
        return False
    return permission in ROLE_PERMISSIONS[member_role]


def roles_with(permission: Permission) -> list[str]:
    """Role names granting a permission, for error messages."""
    return [role.value for role, granted in ROLE_PERMISSIONS.items() if permission in granted]


def get_member(db: Session, study_id: str, user_id: str) -> Optional[StudyMember]:
    """Active membership of a user in a study, if any."""
    return db.execute(
        select(StudyMember).where(
            StudyMember.study_id == study_id,
            StudyMember.user_id == user_id,
            StudyMember.is_active.is_(True),
        )
    ).scalar_one_or_none()


def get_member_role(db: Session, study_id: str, user_id: str) -> Optional[str]:
    """Resolve a user's role in a study.

    Args:
        db: Database session
        study_id: Study identifier
        user_id: User identifier

    Returns:
        Role name, or None if the user is not an active member
    """
    member = get_member(db, study_id, user_id)
    if member is None:
        logger.info(
            f"User {user_id} has no active membership in study {study_id}",
            extra={"study_id": study_id, "actor_id": user_id},
        )
        return None
    return member.role
