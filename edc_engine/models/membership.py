"""StudyMember model linking users to studies with a role.

Membership backs two collaborators of the response lifecycle: role
resolution for permission gates, and the signing credential used to
re-authenticate before an electronic signature.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from edc_engine.models.database import Base, utcnow


class StudyMember(Base):
    """Model for a user's membership in a study.

    Attributes:
        id: Primary key
        study_id: Study identifier
        user_id: User identifier (from the upstream identity provider)
        role: Study role (pi, co_investigator, data_entry, monitor, ...)
        display_name: Name recorded on signatures
        credential_hash: PBKDF2 hash of the signing credential (hex)
        credential_salt: Salt used for the hash (hex)
        is_active: Inactive members have no role
        created_at: When the membership was created
    """

    __tablename__ = "study_members"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    study_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    display_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")

    credential_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    credential_salt: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (
        UniqueConstraint("study_id", "user_id", name="uq_study_member"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<StudyMember(study_id={self.study_id}, "
            f"user_id={self.user_id}, "
            f"role={self.role})>"
        )
