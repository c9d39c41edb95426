"""FormResponse model for participant data collected against a form.

A response belongs to one (participant, form version) pair within a study.
Its payload is a JSON document keyed by field id; repeatable sections are
nested as lists of objects. ``status`` moves through the response lifecycle
and ``updated_at`` doubles as the optimistic lock token.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from edc_engine.models.database import Base, utcnow


class ResponseStatus(str, Enum):
    """Lifecycle states of a response."""
    DRAFT = "draft"
    COMPLETE = "complete"
    VERIFIED = "verified"
    LOCKED = "locked"
    SIGNED = "signed"


class FormResponse(Base):
    """Model for a participant's response to a form.

    Responses are never physically deleted by the engine.

    Attributes:
        id: Primary key
        study_id: Study the response belongs to
        participant_id: Participant the data was collected for
        form_id: Foreign key to form_definitions (the exact version filled)
        data: Response payload keyed by field id
        status: Lifecycle state (see ResponseStatus)
        created_by: User who first saved the response
        completed_by / completed_at: Who submitted it, and when
        verified_by / verified_at: Who verified it, and when
        locked_by / locked_at: Who locked it, and when
        signed_at: When the last signature was applied
        created_at: When the response was first saved
        updated_at: Last change; compared on every transition
    """

    __tablename__ = "form_responses"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    study_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Study the response belongs to"
    )
    participant_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Participant the data was collected for"
    )
    form_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("form_definitions.id"),
        nullable=False,
        comment="Form definition version the response was filled against"
    )

    data: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Response payload keyed by field id"
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ResponseStatus.DRAFT.value,
        comment="Lifecycle state"
    )

    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    completed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    locked_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        comment="When the response was first saved"
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        comment="Last change; optimistic lock token"
    )

    form: Mapped["FormDefinition"] = relationship("FormDefinition")
    signatures: Mapped[list["Signature"]] = relationship(
        "Signature",
        back_populates="response",
        order_by="Signature.signed_at",
    )

    __table_args__ = (
        Index("idx_response_participant_form", "participant_id", "form_id"),
        Index("idx_response_status", "status"),
    )

    def to_dict(self) -> dict:
        """Serializable view used by the HTTP API."""
        return {
            "id": self.id,
            "studyId": self.study_id,
            "participantId": self.participant_id,
            "formId": self.form_id,
            "status": self.status,
            "data": self.data,
            "completedBy": self.completed_by,
            "verifiedBy": self.verified_by,
            "lockedBy": self.locked_by,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<FormResponse(id={self.id}, "
            f"participant_id={self.participant_id}, "
            f"form_id={self.form_id}, "
            f"status={self.status})>"
        )
