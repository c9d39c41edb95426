"""Signature model for electronic signatures on responses.

Signature rows are append-only: a signature is never updated or deleted,
even when the response is later unlocked for correction. A signer may
attest to a given meaning once per lock of the response.
"""

from datetime import datetime

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from edc_engine.models.database import Base, utcnow


class Signature(Base):
    """Model for an electronic signature event.

    Attributes:
        id: Primary key
        response_id: Foreign key to form_responses
        signer_id: User who signed
        signer_name: Signer's display name at signing time
        signer_role: Signer's study role at signing time
        meaning: What the signature attests to (e.g. "Approved")
        signed_at: When the signature was applied
    """

    __tablename__ = "signatures"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    response_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("form_responses.id"),
        nullable=False,
        index=True,
        comment="Foreign key to form_responses table"
    )
    signer_id: Mapped[str] = mapped_column(String(100), nullable=False)
    signer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    signer_role: Mapped[str] = mapped_column(String(50), nullable=False)
    meaning: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="What the signature attests to"
    )
    signed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    response: Mapped["FormResponse"] = relationship(
        "FormResponse",
        back_populates="signatures",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "responseId": self.response_id,
            "signerId": self.signer_id,
            "signerName": self.signer_name,
            "signerRole": self.signer_role,
            "meaning": self.meaning,
            "signedAt": self.signed_at.isoformat(),
        }

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Signature(id={self.id}, "
            f"response_id={self.response_id}, "
            f"signer_id={self.signer_id})>"
        )
