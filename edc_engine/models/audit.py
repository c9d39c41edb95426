"""AuditLog model for the regulatory audit trail.

Every lifecycle transition writes one row. Rows are append-only and carry
the reason for change whenever a completed record is modified.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Index,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from edc_engine.models.database import Base, utcnow


class AuditLog(Base):
    """Model for one audit trail entry.

    Attributes:
        id: Primary key
        table_name: Table of the audited record
        record_id: Primary key of the audited record
        action: What happened (e.g. "submit", "unlock")
        old_status: Status before the change
        new_status: Status after the change
        old_data: Payload before the change (only when the payload changed)
        new_data: Payload after the change (only when the payload changed)
        actor_id: User who made the change
        reason: Reason for change, when one was given
        created_at: When the change happened
    """

    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    table_name: Mapped[str] = mapped_column(String(100), nullable=False)
    record_id: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)

    old_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    new_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    old_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    new_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Reason for change"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (
        Index("idx_audit_record", "table_name", "record_id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tableName": self.table_name,
            "recordId": self.record_id,
            "action": self.action,
            "oldStatus": self.old_status,
            "newStatus": self.new_status,
            "actorId": self.actor_id,
            "reason": self.reason,
            "createdAt": self.created_at.isoformat(),
        }

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<AuditLog(id={self.id}, "
            f"record_id={self.record_id}, "
            f"action={self.action})>"
        )
