"""Audit trail service.

The reason for a change is passed explicitly with every call and written
in the same transaction as the change itself; there is no ambient
"current reason" state. ``AuditTrail.record`` only adds the row to the
session, the caller commits or rolls back the whole unit.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from edc_engine.models.audit import AuditLog
from edc_engine.logging_config import get_logger

logger = get_logger(__name__)


class AuditTrail:
    """Service for writing and reading audit trail entries."""

    @staticmethod
    def record(
        db: Session,
        *,
        table_name: str,
        record_id,
        action: str,
        actor_id: str,
        old_status: Optional[str] = None,
        new_status: Optional[str] = None,
        old_data: Optional[dict] = None,
        new_data: Optional[dict] = None,
        reason: Optional[str] = None,
    ) -> AuditLog:
        """Add an audit entry to the current transaction.

        Payload snapshots are only kept when the payload actually changed.

        Args:
            db: Database session holding the change being audited
            table_name: Table of the audited record
            record_id: Primary key of the audited record
            action: What happened
            actor_id: Who did it
            old_status: Status before the change
            new_status: Status after the change
            old_data: Payload before the change
            new_data: Payload after the change
            reason: Reason for change

        Returns:
            The pending AuditLog row
        """
        payload_changed = old_data != new_data
        entry = AuditLog(
            table_name=table_name,
            record_id=str(record_id),
            action=action,
            actor_id=actor_id,
            old_status=old_status,
            new_status=new_status,
            old_data=old_data if payload_changed else None,
            new_data=new_data if payload_changed else None,
            reason=reason,
        )
        db.add(entry)
        logger.debug(
            f"Audit {action} on {table_name}/{record_id} by {actor_id}",
            extra={"actor_id": actor_id},
        )
        return entry

    @staticmethod
    def history(db: Session, table_name: str, record_id) -> list[AuditLog]:
        """All audit entries for a record, oldest first."""
        return list(db.execute(
            select(AuditLog)
            .where(AuditLog.table_name == table_name, AuditLog.record_id == str(record_id))
            .order_by(AuditLog.id)
        ).scalars())
