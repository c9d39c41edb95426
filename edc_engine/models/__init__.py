"""Database models and session management.

This package contains all SQLAlchemy ORM models and database utilities.
"""

from edc_engine.models.database import Base, engine, SessionLocal, get_db, utcnow
from edc_engine.models.form_definition import FormDefinition
from edc_engine.models.response import FormResponse, ResponseStatus
from edc_engine.models.signature import Signature
from edc_engine.models.audit import AuditLog
from edc_engine.models.membership import StudyMember

__all__ = [
    "Base",
    "engine",
    "SessionLocal",
    "get_db",
    "utcnow",
    "FormDefinition",
    "FormResponse",
    "ResponseStatus",
    "Signature",
    "AuditLog",
    "StudyMember",
]
