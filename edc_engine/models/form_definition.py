"""FormDefinition model for versioned form schemas.

A form definition holds the JSON schema of one version of a study form.
Versions are immutable once responses reference them; changing a form
means storing a new row with the next version number.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    DateTime,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from edc_engine.models.database import Base, utcnow
from edc_engine.schemas.form import FormSchema


class FormDefinition(Base):
    """Model for a stored form schema version.

    Attributes:
        id: Primary key
        study_id: Study the form belongs to
        slug: Form identifier within the study (used in cross-form refs)
        version: Version number, starting at 1
        name: Display name
        schema_json: Form schema document (camelCase JSON)
        created_by: User who stored this version
        created_at: When this version was stored
    """

    __tablename__ = "form_definitions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    study_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Study the form belongs to"
    )
    slug: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Form identifier within the study"
    )
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Schema version number"
    )
    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        comment="Display name"
    )
    schema_json: Mapped[dict] = mapped_column(
        "schema",
        JSON,
        nullable=False,
        comment="Form schema document"
    )
    created_by: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="User who stored this version"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        comment="When this version was stored"
    )

    __table_args__ = (
        UniqueConstraint("study_id", "slug", "version", name="uq_form_version"),
    )

    @property
    def form_schema(self) -> FormSchema:
        """Parsed schema document."""
        return FormSchema.model_validate(self.schema_json)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<FormDefinition(id={self.id}, "
            f"study_id={self.study_id}, "
            f"slug={self.slug}, "
            f"version={self.version})>"
        )
