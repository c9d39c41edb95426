"""Pydantic schemas for data validation.

This package contains the Pydantic models for form definitions and the
request/response bodies of the HTTP API.
"""

from edc_engine.schemas.form import (
    FieldType,
    Option,
    MatrixColumn,
    ValidationRules,
    BaseField,
    TextField,
    NumericField,
    TemporalField,
    ChoiceField,
    MatrixField,
    CalculatedField,
    FileField,
    SignatureField,
    DescriptiveField,
    FormField,
    Section,
    Page,
    FormSchema,
    TemplateMetadata,
    FormTemplate,
)

__all__ = [
    "FieldType",
    "Option",
    "MatrixColumn",
    "ValidationRules",
    "BaseField",
    "TextField",
    "NumericField",
    "TemporalField",
    "ChoiceField",
    "MatrixField",
    "CalculatedField",
    "FileField",
    "SignatureField",
    "DescriptiveField",
    "FormField",
    "Section",
    "Page",
    "FormSchema",
    "TemplateMetadata",
    "FormTemplate",
]
