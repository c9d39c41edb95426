"""Pydantic schemas for case-report form definitions.

This module defines the JSON shape of a form schema: pages contain sections,
sections contain fields. Field is a tagged union over the closed set of
field kinds, discriminated on ``type``.

The models only enforce *types*. Structural invariants (unique ids, id
format, kind-specific attribute combinations, expression and pattern
safety) are checked by ``edc_engine.services.schema_validator`` so that a
form author sees every violation at once instead of the first one.

JSON documents use camelCase keys (``minRepeat``, ``patternMessage``);
attributes are snake_case.
"""

from enum import Enum
from typing import Annotated, Any, Iterator, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class FieldType(str, Enum):
    """Closed set of field kinds a form schema may use."""
    TEXT = "text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    INTEGER = "integer"
    DATE = "date"
    DATETIME = "datetime"
    TIME = "time"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    DROPDOWN = "dropdown"
    LOOKUP = "lookup"
    SLIDER = "slider"
    LIKERT = "likert"
    MATRIX = "matrix"
    CALCULATED = "calculated"
    FILE = "file"
    SIGNATURE = "signature"
    DESCRIPTIVE = "descriptive"


class SchemaModel(BaseModel):
    """Base for all schema models: camelCase JSON, snake_case attributes."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class Option(SchemaModel):
    """A selectable value for choice fields and matrix rows.

    Attributes:
        value: Value stored in the response payload
        label: Text shown to the person filling the form
    """
    value: str
    label: str = ""


class MatrixColumn(SchemaModel):
    """A column of a matrix field.

    When a column carries its own options, those option values make up the
    answer set; otherwise the column ids themselves are the answer set.
    """
    id: str
    label: str = ""
    type: Literal["radio", "checkbox", "number", "text"] = "radio"
    options: list[Option] = Field(default_factory=list)


class ValidationRules(SchemaModel):
    """Optional per-field validation rules.

    Attributes:
        min_length: Minimum text length
        max_length: Maximum text length
        pattern: Regular expression the text must match
        pattern_message: Message shown when pattern does not match
        min: Minimum numeric value (inclusive)
        max: Maximum numeric value (inclusive)
        custom: Boolean expression that must hold for the value
        custom_message: Message shown when custom expression is false
    """
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    pattern_message: Optional[str] = None
    min: Optional[float] = None
    max: Optional[float] = None
    custom: Optional[str] = None
    custom_message: Optional[str] = None


class BaseField(SchemaModel):
    """Attributes shared by every field kind.

    ``required`` and ``disabled`` are either a literal boolean or an
    expression string evaluated against the current payload.
    """
    id: str
    label: str = ""
    description: Optional[str] = None
    placeholder: Optional[str] = None
    required: Union[bool, str] = False
    disabled: Union[bool, str] = False
    visibility: Optional[str] = None
    default_value: Any = None
    depends_on: list[str] = Field(default_factory=list)
    validation: Optional[ValidationRules] = None

    @property
    def kind(self) -> FieldType:
        return FieldType(self.type)

    @property
    def has_value(self) -> bool:
        """Whether the field stores anything in the response payload."""
        return True


class TextField(BaseField):
    type: Literal["text", "textarea"]
    rows: Optional[int] = None


class NumericField(BaseField):
    type: Literal["number", "integer", "slider", "likert"]
    min: Optional[float] = None
    max: Optional[float] = None
    step: Optional[float] = None


class TemporalField(BaseField):
    type: Literal["date", "datetime", "time"]


class ChoiceField(BaseField):
    """Radio, checkbox, dropdown and lookup fields.

    Options are either inline or sourced from an external option list
    (``optionListSlug``) whose contents are unknown to the engine.
    """
    type: Literal["radio", "checkbox", "dropdown", "lookup"]
    options: list[Option] = Field(default_factory=list)
    option_list_slug: Optional[str] = None

    @property
    def option_values(self) -> list[str]:
        return [option.value for option in self.options]


class MatrixField(BaseField):
    type: Literal["matrix"]
    matrix_rows: list[Option] = Field(default_factory=list)
    columns: list[MatrixColumn] = Field(default_factory=list)

    @property
    def column_values(self) -> list[str]:
        """Answer set for every row: column options, else column ids."""
        values = [option.value for column in self.columns for option in column.options]
        if values:
            return values
        return [column.id for column in self.columns]


class CalculatedField(BaseField):
    type: Literal["calculated"]
    expression: Optional[str] = None


class FileField(BaseField):
    type: Literal["file"]
    accept: Optional[str] = None
    max_file_size: Optional[int] = None


class SignatureField(BaseField):
    type: Literal["signature"]


class DescriptiveField(BaseField):
    """Static text shown on the form; stores no value."""
    type: Literal["descriptive"]

    @property
    def has_value(self) -> bool:
        return False


FormField = Annotated[
    Union[
        TextField,
        NumericField,
        TemporalField,
        ChoiceField,
        MatrixField,
        CalculatedField,
        FileField,
        SignatureField,
        DescriptiveField,
    ],
    Field(discriminator="type"),
]


class Section(SchemaModel):
    """A group of fields, optionally repeatable.

    A repeatable section stores its values as a list of objects keyed by
    field id under the section id. ``repeat_label`` may contain ``#{n}``,
    replaced with the 1-based instance number.
    """
    id: str
    title: str = ""
    description: Optional[str] = None
    visibility: Optional[str] = None
    repeatable: bool = False
    min_repeat: int = 0
    max_repeat: Optional[int] = None
    repeat_label: Optional[str] = None
    fields: list[FormField] = Field(default_factory=list)


class Page(SchemaModel):
    id: str
    title: str = ""
    description: Optional[str] = None
    visibility: Optional[str] = None
    sections: list[Section] = Field(default_factory=list)


class FormSchema(SchemaModel):
    """Complete form definition.

    Root schema for the JSON document stored on a form definition.
    """
    pages: list[Page] = Field(default_factory=list)

    def iter_sections(self) -> Iterator[tuple[Page, Section]]:
        """Yield every (page, section) pair in document order."""
        for page in self.pages:
            for section in page.sections:
                yield page, section

    def all_fields(self) -> list[BaseField]:
        """Flat list of all fields in document order."""
        return [field for _, section in self.iter_sections() for field in section.fields]

    def get_field(self, field_id: str) -> Optional[BaseField]:
        """Get field by ID.

        Args:
            field_id: Field identifier

        Returns:
            The first field with that id, None if not found
        """
        for field in self.all_fields():
            if field.id == field_id:
                return field
        return None

    def get_section(self, section_id: str) -> Optional[Section]:
        for _, section in self.iter_sections():
            if section.id == section_id:
                return section
        return None


class TemplateMetadata(SchemaModel):
    """Descriptive header of a form template file.

    Attributes:
        id: Template identifier (matches YAML filename without .yaml)
        name: Display name
        description: What the template collects
    """
    id: str
    name: str
    description: str = ""


class FormTemplate(SchemaModel):
    """A ready-made form schema offered when creating a new form."""
    metadata: TemplateMetadata
    form_schema: FormSchema = Field(alias="schema")

    @property
    def field_count(self) -> int:
        return len(self.form_schema.all_fields())
