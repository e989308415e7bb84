"""
Pydantic v2 schemas for form definitions, metadata and change sets.
Wire format is camelCase so the JSON spoken with the LLM and the UI is
exactly `{"fields":[{"id":..,"minLength":..}]}`.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialising snake_case attributes as camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ═══════════════════════════════════════════════════════════════════
#  Form Definition
# ═══════════════════════════════════════════════════════════════════

class FieldType(str, Enum):
    """Closed set of supported input types."""

    TEXT = "text"
    NUMBER = "number"
    TEXTAREA = "textarea"


FIELD_TYPES = tuple(t.value for t in FieldType)

# Optional attributes that have an effect for each type. Others are ignored.
TYPE_ATTRIBUTES: Dict[str, tuple[str, ...]] = {
    FieldType.TEXT.value: ("placeholder", "minLength", "maxLength"),
    FieldType.NUMBER.value: ("placeholder", "min", "max", "step"),
    FieldType.TEXTAREA.value: ("placeholder", "minLength", "maxLength", "rows"),
}

# Label the editor gives a freshly added field before the user names it.
PLACEHOLDER_LABEL = "New Field"


class FormField(CamelModel):
    """Single field of a form."""

    id: StrictStr = Field(..., min_length=1)
    type: FieldType
    label: StrictStr = Field(..., min_length=1)
    required: StrictBool
    order: StrictInt = Field(..., ge=0)
    placeholder: Optional[StrictStr] = None
    min_length: Optional[StrictInt] = Field(default=None, gt=0)
    max_length: Optional[StrictInt] = Field(default=None, gt=0)
    min: Optional[float] = Field(default=None, allow_inf_nan=False)
    max: Optional[float] = Field(default=None, allow_inf_nan=False)
    step: Optional[float] = Field(default=None, allow_inf_nan=False)
    rows: Optional[StrictInt] = Field(default=None, ge=1)


class FormDefinition(CamelModel):
    """Ordered set of fields describing a form's structure."""

    fields: List[FormField] = Field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════
#  Form metadata / editing state
# ═══════════════════════════════════════════════════════════════════

class FormMetadata(CamelModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    published: bool = False


class FormState(CamelModel):
    """Metadata plus definition: what an editing buffer holds."""

    metadata: FormMetadata
    definition: FormDefinition = Field(default_factory=FormDefinition)


class FieldUpdate(CamelModel):
    """Attributes of a persisted field that changed, keyed by attribute name."""

    id: str
    patch: Dict[str, Any]


class FormChangeSet(CamelModel):
    """Diff handed to the persistence layer on approve."""

    created: List[FormField] = Field(default_factory=list)
    updated: List[FieldUpdate] = Field(default_factory=list)
    deleted: List[str] = Field(default_factory=list)
    metadata: Optional[FormMetadata] = None

    @property
    def is_empty(self) -> bool:
        return not (self.created or self.updated or self.deleted or self.metadata)


# ═══════════════════════════════════════════════════════════════════
#  Form CRUD and responses: request and response bodies
# ═══════════════════════════════════════════════════════════════════

class FormCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    fields: List[FormField] = Field(default_factory=list)


class FormRead(CamelModel):
    id: str
    title: str
    description: Optional[str] = None
    published: bool
    fields: List[FormField] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class FormSummary(CamelModel):
    id: str
    title: str
    published: bool
    field_count: int
    response_count: int
    updated_at: datetime


class SubmissionRequest(CamelModel):
    values: Dict[str, Any] = Field(default_factory=dict)


class FormResponseRead(CamelModel):
    id: str
    form_id: str
    values: Dict[str, Any]
    created_at: datetime
