"""
Response collection: a pydantic model is generated per form definition and
used to validate public submissions, with one friendly message per field.
"""
from typing import Any, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model

from formbuilder.forms.schemas import FieldType, FormField

REQUIRED_MESSAGE = "This field is required"


class SubmissionValidation(BaseModel):
    valid: bool
    values: Dict[str, Any] = Field(default_factory=dict)
    errors: Dict[str, str] = Field(default_factory=dict)


def _fmt(number: float) -> str:
    return str(int(number)) if float(number).is_integer() else str(number)


def _field_spec(field: FormField) -> Tuple[Any, Any]:
    if field.type == FieldType.NUMBER.value:
        annotation: Any = float
        constraints = {"ge": field.min, "le": field.max}
    else:
        annotation = str
        min_length = field.min_length
        if field.required:
            min_length = max(min_length or 0, 1)
        constraints = {"min_length": min_length, "max_length": field.max_length}
    constraints = {k: v for k, v in constraints.items() if v is not None}

    if field.required:
        return annotation, Field(..., alias=field.id, **constraints)
    return Optional[annotation], Field(default=None, alias=field.id, **constraints)


def build_submission_model(fields: List[FormField]) -> Type[BaseModel]:
    """Generate a model keyed by field id. Attribute names are positional
    since ids are arbitrary strings."""
    definitions = {f"f_{idx}": _field_spec(field) for idx, field in enumerate(fields)}
    return create_model(
        "FormSubmission",
        __config__=ConfigDict(extra="ignore", str_strip_whitespace=True),
        **definitions,
    )


def _friendly(field: FormField, error: dict) -> str:
    kind = error["type"]
    if kind == "missing":
        return REQUIRED_MESSAGE
    if kind == "string_too_short":
        if error.get("input") == "" and field.required:
            return REQUIRED_MESSAGE
        return f"Minimum length is {field.min_length} characters"
    if kind == "string_too_long":
        return f"Maximum length is {field.max_length} characters"
    if kind == "greater_than_equal":
        return f"Minimum value is {_fmt(field.min)}"
    if kind == "less_than_equal":
        return f"Maximum value is {_fmt(field.max)}"
    if field.type == FieldType.NUMBER.value:
        return "Please enter a valid number"
    return "Please enter valid text"


def _normalize(fields: List[FormField], values: Dict[str, Any]) -> Dict[str, Any]:
    """Blank inputs mean "no answer": dropped for optional fields, empty for required ones."""
    normalized: Dict[str, Any] = {}
    for field in fields:
        value = values.get(field.id)
        if isinstance(value, str):
            value = value.strip()
        if value is None or value == "":
            if field.required and field.type != FieldType.NUMBER.value and value == "":
                normalized[field.id] = ""
            continue
        normalized[field.id] = value
    return normalized


def validate_submission(fields: List[FormField], values: Dict[str, Any]) -> SubmissionValidation:
    model = build_submission_model(fields)
    normalized = _normalize(fields, values)
    try:
        instance = model.model_validate(normalized)
    except ValidationError as exc:
        by_id = {field.id: field for field in fields}
        errors: Dict[str, str] = {}
        for err in exc.errors():
            # Locations are reported by alias, i.e. the field id.
            field = by_id.get(str(err["loc"][0])) if err["loc"] else None
            if field is not None:
                errors.setdefault(field.id, _friendly(field, err))
        return SubmissionValidation(valid=False, errors=errors)

    return SubmissionValidation(
        valid=True,
        values=instance.model_dump(by_alias=True, exclude_none=True),
    )
