"""
Best-effort recovery from the preserved raw model text.

Used when a turn failed on a response that is *almost* right (string
numbers, missing `order`, non-dense order). Anything recovered still has to
pass full definition validation before it may reach an editing buffer.
"""
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from formbuilder.ai.json_extract import extract_json
from formbuilder.ai.patch import apply_patch
from formbuilder.core.logging import get_logger
from formbuilder.forms.definition import renumber_by_position, validate_definition
from formbuilder.forms.schemas import FieldType, FormDefinition

logger = get_logger(__name__)

_INT_ATTRS = ("minLength", "maxLength", "rows")
_FLOAT_ATTRS = ("min", "max", "step")
_TRUE_STRINGS = ("true", "yes", "1")


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number == number and number not in (float("inf"), float("-inf")) else None


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def coerce_field(raw: Dict[str, Any], position: int) -> Dict[str, Any]:
    """Loosely coerce one raw field dict; order becomes the array position."""
    field_type = str(raw.get("type") or FieldType.TEXT.value).lower()
    coerced: Dict[str, Any] = {
        "id": str(raw.get("id") or ""),
        "type": field_type,
        "label": str(raw.get("label") or ""),
        "required": _to_bool(raw.get("required", False)),
        "order": position,
    }
    if raw.get("placeholder") is not None:
        coerced["placeholder"] = str(raw["placeholder"])
    for attr in _INT_ATTRS:
        number = _to_number(raw.get(attr))
        if number is not None:
            coerced[attr] = int(number)
    for attr in _FLOAT_ATTRS:
        number = _to_number(raw.get(attr))
        if number is not None:
            coerced[attr] = number
    return coerced


def _finalize(fields: List[Any]) -> Optional[FormDefinition]:
    try:
        definition = FormDefinition.model_validate({"fields": fields})
    except ValidationError:
        return None
    definition = FormDefinition(fields=renumber_by_position(definition.fields))
    return definition if validate_definition(definition).valid else None


def recover_from_raw_response(
    current: FormDefinition,
    raw_response: Optional[str],
) -> Optional[FormDefinition]:
    """Return a valid definition salvaged from raw model text, or None."""
    parsed = extract_json(raw_response or "")
    if not isinstance(parsed, dict):
        return None

    kind = parsed.get("type")
    recovered: Optional[FormDefinition] = None

    if kind == "patch" and isinstance(parsed.get("operations"), list):
        operations = [op for op in parsed["operations"] if isinstance(op, dict)]
        result = apply_patch(current, operations)
        if result.success:
            recovered = _finalize([f.model_dump() for f in result.form_definition.fields])

    elif kind == "replace":
        definition = parsed.get("formDefinition") or {}
        raw_fields = definition.get("fields") if isinstance(definition, dict) else None
        if isinstance(raw_fields, list):
            recovered = _finalize([
                coerce_field(f, idx) for idx, f in enumerate(raw_fields) if isinstance(f, dict)
            ])

    logger.info(
        "Raw response recovery " + ("succeeded" if recovered else "failed"),
        extra={"event": "ai_raw_recovery", "operation": kind, "success": recovered is not None},
    )
    return recovered
