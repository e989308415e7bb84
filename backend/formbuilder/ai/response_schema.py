"""
Response Schema Validator — decides whether an arbitrary JSON value from a
language model is a well-formed `patch` or `replace` response.

Malformed model output is an expected case: validation returns a result
listing every violated rule and never raises.
"""
from __future__ import annotations

from typing import Any, List, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from formbuilder.ai.schemas import AIPatchResponse, AIReplaceResponse, AIResponse

_adapter: TypeAdapter = TypeAdapter(AIResponse)


class ResponseValidationResult(BaseModel):
    valid: bool
    response: Optional[Union[AIPatchResponse, AIReplaceResponse]] = None
    issues: List[str] = Field(default_factory=list)

    @property
    def summary(self) -> str:
        return "; ".join(self.issues)


def validate_ai_response(value: Any) -> ResponseValidationResult:
    """Validate and narrow a parsed LLM response."""
    if not isinstance(value, dict):
        return ResponseValidationResult(
            valid=False,
            issues=[f"response must be a JSON object, got {_json_type(value)}"],
        )

    kind = value.get("type")
    if kind not in ("patch", "replace"):
        return ResponseValidationResult(
            valid=False,
            issues=[f"type: expected 'patch' or 'replace', got {kind!r}"],
        )

    try:
        response = _adapter.validate_python(value)
    except ValidationError as exc:
        return ResponseValidationResult(valid=False, issues=_format_errors(exc))

    return ResponseValidationResult(valid=True, response=response)


def _format_errors(exc: ValidationError) -> List[str]:
    issues = []
    for err in exc.errors():
        # Drop the discriminator tag ("patch"/"replace") from the location.
        loc = [str(part) for part in err["loc"]]
        if loc and loc[0] in ("patch", "replace"):
            loc = loc[1:]
        location = "/".join(loc) or "response"
        issues.append(f"{location}: {err['msg']}")
    return issues


def _json_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return type(value).__name__
