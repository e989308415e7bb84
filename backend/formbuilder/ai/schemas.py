"""
AI Pydantic schemas: the LLM response contract and the orchestrator contract.
"""
from __future__ import annotations

import copy
from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import Field, StrictStr, model_validator

from formbuilder.forms.schemas import CamelModel, FormDefinition

PATCH_OPS = ("add", "remove", "replace", "move", "copy", "test")
VALUE_OPS = ("add", "replace", "test")
FROM_OPS = ("move", "copy")


class AIErrorKind(str, Enum):
    """Failure categories surfaced by the AI pipeline."""

    INVALID_REQUEST = "InvalidRequest"
    PROVIDER_ERROR = "ProviderError"
    PROVIDER_TIMEOUT = "ProviderTimeout"
    RESPONSE_PARSE_ERROR = "ResponseParseError"
    RESPONSE_SCHEMA_ERROR = "ResponseSchemaError"
    PATH_NOT_ALLOWED = "PathNotAllowed"
    MALFORMED_OPERATION = "MalformedOperation"
    OPERATION_APPLY_FAILED = "OperationApplyFailed"
    RESULT_VALIDATION_FAILED = "ResultValidationFailed"


# ═══════════════════════════════════════════════════════════════════
#  LLM response shapes
# ═══════════════════════════════════════════════════════════════════

class PatchOperation(CamelModel):
    """RFC 6902 operation. `value` presence is tracked via model_fields_set."""

    op: Literal["add", "remove", "replace", "move", "copy", "test"]
    path: StrictStr = Field(..., min_length=1)
    value: Any = None
    from_: Optional[StrictStr] = Field(default=None, alias="from")

    @model_validator(mode="after")
    def check_members(self) -> PatchOperation:
        problems = []
        if not self.path.startswith("/"):
            problems.append(f"path '{self.path}' must start with '/'")
        if self.op in VALUE_OPS and not self.has_value:
            problems.append(f"'{self.op}' requires a value")
        if self.op in FROM_OPS:
            if self.from_ is None:
                problems.append(f"'{self.op}' requires a from pointer")
            elif not self.from_.startswith("/"):
                problems.append(f"from '{self.from_}' must start with '/'")
        if problems:
            raise ValueError("; ".join(problems))
        return self

    @property
    def has_value(self) -> bool:
        return "value" in self.model_fields_set

    def to_json_patch(self) -> dict[str, Any]:
        """Plain dict form, carrying only the members that were supplied."""
        data: dict[str, Any] = {"op": self.op, "path": self.path}
        if self.has_value:
            data["value"] = copy.deepcopy(self.value)
        if self.from_ is not None:
            data["from"] = self.from_
        return data


class AIPatchResponse(CamelModel):
    type: Literal["patch"]
    operations: List[PatchOperation] = Field(..., min_length=1)


class AIReplaceResponse(CamelModel):
    type: Literal["replace"]
    form_definition: FormDefinition


AIResponse = Annotated[
    Union[AIPatchResponse, AIReplaceResponse],
    Field(discriminator="type"),
]


# ═══════════════════════════════════════════════════════════════════
#  Orchestrator contract
# ═══════════════════════════════════════════════════════════════════

class AIServiceRequest(CamelModel):
    message: str = Field(..., min_length=1)
    form_definition: FormDefinition = Field(default_factory=FormDefinition)


class AIServiceResponse(CamelModel):
    success: bool
    form_definition: Optional[FormDefinition] = None
    error: Optional[str] = None
    error_kind: Optional[AIErrorKind] = None
    issues: List[str] = Field(default_factory=list)
    raw_response: Optional[str] = None

    @classmethod
    def ok(cls, definition: FormDefinition, raw_response: str) -> "AIServiceResponse":
        return cls(success=True, form_definition=definition, raw_response=raw_response)

    @classmethod
    def fail(
        cls,
        kind: AIErrorKind,
        error: str,
        raw_response: Optional[str] = None,
        issues: Optional[List[str]] = None,
    ) -> "AIServiceResponse":
        return cls(
            success=False,
            error_kind=kind,
            error=error,
            raw_response=raw_response,
            issues=issues or [],
        )


class AIChatRequest(CamelModel):
    """Stateless chat: instruction plus the caller's current (unsaved) fields."""

    message: str = Field(..., min_length=1)
    current_fields: Optional[List[dict[str, Any]]] = None
