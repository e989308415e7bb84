"""
Patch Engine — applies RFC 6902 operations from the model to a FormDefinition.

Pipeline: path restriction → structural pass → apply pass (one operation at a
time, fail fast) → post-validation. Any failure returns the ORIGINAL
definition untouched together with the failure kind.
"""
from __future__ import annotations

from typing import Any, Iterable, List, Optional, Union

import jsonpatch
import jsonpointer
from pydantic import BaseModel, Field, ValidationError

from formbuilder.ai.schemas import FROM_OPS, VALUE_OPS, AIErrorKind, PatchOperation
from formbuilder.core.logging import get_logger
from formbuilder.forms.definition import issues_from_validation_error, validate_definition
from formbuilder.forms.schemas import FormDefinition

logger = get_logger(__name__)

ALLOWED_ROOT = "/fields"

OperationLike = Union[PatchOperation, dict]


class PatchCheck(BaseModel):
    """Outcome of a pre-apply check over a batch."""
    valid: bool
    error_kind: Optional[AIErrorKind] = None
    error: Optional[str] = None
    operation_index: Optional[int] = None


class PatchResult(BaseModel):
    success: bool
    form_definition: FormDefinition
    error_kind: Optional[AIErrorKind] = None
    error: Optional[str] = None
    operation_index: Optional[int] = None
    issues: List[str] = Field(default_factory=list)


def is_allowed_path(path: Any) -> bool:
    return isinstance(path, str) and (
        path == ALLOWED_ROOT or path.startswith(ALLOWED_ROOT + "/")
    )


def _member(operation: OperationLike, name: str) -> Any:
    if isinstance(operation, PatchOperation):
        return operation.from_ if name == "from" else getattr(operation, name, None)
    if isinstance(operation, dict):
        return operation.get(name)
    return None


def validate_patch_paths(operations: Iterable[OperationLike]) -> PatchCheck:
    """Every `path` (and `from` for move/copy) must sit under /fields."""
    for idx, operation in enumerate(operations):
        path = _member(operation, "path")
        # Non-string paths are left for the structural pass.
        if isinstance(path, str) and not is_allowed_path(path):
            return PatchCheck(
                valid=False,
                error_kind=AIErrorKind.PATH_NOT_ALLOWED,
                error=f"Operation {idx}: path '{path}' is outside {ALLOWED_ROOT}",
                operation_index=idx,
            )
        if _member(operation, "op") in FROM_OPS:
            source = _member(operation, "from")
            if isinstance(source, str) and not is_allowed_path(source):
                return PatchCheck(
                    valid=False,
                    error_kind=AIErrorKind.PATH_NOT_ALLOWED,
                    error=f"Operation {idx}: from '{source}' is outside {ALLOWED_ROOT}",
                    operation_index=idx,
                )
    return PatchCheck(valid=True)


def _malformed(idx: int, reason: str) -> PatchCheck:
    return PatchCheck(
        valid=False,
        error_kind=AIErrorKind.MALFORMED_OPERATION,
        error=f"Operation {idx}: {reason}",
        operation_index=idx,
    )


def _coerce(operation: OperationLike) -> PatchOperation:
    if isinstance(operation, PatchOperation):
        return operation
    return PatchOperation.model_validate(operation)


def validate_patch(operations: Iterable[OperationLike]) -> PatchCheck:
    """Structural pass: op kind, pointer syntax, required value / from members."""
    for idx, operation in enumerate(operations):
        try:
            op = _coerce(operation)
        except ValidationError as exc:
            reasons = "; ".join(
                f"{'/'.join(str(p) for p in err['loc']) or 'operation'}: {err['msg']}"
                for err in exc.errors()
            )
            return _malformed(idx, reasons)

        if not op.path.startswith("/"):
            return _malformed(idx, f"path '{op.path}' must start with '/'")
        if op.op in VALUE_OPS and not op.has_value:
            return _malformed(idx, f"'{op.op}' requires a value")
        if op.op in FROM_OPS:
            if op.from_ is None:
                return _malformed(idx, f"'{op.op}' requires a from pointer")
            if not op.from_.startswith("/"):
                return _malformed(idx, f"from '{op.from_}' must start with '/'")
    return PatchCheck(valid=True)


def apply_patch(
    definition: FormDefinition,
    operations: List[OperationLike],
) -> PatchResult:
    """Apply a batch atomically; all-or-nothing.

    The result's form definition is the patched one on success and the
    original object otherwise. Order density is not enforced here, since
    moves legitimately leave stale `order` values behind.
    """
    operations = list(operations)
    if not operations:
        return PatchResult(success=True, form_definition=definition)

    for check in (validate_patch_paths(operations), validate_patch(operations)):
        if not check.valid:
            return _failure(definition, check.error_kind, check.error, check.operation_index)

    working: Any = definition.model_dump(mode="json", by_alias=True)
    for idx, operation in enumerate(operations):
        op = _coerce(operation)
        try:
            working = jsonpatch.apply_patch(working, [op.to_json_patch()], in_place=True)
        except (
            jsonpatch.JsonPatchException,
            jsonpointer.JsonPointerException,
            TypeError,
            KeyError,
            IndexError,
            RecursionError,
        ) as exc:
            return _failure(
                definition,
                AIErrorKind.OPERATION_APPLY_FAILED,
                f"Operation {idx} ({op.op} {op.path}) failed: {exc}",
                idx,
            )

    try:
        patched = FormDefinition.model_validate(working)
    except ValidationError as exc:
        issues = [str(issue) for issue in issues_from_validation_error(exc)]
        return _failure(
            definition,
            AIErrorKind.RESULT_VALIDATION_FAILED,
            "Patched form definition is invalid",
            issues=issues,
        )

    result = validate_definition(patched, check_order=False)
    if not result.valid:
        return _failure(
            definition,
            AIErrorKind.RESULT_VALIDATION_FAILED,
            "Patched form definition is invalid",
            issues=result.messages,
        )

    return PatchResult(success=True, form_definition=patched)


def _failure(
    definition: FormDefinition,
    kind: Optional[AIErrorKind],
    error: Optional[str],
    operation_index: Optional[int] = None,
    issues: Optional[List[str]] = None,
) -> PatchResult:
    logger.info(
        f"Patch rejected: {error}",
        extra={"event": "patch_rejected", "error_kind": kind.value if kind else None},
    )
    return PatchResult(
        success=False,
        form_definition=definition,
        error_kind=kind,
        error=error,
        operation_index=operation_index,
        issues=issues or [],
    )
