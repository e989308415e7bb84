"""
Form Definition Model rules.

Field-level rules (types, non-empty strings, numeric bounds) are enforced by
the pydantic schemas; this module adds the definition-level invariants:
unique ids, dense ordering, min/max and length bounds that do not cross, and
the "committed" label rule applied at save time. Attributes that do not apply
to a field's type are ignored, not checked.
"""
from __future__ import annotations

from collections import Counter
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, Field, ValidationError

from formbuilder.forms.schemas import PLACEHOLDER_LABEL, TYPE_ATTRIBUTES, FormDefinition, FormField


class DefinitionIssue(BaseModel):
    """Single violated rule with a JSON-pointer-like location."""
    code: str  # duplicate_id | order_not_dense | inverted_bounds | unnamed_field | schema
    message: str
    path: str = ""

    def __str__(self) -> str:
        return f"{self.path}: {self.message}" if self.path else self.message


class DefinitionValidationResult(BaseModel):
    valid: bool
    issues: List[DefinitionIssue] = Field(default_factory=list)
    definition: Optional[FormDefinition] = None

    @property
    def messages(self) -> List[str]:
        return [str(issue) for issue in self.issues]


def validate_definition(
    definition: FormDefinition,
    *,
    check_order: bool = True,
    committed: bool = False,
) -> DefinitionValidationResult:
    """Check definition-level invariants and report every violation.

    Args:
        definition: Definition whose fields already satisfy the field schema.
        check_order: Require `order` values to form the dense 0..n-1 sequence.
        committed: Apply save-time rules (no placeholder or blank labels).
    """
    issues: List[DefinitionIssue] = []
    fields = definition.fields

    counts = Counter(f.id for f in fields)
    for idx, f in enumerate(fields):
        if counts[f.id] > 1:
            issues.append(DefinitionIssue(
                code="duplicate_id",
                message=f"Duplicate field id '{f.id}'",
                path=f"/fields/{idx}/id",
            ))

    if check_order:
        orders = sorted(f.order for f in fields)
        if orders != list(range(len(fields))):
            issues.append(DefinitionIssue(
                code="order_not_dense",
                message=f"Field order values {orders} are not the sequence 0..{len(fields) - 1}",
                path="/fields",
            ))

    for idx, f in enumerate(fields):
        applicable = TYPE_ATTRIBUTES.get(f.type, ())
        if "min" in applicable and f.min is not None and f.max is not None and f.min > f.max:
            issues.append(DefinitionIssue(
                code="inverted_bounds",
                message=f"Field '{f.id}': min {f.min:g} exceeds max {f.max:g}",
                path=f"/fields/{idx}/min",
            ))
        if (
            "minLength" in applicable
            and f.min_length is not None
            and f.max_length is not None
            and f.min_length > f.max_length
        ):
            issues.append(DefinitionIssue(
                code="inverted_bounds",
                message=f"Field '{f.id}': minLength {f.min_length} exceeds maxLength {f.max_length}",
                path=f"/fields/{idx}/minLength",
            ))

    if committed:
        for idx, f in enumerate(fields):
            if not f.label.strip() or f.label.strip() == PLACEHOLDER_LABEL:
                issues.append(DefinitionIssue(
                    code="unnamed_field",
                    message=f"Field '{f.id}' needs a label",
                    path=f"/fields/{idx}/label",
                ))

    return DefinitionValidationResult(
        valid=not issues,
        issues=issues,
        definition=definition if not issues else None,
    )


def validate_raw_definition(value: Any, **kwargs) -> DefinitionValidationResult:
    """Parse an arbitrary JSON value as a FormDefinition, then apply validate_definition()."""
    try:
        definition = FormDefinition.model_validate(value)
    except ValidationError as exc:
        return DefinitionValidationResult(valid=False, issues=issues_from_validation_error(exc))
    return validate_definition(definition, **kwargs)


def issues_from_validation_error(exc: ValidationError, prefix: str = "") -> List[DefinitionIssue]:
    """Flatten a pydantic ValidationError into one issue per violated rule."""
    issues = []
    for err in exc.errors():
        loc = "/".join(str(part) for part in err["loc"])
        path = f"{prefix}/{loc}" if loc else prefix
        issues.append(DefinitionIssue(code="schema", message=err["msg"], path=path))
    return issues


def normalize_order(fields: Iterable[FormField]) -> List[FormField]:
    """Re-assign order to 0..n-1, stable-sorted by existing order (ties keep sequence)."""
    ranked = sorted(enumerate(fields), key=lambda pair: (pair[1].order, pair[0]))
    return [f.model_copy(update={"order": new}) for new, (_, f) in enumerate(ranked)]


def renumber_by_position(fields: Iterable[FormField]) -> List[FormField]:
    """Set order to each field's array index."""
    return [f.model_copy(update={"order": idx}) for idx, f in enumerate(fields)]
