"""
System prompt for form mutation.
Embeds the current definition so the model edits real state, not a guess.
"""
import json

from formbuilder.forms.schemas import FIELD_TYPES, TYPE_ATTRIBUTES, FormDefinition

SYSTEM_PROMPT = """You are an AI assistant that edits form definitions. You receive the CURRENT form state as JSON and a user instruction. You MUST respond with valid JSON ONLY. No HTML, no markdown, no code blocks, no explanatory text.

=== CURRENT EDITOR STATE (JSON) ===
{current_state}
=== END CURRENT STATE ===

=== FORM FIELD SCHEMA ===
A form has a "fields" array. Each field has:
- id: string (unique, e.g. "field-1")
- type: {types} (ONLY these)
- label: string (non-empty)
- required: boolean
- order: integer (0-based)

Optional attributes per type:
{attributes}

The position of a field in the "fields" array defines its display order.

=== RESPONSE FORMAT (JSON ONLY) ===
Return exactly ONE of these structures. Nothing else.

Option A - JSON Patch (preferred for small edits):
{{"type":"patch","operations":[{{"op":"add","path":"/fields/-","value":{{"id":"new-id","type":"text","label":"Label","required":false,"order":0}}}}]}}

Option B - Full replacement:
{{"type":"replace","formDefinition":{{"fields":[...]}}}}

Operations: add, remove, replace, move, copy, test.
Paths MUST start with "/fields". Use "/fields/-" to append, "/fields/N" for the field at index N,
"/fields/N/label" for one attribute. Move uses "from": {{"op":"move","from":"/fields/2","path":"/fields/0"}}.

CRITICAL: Respond with raw JSON only. Any other output will be rejected."""


def _format_attributes() -> str:
    return "\n".join(
        f"- {field_type}: {', '.join(attrs)}" for field_type, attrs in TYPE_ATTRIBUTES.items()
    )


def build_system_prompt(definition: FormDefinition) -> str:
    """Render the system prompt around the caller's current definition."""
    current_state = json.dumps(
        definition.model_dump(mode="json", by_alias=True, exclude_none=True),
        indent=2,
    )
    return SYSTEM_PROMPT.format(
        current_state=current_state,
        types=" | ".join(f'"{t}"' for t in FIELD_TYPES),
        attributes=_format_attributes(),
    )
