from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence

from app.conditions import build_value_index, compute_visibility, iter_visible_fields
from app.models import BOOLEAN_TYPES, DISPLAY_ONLY_TYPES, NUMERIC_TYPES, FormField, FormSchema
from app.validation import validate_values
from app.values import is_empty, normalize_number, to_bool, to_number


@dataclass
class SubmissionResult:
    errors: Dict[str, str] = field(default_factory=dict)
    payload: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return not self.errors and self.payload is not None


def coerce_value(node: FormField, value: Any) -> Any:
    if node.type in BOOLEAN_TYPES:
        return to_bool(value)
    if node.type in NUMERIC_TYPES:
        if is_empty(value):
            return None
        number = to_number(value)
        return normalize_number(number) if number is not None else None
    return value


def assemble_payload(
    fields: Sequence[Any],
    values: Mapping[str, Any],
    visibility: Optional[Mapping[str, bool]] = None,
) -> Dict[str, Any]:
    """Build the payload from visible, submittable fields keyed by ``name`` or ``id``."""
    if visibility is None:
        visibility = compute_visibility(fields, values)
    lookup = build_value_index(fields, values)

    payload: Dict[str, Any] = {}
    for node in iter_visible_fields(fields, visibility):
        if node.type in DISPLAY_ONLY_TYPES:
            continue
        payload[node.payload_key] = coerce_value(node, lookup.get(node.id))
    return payload


def submit_form(schema: FormSchema, values: Mapping[str, Any]) -> SubmissionResult:
    visibility = compute_visibility(schema.fields, values)
    errors = validate_values(schema.fields, values, visibility)
    if errors:
        return SubmissionResult(errors=errors)
    return SubmissionResult(payload=assemble_payload(schema.fields, values, visibility))
