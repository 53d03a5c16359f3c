import logging
import re
from datetime import date
from typing import Any, Dict, Mapping, Optional, Sequence

from app.conditions import build_value_index, compute_visibility, iter_visible_fields
from app.models import BOOLEAN_TYPES, CHOICE_TYPES, DISPLAY_ONLY_TYPES, NUMERIC_TYPES, FormField
from app.values import as_text, is_empty, normalize_number, to_bool, to_number

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

MSG_INVALID_EMAIL = "Enter a valid email address"
MSG_NOT_A_NUMBER = "Enter a valid number"
MSG_INVALID_DATE = "Enter a valid date (YYYY-MM-DD)"
MSG_INVALID_OPTION = "Select one of the available options"
MSG_MASK_MISMATCH = "Value does not match the expected format"
MSG_PATTERN_MISMATCH = "Value does not match the expected pattern"


def _is_missing(field: FormField, value: Any) -> bool:
    if field.type in BOOLEAN_TYPES:
        return not to_bool(value)
    return is_empty(value)


def required_message(field: FormField) -> str:
    if field.validation and field.validation.required_message:
        return field.validation.required_message
    return f"{field.label or field.id} is required"


def _bounds(field: FormField):
    rules = field.validation
    low = rules.min if rules and rules.min is not None else None
    high = rules.max if rules and rules.max is not None else None
    fallback = field.currency if field.type == "currency" else field.range if field.type == "range" else None
    if fallback is not None:
        if low is None:
            low = fallback.min
        if high is None:
            high = fallback.max
    return low, high


def _matches_mask(mask: str, text: str) -> bool:
    if len(mask) != len(text):
        return False
    for slot, char in zip(mask, text):
        if slot in "9#":
            if not char.isdigit():
                return False
        elif slot in "aA":
            if not char.isalpha():
                return False
        elif slot == "*":
            if not char.isalnum():
                return False
        elif slot != char:
            return False
    return True


def _is_iso_date(text: str) -> bool:
    if not ISO_DATE_RE.match(text):
        return False
    try:
        date.fromisoformat(text)
    except ValueError:
        return False
    return True


def _type_error(field: FormField, value: Any) -> Optional[str]:
    if field.type == "email" and not EMAIL_RE.match(as_text(value).strip()):
        return MSG_INVALID_EMAIL

    if field.type in NUMERIC_TYPES:
        number = to_number(value)
        if number is None:
            return MSG_NOT_A_NUMBER
        low, high = _bounds(field)
        if low is not None and number < low:
            return f"Must be at least {normalize_number(float(low))}"
        if high is not None and number > high:
            return f"Must be at most {normalize_number(float(high))}"

    if field.type in CHOICE_TYPES and field.options:
        allowed = {option.value for option in field.options}
        if as_text(value) not in allowed:
            return MSG_INVALID_OPTION

    if field.type == "date" and not _is_iso_date(as_text(value).strip()):
        return MSG_INVALID_DATE

    if field.type == "masked" and field.mask and not _matches_mask(field.mask, as_text(value)):
        return MSG_MASK_MISMATCH

    if field.type == "tags" and field.tags and field.tags.max_tags:
        count = len(value) if isinstance(value, (list, tuple)) else len(
            [tag for tag in as_text(value).split(field.tags.separator or ",") if tag.strip()]
        )
        if count > field.tags.max_tags:
            return f"At most {field.tags.max_tags} tags allowed"
    return None


def _rule_error(field: FormField, value: Any) -> Optional[str]:
    rules = field.validation
    if rules is None:
        return None
    text = as_text(value)

    if rules.pattern:
        try:
            if not re.search(rules.pattern, text):
                return MSG_PATTERN_MISMATCH
        except re.error as exc:
            logger.warning("Ignoring invalid pattern on field %s: %s", field.id, exc)

    if rules.min_length is not None and len(text) < rules.min_length:
        return f"Must be at least {rules.min_length} characters"
    if rules.max_length is not None and len(text) > rules.max_length:
        return f"Must be at most {rules.max_length} characters"
    return None


def validate_field(field: FormField, value: Any) -> Optional[str]:
    """Return the first error for ``value`` against ``field``'s rules, if any."""
    if field.type in DISPLAY_ONLY_TYPES:
        return None
    if _is_missing(field, value):
        return required_message(field) if field.required else None
    if field.type in BOOLEAN_TYPES:
        return None
    return _type_error(field, value) or _rule_error(field, value)


def validate_values(
    fields: Sequence[Any],
    values: Mapping[str, Any],
    visibility: Optional[Mapping[str, bool]] = None,
) -> Dict[str, str]:
    """Validate every visible, submittable field; the result maps field id to message.

    Fields hidden by an unmet group condition are skipped even when required.
    """
    if visibility is None:
        visibility = compute_visibility(fields, values)
    lookup = build_value_index(fields, values)

    errors: Dict[str, str] = {}
    for field in iter_visible_fields(fields, visibility):
        message = validate_field(field, lookup.get(field.id))
        if message:
            errors[field.id] = message
    return errors
