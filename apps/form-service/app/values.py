import math
import re
from typing import Any, Optional, Union

# 1.234,56 and 12,5 style decimals (pt-BR currency input)
_COMMA_DECIMAL_RE = re.compile(r"^-?(\d{1,3}(\.\d{3})+|\d+)(,\d+)?$")


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def to_number(value: Any) -> Optional[float]:
    """Coerce ``value`` to a finite float, or return None when it is not numeric."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
        return number if math.isfinite(number) else None
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        if not _COMMA_DECIMAL_RE.match(text):
            return None
        number = float(text.replace(".", "").replace(",", "."))
    return number if math.isfinite(number) else None


def to_bool(value: Any) -> bool:
    """Checkbox and switch values: "on", "true", "1", "yes" and truthy non-strings are True."""
    if isinstance(value, str):
        return value.strip().lower() in ("true", "on", "1", "yes")
    return bool(value)


def normalize_number(number: float) -> Union[int, float]:
    return int(number) if number.is_integer() else number


def as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(as_text(item) for item in value)
    return str(value)
