import operator
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence

from app.models import GroupField, VisibilityCondition, iter_fields
from app.values import as_text, is_empty, to_number

_ORDERING = {
    "greaterThan": operator.gt,
    "greaterOrEqual": operator.ge,
    "lessThan": operator.lt,
    "lessOrEqual": operator.le,
}


def _loosely_equal(current: Any, expected: Any) -> bool:
    if to_number(current) is not None or to_number(expected) is not None:
        left, right = to_number(current), to_number(expected)
        if left is not None and right is not None:
            return left == right
    return as_text(current) == as_text(expected)


def evaluate_condition(condition: VisibilityCondition, values: Mapping[str, Any]) -> bool:
    """Return whether ``condition`` holds for the current ``values``.

    An unset controlling field never satisfies a condition, whatever the operator.
    """
    current = values.get(condition.when_field)
    if is_empty(current):
        return False

    op = condition.operator
    if op in _ORDERING:
        left, right = to_number(current), to_number(condition.value)
        if left is None or right is None:
            return False
        return _ORDERING[op](left, right)
    if op in ("equals", "notEquals"):
        same = _loosely_equal(current, condition.value)
        return same if op == "equals" else not same
    if op in ("contains", "notContains"):
        found = as_text(condition.value) in as_text(current)
        return found if op == "contains" else not found
    return False


def build_value_index(fields: Sequence[Any], values: Mapping[str, Any]) -> Dict[str, Any]:
    """Flat lookup of current values addressable by node id, falling back to name."""
    index: Dict[str, Any] = dict(values)
    for node in iter_fields(fields):
        if node.id not in values and node.name and node.name in values:
            index[node.id] = values[node.name]
    for node in iter_fields(fields):
        if node.name and node.id in values:
            index.setdefault(node.name, values[node.id])
    return index


def compute_visibility(fields: Sequence[Any], values: Mapping[str, Any]) -> Dict[str, bool]:
    lookup = build_value_index(fields, values)
    visibility: Dict[str, bool] = {}

    def visit(nodes: Sequence[Any], parent_visible: bool) -> None:
        for node in nodes:
            visible = parent_visible
            if visible and isinstance(node, GroupField) and node.condition is not None:
                visible = evaluate_condition(node.condition, lookup)
            visibility[node.id] = visible
            if isinstance(node, GroupField):
                visit(node.children, visible)

    visit(fields, True)
    return visibility


def iter_visible_fields(
    fields: Sequence[Any], visibility: Optional[Mapping[str, bool]] = None
) -> Iterator[Any]:
    """Yield visible leaf nodes in document order; hidden groups are not descended."""
    for node in fields:
        if visibility is not None and not visibility.get(node.id, False):
            continue
        if isinstance(node, GroupField):
            yield from iter_visible_fields(node.children, visibility)
        else:
            yield node
