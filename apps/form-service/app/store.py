import logging
import random
import string
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple, Union

from pydantic import ValidationError

from app.errors import SchemaImportError, TreeMutationError
from app.models import (
    CurrencyConfig,
    FieldOption,
    FieldPath,
    FieldValidation,
    FormField,
    FormSchema,
    GroupField,
    HeadingConfig,
    RangeConfig,
    TableApiConfig,
    TableConfig,
    TagsConfig,
    iter_fields,
)

logger = logging.getLogger(__name__)

ID_ALPHABET = string.ascii_lowercase + string.digits
ID_SUFFIX_LENGTH = 7

DEFAULT_LABELS = {
    "text": "Text",
    "textarea": "Textarea",
    "number": "Number",
    "checkbox": "Checkbox",
    "radio": "Radio Group",
    "select": "Select",
    "date": "Date",
    "table": "Table",
    "masked": "Masked",
    "email": "Email",
    "currency": "Currency",
    "range": "Slider",
    "switch": "Switch",
    "tags": "Tags",
    "heading": "Heading",
    "divider": "Divider",
    "group": "Group",
}

DEFAULT_PLACEHOLDERS = {
    "text": "Enter text",
    "textarea": "Enter long text",
    "number": "0",
    "date": "YYYY-MM-DD",
    "email": "name@example.com",
    "currency": "0,00",
}


def _choice_defaults() -> Dict[str, Any]:
    return {
        "options": [
            FieldOption(value="option1", label="Option 1"),
            FieldOption(value="option2", label="Option 2"),
        ]
    }


def _no_defaults() -> Dict[str, Any]:
    return {}


# Every leaf type must have an entry here; group is built separately.
TYPE_DEFAULTS: Dict[str, Callable[[], Dict[str, Any]]] = {
    "text": _no_defaults,
    "textarea": _no_defaults,
    "number": _no_defaults,
    "checkbox": _no_defaults,
    "radio": _choice_defaults,
    "select": _choice_defaults,
    "date": _no_defaults,
    "table": lambda: {"table": TableConfig(api=TableApiConfig(url="", method="GET", headers={}, body=""))},
    "masked": lambda: {"mask": ""},
    "email": _no_defaults,
    "currency": lambda: {"currency": CurrencyConfig(code="BRL", locale="pt-BR")},
    "range": lambda: {"range": RangeConfig(min=0, max=100, step=1, show_value=True)},
    "switch": _no_defaults,
    "tags": lambda: {"tags": TagsConfig(separator=",", max_tags=0)},
    "heading": lambda: {"heading": HeadingConfig(text="Heading", level=2)},
    "divider": _no_defaults,
}

AnyNode = Union[FormField, GroupField]


def _describe_validation_error(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


def check_tree(fields: Sequence[AnyNode]) -> None:
    """Raise SchemaImportError when ids repeat, are blank, or a group contains itself."""
    seen: Set[str] = set()

    def visit(nodes: Sequence[AnyNode], ancestors: Set[int]) -> None:
        for node in nodes:
            if id(node) in ancestors:
                raise SchemaImportError(f"cyclic group reference: {node.id}")
            if not node.id:
                raise SchemaImportError("field id must not be empty")
            if node.id in seen:
                raise SchemaImportError(f"duplicate field id: {node.id}")
            seen.add(node.id)
            if isinstance(node, GroupField):
                visit(node.children, ancestors | {id(node)})

    visit(fields, set())


def _find_in(fields: List[AnyNode], field_id: str) -> Optional[Tuple[List[AnyNode], int]]:
    for index, node in enumerate(fields):
        if node.id == field_id:
            return fields, index
    for node in fields:
        if isinstance(node, GroupField):
            found = _find_in(node.children, field_id)
            if found:
                return found
    return None


def _normalize_patch(model: type, patch: Mapping[str, Any]) -> Dict[str, Any]:
    by_alias = {info.alias: name for name, info in model.model_fields.items() if info.alias}
    updates: Dict[str, Any] = {}
    for key, value in patch.items():
        name = key if key in model.model_fields else by_alias.get(key)
        if name is None:
            raise TreeMutationError(f"unknown attribute for {model.__name__}: {key}")
        updates[name] = value
    return updates


class FormBuilderStore:
    """Single owner of the live form schema and the current selection."""

    def __init__(self, form_title: str = "Untitled Form", rng: Optional[random.Random] = None):
        self.schema = FormSchema(form_title=form_title)
        self.selected_field_id: Optional[str] = None
        self._issued_ids: Set[str] = set()
        self._rng = rng or random.SystemRandom()

    # ids

    def _generate_id(self, prefix: str = "fld") -> str:
        taken = self._issued_ids | {node.id for node in iter_fields(self.schema.fields)}
        while True:
            suffix = "".join(self._rng.choice(ID_ALPHABET) for _ in range(ID_SUFFIX_LENGTH))
            candidate = f"{prefix}_{suffix}"
            if candidate not in taken:
                self._issued_ids.add(candidate)
                return candidate

    # lookups

    def find_field(self, field_id: str) -> Optional[AnyNode]:
        found = _find_in(self.schema.fields, field_id)
        if found is None:
            return None
        siblings, index = found
        return siblings[index]

    def find_group(self, group_id: str) -> Optional[GroupField]:
        for node in iter_fields(self.schema.fields):
            if isinstance(node, GroupField) and node.id == group_id:
                return node
        return None

    @property
    def selected_field(self) -> Optional[AnyNode]:
        if not self.selected_field_id:
            return None
        return self.find_field(self.selected_field_id)

    @property
    def json_schema_output(self) -> FormSchema:
        return self.schema.model_copy(deep=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.schema.model_dump(by_alias=True, exclude_none=True, mode="json")

    def export_json(self) -> str:
        return self.schema.model_dump_json(by_alias=True, exclude_none=True, indent=2)

    # creation

    def create_field(self, field_type: str) -> AnyNode:
        if field_type == "group":
            return GroupField(
                id=self._generate_id("grp"),
                label=DEFAULT_LABELS["group"],
                validation=FieldValidation(),
            )
        defaults = TYPE_DEFAULTS.get(field_type)
        if defaults is None:
            raise TreeMutationError(f"unknown field type: {field_type}")
        return FormField(
            id=self._generate_id(),
            type=field_type,
            label=DEFAULT_LABELS[field_type],
            placeholder=DEFAULT_PLACEHOLDERS.get(field_type),
            validation=FieldValidation(),
            **defaults(),
        )

    def add_field(self, field_type: str) -> AnyNode:
        node = self.create_field(field_type)
        self.schema.fields.append(node)
        self.selected_field_id = node.id
        logger.info("Added %s field %s", field_type, node.id)
        return node

    def add_child_field(self, parent_id: str, field_type: str) -> Optional[AnyNode]:
        group = self.find_group(parent_id)
        if group is None:
            return None
        node = self.create_field(field_type)
        group.children.append(node)
        self.selected_field_id = node.id
        logger.info("Added %s field %s to group %s", field_type, node.id, parent_id)
        return node

    # mutation

    def update_field(self, field_id: str, patch: Mapping[str, Any]) -> Optional[AnyNode]:
        """Shallow-merge ``patch`` into the node with ``field_id``.

        The merged node is validated as a whole before it replaces the original,
        so a rejected patch leaves the tree exactly as it was.
        """
        found = _find_in(self.schema.fields, field_id)
        if found is None:
            logger.info("update_field: no field with id %s", field_id)
            return None
        siblings, index = found
        node = siblings[index]

        updates = _normalize_patch(type(node), patch)
        if "type" in updates and updates["type"] != node.type:
            raise TreeMutationError(f"field type cannot change ({node.type} -> {updates['type']})")

        merged = node.model_dump()
        merged.update(updates)
        try:
            updated = type(node).model_validate(merged)
        except ValidationError as exc:
            raise TreeMutationError(_describe_validation_error(exc)) from exc
        if not updated.id:
            raise TreeMutationError("field id must not be empty")

        old_ids = {n.id for n in iter_fields([node])}
        other_ids = {n.id for n in iter_fields(self.schema.fields)} - old_ids
        new_ids = [n.id for n in iter_fields([updated])]
        if len(set(new_ids)) != len(new_ids) or other_ids.intersection(new_ids):
            raise TreeMutationError(f"patch for {field_id} would duplicate a field id")

        siblings[index] = updated
        self._issued_ids.update(new_ids)
        if self.selected_field_id in old_ids and self.selected_field_id not in new_ids:
            self.selected_field_id = updated.id if self.selected_field_id == field_id else None
        return updated

    def _detached(self, removed: AnyNode) -> AnyNode:
        removed_ids = {n.id for n in iter_fields([removed])}
        if self.selected_field_id in removed_ids:
            self.selected_field_id = None
        logger.info("Removed %s field %s (%d nodes)", removed.type, removed.id, len(removed_ids))
        return removed

    def delete_field(self, field_id: str) -> Optional[AnyNode]:
        found = _find_in(self.schema.fields, field_id)
        if found is None:
            return None
        siblings, index = found
        return self._detached(siblings.pop(index))

    def remove_child_field(self, parent_id: str, index: int) -> Optional[AnyNode]:
        group = self.find_group(parent_id)
        if group is None or not 0 <= index < len(group.children):
            return None
        return self._detached(group.children.pop(index))

    def reorder_fields(self, new_order: Sequence[Union[AnyNode, str]]) -> None:
        order = [item if isinstance(item, str) else item.id for item in new_order]
        current = {node.id: node for node in self.schema.fields}
        if len(order) != len(current) or set(order) != set(current):
            raise TreeMutationError("new order must be a permutation of the top-level fields")
        self.schema.fields = [current[field_id] for field_id in order]

    def _list_for(self, path: FieldPath) -> Optional[List[AnyNode]]:
        if path.parent_id is None:
            return self.schema.fields
        group = self.find_group(path.parent_id)
        return group.children if group is not None else None

    def move_field(self, source: Union[FieldPath, Mapping[str, Any]], target: Union[FieldPath, Mapping[str, Any]]) -> AnyNode:
        """Move the node at ``source`` to ``target``; lists are resolved before anything moves."""
        source = source if isinstance(source, FieldPath) else FieldPath.model_validate(source)
        target = target if isinstance(target, FieldPath) else FieldPath.model_validate(target)

        from_list = self._list_for(source)
        to_list = self._list_for(target)
        if from_list is None:
            raise TreeMutationError(f"unknown source group: {source.parent_id}")
        if to_list is None:
            raise TreeMutationError(f"unknown target group: {target.parent_id}")
        if not 0 <= source.index < len(from_list):
            raise TreeMutationError(f"source index out of range: {source.index}")

        item = from_list[source.index]
        limit = len(to_list) - 1 if to_list is from_list else len(to_list)
        if not 0 <= target.index <= limit:
            raise TreeMutationError(f"target index out of range: {target.index}")
        if target.parent_id is not None and any(n.id == target.parent_id for n in iter_fields([item])):
            raise TreeMutationError("a group cannot be moved into itself or one of its descendants")

        from_list.pop(source.index)
        to_list.insert(target.index, item)
        return item

    def set_selected_field(self, field_id: Optional[str]) -> None:
        if field_id is not None and self.find_field(field_id) is None:
            raise TreeMutationError(f"cannot select unknown field: {field_id}")
        self.selected_field_id = field_id

    def set_form_title(self, title: str) -> None:
        self.schema.form_title = title

    def import_schema(self, data: Union[str, bytes, Mapping[str, Any], FormSchema]) -> FormSchema:
        """Replace the live schema with ``data`` after checking it is well formed."""
        try:
            if isinstance(data, (str, bytes)):
                schema = FormSchema.model_validate_json(data)
            else:
                schema = FormSchema.model_validate(data)
        except ValidationError as exc:
            raise SchemaImportError(_describe_validation_error(exc)) from exc

        check_tree(schema.fields)
        schema = schema.model_copy(deep=True)

        self.schema = schema
        self.selected_field_id = None
        self._issued_ids.update(node.id for node in iter_fields(schema.fields))
        logger.info("Imported schema %r with %d top-level fields", schema.form_title, len(schema.fields))
        return schema
