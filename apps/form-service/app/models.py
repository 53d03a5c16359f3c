from typing import Annotated, Any, Dict, Iterator, List, Literal, Optional, Sequence, Union, get_args

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

LeafFieldType = Literal[
    "text",
    "textarea",
    "number",
    "checkbox",
    "radio",
    "select",
    "date",
    "table",
    "masked",
    "email",
    "currency",
    "range",
    "switch",
    "tags",
    "heading",
    "divider",
]
FieldType = Literal[LeafFieldType, "group"]

FIELD_TYPES = get_args(LeafFieldType) + ("group",)
DISPLAY_ONLY_TYPES = frozenset({"heading", "divider"})
BOOLEAN_TYPES = frozenset({"checkbox", "switch"})
NUMERIC_TYPES = frozenset({"number", "currency", "range"})
CHOICE_TYPES = frozenset({"radio", "select"})

ConditionOperator = Literal[
    "equals",
    "notEquals",
    "greaterThan",
    "greaterOrEqual",
    "lessThan",
    "lessOrEqual",
    "contains",
    "notContains",
]


class SchemaModel(BaseModel):
    """Base for interchange models: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FieldOption(SchemaModel):
    value: str
    label: str


class FieldValidation(SchemaModel):
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    min: Optional[float] = None
    max: Optional[float] = None
    pattern: Optional[str] = None
    # Overrides the generic message when the required check fails
    required_message: Optional[str] = None


class TableApiConfig(SchemaModel):
    url: str = ""
    method: Literal["GET", "POST"] = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None


class TableConfig(SchemaModel):
    api: TableApiConfig = Field(default_factory=TableApiConfig)


class CurrencyConfig(SchemaModel):
    code: str
    locale: Optional[str] = None
    min: Optional[float] = None
    max: Optional[float] = None


class RangeConfig(SchemaModel):
    min: float = 0
    max: float = 100
    step: Optional[float] = None
    show_value: Optional[bool] = None


class TagsConfig(SchemaModel):
    separator: Optional[str] = None
    # 0 means unlimited
    max_tags: Optional[int] = None


class HeadingConfig(SchemaModel):
    text: str
    level: Literal[1, 2, 3] = 2


class VisibilityCondition(SchemaModel):
    when_field: str
    operator: ConditionOperator
    value: Any = None


class _NodeBase(SchemaModel):
    id: str
    # Key used in the submission payload; falls back to id
    name: Optional[str] = None
    label: str = ""
    placeholder: Optional[str] = None
    required: bool = False
    validation: Optional[FieldValidation] = None

    @property
    def payload_key(self) -> str:
        return self.name or self.id


class FormField(_NodeBase):
    type: LeafFieldType
    options: Optional[List[FieldOption]] = None
    table: Optional[TableConfig] = None
    mask: Optional[str] = None
    currency: Optional[CurrencyConfig] = None
    range: Optional[RangeConfig] = None
    tags: Optional[TagsConfig] = None
    heading: Optional[HeadingConfig] = None


class GroupField(_NodeBase):
    type: Literal["group"] = "group"
    children: List["AnyField"] = Field(default_factory=list)
    condition: Optional[VisibilityCondition] = None


AnyField = Annotated[Union[FormField, GroupField], Field(discriminator="type")]

GroupField.model_rebuild()


class FormSchema(SchemaModel):
    form_title: str = "Untitled Form"
    fields: List[AnyField] = Field(default_factory=list)


class FieldPath(SchemaModel):
    """Position inside the tree; no parent_id means the root list."""

    parent_id: Optional[str] = None
    index: int


def is_group(node: Any) -> bool:
    return isinstance(node, GroupField)


def iter_fields(fields: Sequence[Any]) -> Iterator[Any]:
    """Yield every node depth-first in document order, groups before their children."""
    for node in fields:
        yield node
        if isinstance(node, GroupField):
            yield from iter_fields(node.children)
