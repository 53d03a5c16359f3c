import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from app.conditions import compute_visibility, iter_visible_fields
from app.models import FormField, FormSchema
from app.submission import assemble_payload
from app.table_source import TableDataSource, TableState
from app.validation import validate_values

logger = logging.getLogger(__name__)

SubmitListener = Callable[[Dict[str, Any]], None]


class FormSession:
    """Live state of one rendered form.

    Visibility is recomputed synchronously after every value change. Errors are
    recomputed as well once a submit has been attempted, so messages clear as
    soon as the operator fixes a field.
    """

    def __init__(
        self,
        schema: FormSchema,
        initial_values: Optional[Mapping[str, Any]] = None,
        table_source: Optional[TableDataSource] = None,
    ):
        self.schema = schema
        self.values: Dict[str, Any] = dict(initial_values or {})
        self.table_source = table_source or TableDataSource()
        self.submit_attempted = False
        self.visibility: Dict[str, bool] = {}
        self.errors: Dict[str, str] = {}
        self._listeners: List[SubmitListener] = []
        self.recompute()

    def recompute(self) -> None:
        self.visibility = compute_visibility(self.schema.fields, self.values)
        if self.submit_attempted:
            self.errors = validate_values(self.schema.fields, self.values, self.visibility)

    def replace_schema(self, schema: FormSchema) -> None:
        self.schema = schema
        self.recompute()

    def set_value(self, field_id: str, value: Any) -> None:
        self.values[field_id] = value
        self.recompute()

    def set_values(self, values: Mapping[str, Any]) -> None:
        self.values.update(values)
        self.recompute()

    def is_visible(self, field_id: str) -> bool:
        return self.visibility.get(field_id, False)

    def visible_fields(self) -> List[FormField]:
        return list(iter_visible_fields(self.schema.fields, self.visibility))

    def visible_table_fields(self) -> List[FormField]:
        return [node for node in self.visible_fields() if node.type == "table"]

    def table_state(self, field_id: str) -> Optional[TableState]:
        return self.table_source.state_for(field_id)

    def refresh_tables(self) -> None:
        """Start fetches for newly rendered tables and drop state for tables no longer rendered."""
        tables = self.visible_table_fields()
        self.table_source.retain(node.id for node in tables)
        for node in tables:
            self.table_source.request(node)

    async def sync_tables(self) -> Dict[str, Optional[TableState]]:
        self.refresh_tables()
        await self.table_source.wait()
        return {node.id: self.table_state(node.id) for node in self.visible_table_fields()}

    def on_submit(self, listener: SubmitListener) -> None:
        self._listeners.append(listener)

    def validate(self) -> Dict[str, str]:
        self.submit_attempted = True
        self.recompute()
        return self.errors

    def submit(self) -> Optional[Dict[str, Any]]:
        if self.validate():
            logger.info("Submission blocked by %d field errors", len(self.errors))
            return None

        payload = assemble_payload(self.schema.fields, self.values, self.visibility)
        for listener in self._listeners:
            listener(payload)
        return payload
