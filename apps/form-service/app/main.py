import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import Field

from app.errors import SchemaImportError, TableFetchError, TreeMutationError
from app.models import FieldPath, FieldType, SchemaModel, TableApiConfig
from app.render_html import render_canvas_html, render_form_html
from app.renderer import FormSession
from app.store import FormBuilderStore
from app.submission import submit_form
from app.table_source import TableDataSource, columns_for, fetch_rows

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_FORM_TITLE = os.getenv("FORM_DEFAULT_TITLE", "Untitled Form")

app = FastAPI(title="Form Builder Service")
app.state.store = FormBuilderStore(form_title=DEFAULT_FORM_TITLE)
app.state.table_source = TableDataSource()

SAMPLE_SCHEMA = {
    "formTitle": "Driver registration",
    "fields": [
        {"id": "name", "type": "text", "label": "Name", "required": True,
         "validation": {"requiredMessage": "Name is required"}},
        {"id": "age", "type": "number", "label": "Age", "required": False},
        {
            "id": "adult",
            "type": "group",
            "label": "Adult details",
            "condition": {"whenField": "age", "operator": "greaterOrEqual", "value": 18},
            "children": [{"id": "license", "type": "text", "label": "Driver License", "required": True}],
        },
    ],
}


class AddFieldRequest(SchemaModel):
    type: FieldType
    parent_id: Optional[str] = None


class MoveFieldRequest(SchemaModel):
    source: FieldPath = Field(alias="from")
    target: FieldPath = Field(alias="to")


class ReorderRequest(SchemaModel):
    order: List[str]


class TitleRequest(SchemaModel):
    form_title: str


class SelectionRequest(SchemaModel):
    id: Optional[str] = None


class ValuesRequest(SchemaModel):
    values: Dict[str, Any] = Field(default_factory=dict)


async def get_store(request: Request) -> FormBuilderStore:
    return request.app.state.store


async def get_table_source(request: Request) -> TableDataSource:
    return request.app.state.table_source


def _dump(node) -> Dict[str, Any]:
    return node.model_dump(by_alias=True, exclude_none=True, mode="json")


@app.get("/health")
async def health():
    return {"ok": True, "service": "form-service"}


@app.get("/schema")
async def get_schema(store: FormBuilderStore = Depends(get_store)):
    return {"schema": store.to_dict(), "selectedFieldId": store.selected_field_id}


@app.put("/schema")
async def import_schema(payload: Dict[str, Any], store: FormBuilderStore = Depends(get_store)):
    try:
        schema = store.import_schema(payload)
    except SchemaImportError as exc:
        logger.warning("Rejected schema import: %s", exc.reason)
        raise HTTPException(status_code=422, detail=exc.reason) from exc
    return {"formTitle": schema.form_title, "fields": len(schema.fields)}


@app.put("/schema/title")
async def set_title(req: TitleRequest, store: FormBuilderStore = Depends(get_store)):
    store.set_form_title(req.form_title)
    return {"formTitle": store.schema.form_title}


@app.post("/fields")
async def add_field(req: AddFieldRequest, store: FormBuilderStore = Depends(get_store)):
    if req.parent_id is None:
        node = store.add_field(req.type)
    else:
        node = store.add_child_field(req.parent_id, req.type)
        if node is None:
            raise HTTPException(status_code=404, detail="group_not_found")
    return _dump(node)


@app.patch("/fields/{field_id}")
async def update_field(field_id: str, patch: Dict[str, Any], store: FormBuilderStore = Depends(get_store)):
    try:
        node = store.update_field(field_id, patch)
    except TreeMutationError as exc:
        raise HTTPException(status_code=409, detail=exc.reason) from exc
    if node is None:
        raise HTTPException(status_code=404, detail="field_not_found")
    return _dump(node)


@app.delete("/fields/{field_id}")
async def delete_field(field_id: str, store: FormBuilderStore = Depends(get_store)):
    removed = store.delete_field(field_id)
    if removed is None:
        raise HTTPException(status_code=404, detail="field_not_found")
    return {"removed": removed.id, "selectedFieldId": store.selected_field_id}


@app.delete("/groups/{parent_id}/children/{index}")
async def remove_child_field(parent_id: str, index: int, store: FormBuilderStore = Depends(get_store)):
    removed = store.remove_child_field(parent_id, index)
    if removed is None:
        raise HTTPException(status_code=404, detail="child_not_found")
    return {"removed": removed.id, "selectedFieldId": store.selected_field_id}


@app.post("/fields/reorder")
async def reorder_fields(req: ReorderRequest, store: FormBuilderStore = Depends(get_store)):
    try:
        store.reorder_fields(req.order)
    except TreeMutationError as exc:
        raise HTTPException(status_code=409, detail=exc.reason) from exc
    return {"order": [node.id for node in store.schema.fields]}


@app.post("/fields/move")
async def move_field(req: MoveFieldRequest, store: FormBuilderStore = Depends(get_store)):
    try:
        node = store.move_field(req.source, req.target)
    except TreeMutationError as exc:
        raise HTTPException(status_code=409, detail=exc.reason) from exc
    return {"moved": node.id}


@app.put("/selection")
async def set_selection(req: SelectionRequest, store: FormBuilderStore = Depends(get_store)):
    try:
        store.set_selected_field(req.id)
    except TreeMutationError as exc:
        raise HTTPException(status_code=404, detail=exc.reason) from exc
    return {"selectedFieldId": store.selected_field_id}


@app.post("/render/state")
async def render_state(req: ValuesRequest, store: FormBuilderStore = Depends(get_store)):
    session = FormSession(store.json_schema_output, req.values)
    errors = session.validate()
    return {"visibility": session.visibility, "errors": errors}


@app.post("/submit")
async def submit(req: ValuesRequest, store: FormBuilderStore = Depends(get_store)):
    result = submit_form(store.json_schema_output, req.values)
    if not result.ok:
        logger.info("Submission rejected with %d errors", len(result.errors))
        raise HTTPException(status_code=422, detail={"message": "validation_failed", "errors": result.errors})
    return {"payload": result.payload}


@app.post("/preview")
async def preview(
    req: ValuesRequest,
    store: FormBuilderStore = Depends(get_store),
    table_source: TableDataSource = Depends(get_table_source),
):
    session = FormSession(store.json_schema_output, req.values, table_source=table_source)
    await session.sync_tables()
    return {"html": render_form_html(session)}


@app.get("/canvas")
async def canvas(store: FormBuilderStore = Depends(get_store)):
    return {"html": render_canvas_html(store.schema, store.selected_field_id)}


@app.post("/tables/preview")
async def table_preview(api: TableApiConfig):
    try:
        rows = await asyncio.to_thread(fetch_rows, api)
    except TableFetchError as exc:
        logger.warning("Table preview failed for %s: %s", api.url, exc)
        raise HTTPException(status_code=502, detail="table_fetch_failed") from exc
    return {"columns": columns_for(rows), "rows": rows}


@app.post("/dev/sample-schema")
async def load_sample_schema(store: FormBuilderStore = Depends(get_store)):
    if os.getenv("ENABLE_DEV_ROUTES", "false").lower() != "true":
        raise HTTPException(status_code=404, detail="Not found")
    schema = store.import_schema(SAMPLE_SCHEMA)
    return {"formTitle": schema.form_title, "fields": len(schema.fields)}
