import html
from typing import Any, List, Optional, Sequence

from app.models import FormField, FormSchema, GroupField
from app.renderer import FormSession
from app.table_source import STATUS_FAILED, STATUS_PENDING, TableState
from app.values import as_text, to_bool

HTML_STYLES = """
<style>
body { background: #ffffff; color: #1f2937; font-family: 'Inter', sans-serif; margin: 0; padding: 1.5rem; }
.form-body { max-width: 48rem; margin: 0 auto; }
.field { margin-bottom: 1rem; display: flex; flex-direction: column; gap: 0.25rem; }
.field input, .field select, .field textarea { background: rgb(255, 255, 255); border: 1px solid #d1d5db; border-radius: 4px; padding: 0.4rem; }
.error { color: #b91c1c; font-size: 0.85rem; margin: 0; }
fieldset.group { border: 1px solid #e5e7eb; border-radius: 6px; margin-bottom: 1rem; }
table { width: 100%; border-collapse: collapse; margin-bottom: 1.25rem; }
td, th { border: 1px solid #e5e7eb; padding: 0.5rem; text-align: left; }
.table-preview td { color: #9ca3af; }
.canvas-item { border: 1px dashed #d1d5db; padding: 0.5rem; margin-bottom: 0.5rem; }
.canvas-item.selected { border-color: #6366f1; }
</style>
""".strip()

_INPUT_TYPES = {
    "text": "text",
    "email": "email",
    "number": "number",
    "date": "date",
    "masked": "text",
    "currency": "text",
    "tags": "text",
}


def _attr(value: Any) -> str:
    return html.escape(as_text(value), quote=True)


def _wrap_document(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html><html><head>"
        f"<title>{html.escape(title)}</title>"
        f"{HTML_STYLES}"
        "</head><body><div class=\"form-body\">"
        f"{body}"
        "</div></body></html>"
    )


def render_table_preview(field: FormField, status: str = "empty") -> str:
    """Illustrative table shown while a table field has no rows to display."""
    return (
        f'<table class="table-preview" data-testid="table-preview" data-field-id="{_attr(field.id)}" '
        f'data-status="{_attr(status)}">'
        "<thead><tr><th>Column A</th><th>Column B</th><th>Column C</th></tr></thead>"
        "<tbody><tr><td>&hellip;</td><td>&hellip;</td><td>&hellip;</td></tr></tbody>"
        "</table>"
    )


def render_data_table(field: FormField, state: TableState) -> str:
    header = "".join(f"<th>{html.escape(column)}</th>" for column in state.columns)
    rows_html: List[str] = []
    for row in state.rows:
        cells = "".join(f"<td>{html.escape(as_text(row.get(column)))}</td>" for column in state.columns)
        rows_html.append(f"<tr>{cells}</tr>")
    return (
        f'<table class="data-table" data-field-id="{_attr(field.id)}">'
        f"<thead><tr>{header}</tr></thead>"
        f"<tbody>{''.join(rows_html)}</tbody>"
        "</table>"
    )


def _render_table_field(field: FormField, state: Optional[TableState]) -> str:
    if state is not None and state.has_rows:
        content = render_data_table(field, state)
    elif state is None or state.status == STATUS_PENDING:
        content = render_table_preview(field, STATUS_PENDING)
    elif state.status == STATUS_FAILED:
        content = render_table_preview(field, STATUS_FAILED)
    else:
        content = render_table_preview(field)
    return f'<div class="field table-field"><span class="label">{html.escape(field.label)}</span>{content}</div>'


def _render_input(field: FormField, value: Any) -> str:
    field_id = _attr(field.id)
    placeholder = f' placeholder="{_attr(field.placeholder)}"' if field.placeholder else ""
    required = " required" if field.required else ""

    if field.type == "textarea":
        return f'<textarea id="{field_id}" name="{field_id}"{placeholder}{required}>{html.escape(as_text(value))}</textarea>'

    if field.type in ("checkbox", "switch"):
        checked = " checked" if to_bool(value) else ""
        role = ' role="switch"' if field.type == "switch" else ""
        return f'<input id="{field_id}" name="{field_id}" type="checkbox"{role}{checked}{required} />'

    if field.type == "radio":
        choices = []
        for index, option in enumerate(field.options or []):
            checked = " checked" if as_text(value) == option.value else ""
            choices.append(
                f'<label><input id="{field_id}-{index}" name="{field_id}" type="radio" '
                f'value="{_attr(option.value)}"{checked} /> {html.escape(option.label)}</label>'
            )
        return f'<div class="radio-group" id="{field_id}">{"".join(choices)}</div>'

    if field.type == "select":
        options = ['<option value="">&mdash;</option>']
        for option in field.options or []:
            selected = " selected" if as_text(value) == option.value else ""
            options.append(f'<option value="{_attr(option.value)}"{selected}>{html.escape(option.label)}</option>')
        return f'<select id="{field_id}" name="{field_id}"{required}>{"".join(options)}</select>'

    if field.type == "range":
        bounds = field.range
        extra = ""
        if bounds is not None:
            extra = f' min="{_attr(bounds.min)}" max="{_attr(bounds.max)}"'
            if bounds.step is not None:
                extra += f' step="{_attr(bounds.step)}"'
        return f'<input id="{field_id}" name="{field_id}" type="range" value="{_attr(value)}"{extra} />'

    input_type = _INPUT_TYPES.get(field.type, "text")
    extra = ""
    if field.type == "masked" and field.mask:
        extra = f' data-mask="{_attr(field.mask)}"'
    elif field.type == "currency" and field.currency:
        extra = f' inputmode="decimal" data-currency="{_attr(field.currency.code)}"'
    return (
        f'<input id="{field_id}" name="{field_id}" type="{input_type}" '
        f'value="{_attr(value)}"{placeholder}{extra}{required} />'
    )


def _render_node(node: Any, session: FormSession) -> str:
    if not session.is_visible(node.id):
        return ""

    if isinstance(node, GroupField):
        children = "".join(_render_node(child, session) for child in node.children)
        return (
            f'<fieldset class="group" id="{_attr(node.id)}">'
            f"<legend>{html.escape(node.label)}</legend>{children}</fieldset>"
        )

    if node.type == "heading":
        level = node.heading.level if node.heading else 2
        text = node.heading.text if node.heading else node.label
        return f"<h{level}>{html.escape(text)}</h{level}>"
    if node.type == "divider":
        return "<hr />"
    if node.type == "table":
        return _render_table_field(node, session.table_state(node.id))

    value = session.values.get(node.id)
    if value is None and node.name:
        value = session.values.get(node.name)
    error = session.errors.get(node.id)
    error_html = f'<p class="error" id="{_attr(node.id)}-error">{html.escape(error)}</p>' if error else ""
    return (
        f'<div class="field"><label for="{_attr(node.id)}">{html.escape(node.label)}</label>'
        f"{_render_input(node, value)}{error_html}</div>"
    )


def render_form_html(session: FormSession) -> str:
    body = "".join(_render_node(node, session) for node in session.schema.fields)
    title = session.schema.form_title
    form_html = f"<h1>{html.escape(title)}</h1><form novalidate>{body}<button type=\"submit\">Submit</button></form>"
    return _wrap_document(title, form_html)


def _render_canvas_nodes(nodes: Sequence[Any], selected_id: Optional[str]) -> str:
    parts: List[str] = []
    for node in nodes:
        classes = "canvas-item selected" if node.id == selected_id else "canvas-item"
        if isinstance(node, GroupField):
            preview = f'<div class="canvas-children">{_render_canvas_nodes(node.children, selected_id)}</div>'
        elif node.type == "table":
            preview = render_table_preview(node)
        elif node.type == "heading":
            level = node.heading.level if node.heading else 2
            preview = f"<h{level}>{html.escape(node.heading.text if node.heading else node.label)}</h{level}>"
        elif node.type == "divider":
            preview = "<hr />"
        else:
            placeholder = f' placeholder="{_attr(node.placeholder)}"' if node.placeholder else ""
            preview = f'<input type="text" disabled{placeholder} />'
        parts.append(
            f'<div class="{classes}" data-field-id="{_attr(node.id)}" data-type="{_attr(node.type)}">'
            f'<span class="canvas-label">{html.escape(node.label)}</span>{preview}</div>'
        )
    return "".join(parts)


def render_canvas_html(schema: FormSchema, selected_id: Optional[str] = None) -> str:
    """Builder canvas preview: every node regardless of conditions, with no live data."""
    body = f"<h1>{html.escape(schema.form_title)}</h1>{_render_canvas_nodes(schema.fields, selected_id)}"
    return _wrap_document(schema.form_title, body)
