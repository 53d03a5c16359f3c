import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import requests

from app.errors import TableFetchError
from app.models import FormField, TableApiConfig

log = logging.getLogger(__name__)

TABLE_FETCH_TIMEOUT = float(os.getenv("TABLE_FETCH_TIMEOUT", "15"))

STATUS_PENDING = "pending"
STATUS_LOADED = "loaded"
STATUS_FAILED = "failed"


@dataclass
class TableState:
    fingerprint: str
    status: str = STATUS_PENDING
    columns: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def has_rows(self) -> bool:
        return self.status == STATUS_LOADED and bool(self.rows)


def config_fingerprint(api: TableApiConfig) -> str:
    return json.dumps(api.model_dump(mode="json"), sort_keys=True)


def columns_for(rows: List[Dict[str, Any]]) -> List[str]:
    """Column headers come from the key set of the first row."""
    return list(rows[0].keys()) if rows else []


def fetch_rows(
    api: TableApiConfig,
    timeout: float = TABLE_FETCH_TIMEOUT,
    session: Optional[requests.Session] = None,
) -> List[Dict[str, Any]]:
    if not api.url.strip():
        raise TableFetchError("table api url is not configured")

    data = api.body if api.method == "POST" and api.body else None
    http = session or requests
    try:
        response = http.request(api.method, api.url, headers=dict(api.headers), data=data, timeout=timeout)
    except requests.RequestException as exc:
        raise TableFetchError(f"request failed: {exc}") from exc

    if response.status_code >= 400:
        raise TableFetchError(f"{response.status_code} {response.text[:400]}")

    try:
        payload = response.json()
    except ValueError as exc:
        log.error("Table endpoint %s returned non-JSON body: %s", api.url, response.text[:400])
        raise TableFetchError("response is not JSON") from exc

    if not isinstance(payload, list):
        log.error("Table endpoint %s returned unexpected shape: %s", api.url, str(payload)[:400])
        raise TableFetchError("expected a JSON array of objects")
    if not all(isinstance(row, dict) for row in payload):
        raise TableFetchError("expected every row to be a JSON object")
    return payload


class TableDataSource:
    """Resolves remote rows for table fields, one in-flight request per field.

    ``request`` must be called from a running event loop; the blocking HTTP call
    runs in a worker thread. Results are kept per field id and reused while the
    field's api config is unchanged, failures included.
    """

    def __init__(self, timeout: float = TABLE_FETCH_TIMEOUT, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self._session = session
        self._states: Dict[str, TableState] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    def state_for(self, field_id: str) -> Optional[TableState]:
        return self._states.get(field_id)

    def request(self, table_field: FormField) -> TableState:
        api = table_field.table.api if table_field.table else TableApiConfig()
        fingerprint = config_fingerprint(api)
        current = self._states.get(table_field.id)
        if current is not None and current.fingerprint == fingerprint:
            return current

        self._cancel(table_field.id)
        state = TableState(fingerprint=fingerprint)
        self._states[table_field.id] = state
        task = asyncio.get_running_loop().create_task(self._load(table_field.id, fingerprint, api))
        self._tasks[table_field.id] = task
        return state

    async def _load(self, field_id: str, fingerprint: str, api: TableApiConfig) -> None:
        try:
            rows = await asyncio.to_thread(fetch_rows, api, self.timeout, self._session)
            result = TableState(fingerprint, STATUS_LOADED, columns_for(rows), rows)
        except TableFetchError as exc:
            log.warning("Table fetch for field %s failed: %s", field_id, exc)
            result = TableState(fingerprint, STATUS_FAILED, error=str(exc))
        except Exception as exc:
            log.exception("Unexpected error fetching table for field %s", field_id)
            result = TableState(fingerprint, STATUS_FAILED, error=str(exc))
        finally:
            if self._tasks.get(field_id) is asyncio.current_task():
                del self._tasks[field_id]

        current = self._states.get(field_id)
        if current is None or current.fingerprint != fingerprint:
            log.info("Discarding stale table result for field %s", field_id)
            return
        self._states[field_id] = result
        if result.status == STATUS_LOADED:
            log.info("Loaded %d rows for table field %s", len(result.rows), field_id)

    def _cancel(self, field_id: str) -> None:
        task = self._tasks.pop(field_id, None)
        if task is not None and not task.done():
            task.cancel()

    def discard(self, field_id: str) -> None:
        self._cancel(field_id)
        self._states.pop(field_id, None)

    def retain(self, field_ids: Iterable[str]) -> None:
        """Forget every field not in ``field_ids`` (removed or no longer rendered)."""
        keep = set(field_ids)
        for field_id in list(self._states):
            if field_id not in keep:
                self.discard(field_id)

    def in_flight(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    async def wait(self) -> None:
        tasks = [task for task in self._tasks.values() if not task.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def resolve(self, table_field: FormField) -> TableState:
        """Request data for ``table_field`` and wait until its state settles."""
        state = self.request(table_field)
        task = self._tasks.get(table_field.id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self._states.get(table_field.id, state)
