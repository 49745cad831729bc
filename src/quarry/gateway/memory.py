"""In-memory gateway for local use and testing.

Behaves like the remote service closely enough to exercise the engine:
opaque page tokens, list filters, jobs that complete after a number of
polls, per-row streaming-insert errors, and injectable failures. Errors are
raised as real ``httpx`` exceptions with service-shaped JSON bodies.
"""

from __future__ import annotations

import base64
import binascii
from collections import defaultdict, deque
import copy
import threading
from typing import TYPE_CHECKING, Any

import httpx

from quarry.options import OptionKind

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

_BASE_URL = "https://warehouse.invalid/v2"


def http_error(
    status_code: int,
    reason: str,
    message: str,
    *,
    method: str = "GET",
    path: str = "",
    retry_after_s: float | None = None,
) -> httpx.HTTPStatusError:
    """Build an ``httpx.HTTPStatusError`` shaped like a warehouse error response."""
    request = httpx.Request(method, f"{_BASE_URL}/{path}")
    headers = {"Retry-After": str(retry_after_s)} if retry_after_s is not None else None
    response = httpx.Response(
        status_code,
        request=request,
        headers=headers,
        json={
            "error": {
                "code": status_code,
                "message": message,
                "errors": [{"reason": reason, "message": message}],
            }
        },
    )
    return httpx.HTTPStatusError(
        f"{status_code} {reason}: {message}", request=request, response=response
    )


def _project(resource: dict[str, Any], options: Mapping[OptionKind, Any]) -> dict[str, Any]:
    result = copy.deepcopy(resource)
    fields = options.get(OptionKind.FIELDS)
    if not fields:
        return result
    keep = {"id", *fields.split(",")}
    return {k: v for k, v in result.items() if k in keep}


def _matches_label(resource: dict[str, Any], expression: str) -> bool:
    key, _, value = expression.removeprefix("labels.").partition(":")
    labels = resource.get("labels") or {}
    if key not in labels:
        return False
    return not value or labels[key] == value


class InMemoryGateway:
    """Thread-safe in-memory warehouse.

    Args:
        default_page_size: Page size when the request sets no MAX_RESULTS.
        polls_until_complete: How many ``get_query_results`` calls report a
            new job as not complete before it finishes.
    """

    def __init__(self, *, default_page_size: int = 50, polls_until_complete: int = 0) -> None:
        self._default_page_size = default_page_size
        self._polls_until_complete = polls_until_complete
        self._lock = threading.Lock()
        self._datasets: dict[tuple[str, str], dict[str, Any]] = {}
        self._tables: dict[tuple[str, str, str], dict[str, Any]] = {}
        self._rows: dict[tuple[str, str, str], list[dict[str, Any]]] = {}
        self._insert_ids: dict[tuple[str, str, str], set[str]] = defaultdict(set)
        self._jobs: dict[tuple[str, str], dict[str, Any]] = {}
        self._pending_polls: dict[tuple[str, str], int] = {}
        self._failures: dict[str, deque[BaseException]] = defaultdict(deque)
        #: Every call as ``(operation, *arguments)``, in order.
        self.calls: list[tuple[Any, ...]] = []

    # --- Test hooks ---

    def fail_next(self, operation: str, *errors: BaseException) -> None:
        """Make the next calls to *operation* raise *errors*, one per call."""
        with self._lock:
            self._failures[operation].extend(errors)

    def call_count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)

    def _enter(self, operation: str, *arguments: Any) -> None:
        self.calls.append((operation, *copy.deepcopy(arguments)))
        pending = self._failures.get(operation)
        if pending:
            raise pending.popleft()

    # --- Keys and tokens ---

    @staticmethod
    def _dataset_key(identity: Mapping[str, Any]) -> tuple[str, str]:
        return identity["project"], identity["dataset"]

    @staticmethod
    def _table_key(identity: Mapping[str, Any]) -> tuple[str, str, str]:
        return identity["project"], identity["dataset"], identity["table"]

    @staticmethod
    def _job_key(identity: Mapping[str, Any]) -> tuple[str, str]:
        return identity["project"], identity["job"]

    @staticmethod
    def _encode_token(kind: str, offset: int) -> str:
        return base64.urlsafe_b64encode(f"{kind}:{offset}".encode()).decode("ascii")

    @staticmethod
    def _decode_token(kind: str, token: str, path: str) -> int:
        try:
            token_kind, _, offset = (
                base64.urlsafe_b64decode(token.encode("ascii")).decode().partition(":")
            )
            if token_kind != kind:
                raise ValueError(token_kind)
            return int(offset)
        except (ValueError, binascii.Error, UnicodeError):
            raise http_error(
                400, "invalid", f"Invalid page token: {token!r}", path=path
            ) from None

    def _paginate(
        self,
        kind: str,
        items: Sequence[dict[str, Any]],
        options: Mapping[OptionKind, Any],
        path: str,
    ) -> tuple[str | None, list[dict[str, Any]]]:
        size = options.get(OptionKind.MAX_RESULTS, self._default_page_size)
        token = options.get(OptionKind.PAGE_TOKEN)
        if token is not None:
            offset = self._decode_token(kind, token, path)
        else:
            offset = options.get(OptionKind.START_INDEX, 0)
        end = offset + size
        cursor = self._encode_token(kind, end) if end < len(items) else None
        return cursor, list(items[offset:end])

    def _row_resources(self, key: tuple[str, str, str]) -> list[dict[str, Any]]:
        table = self._tables.get(key)
        names = [f["name"] for f in ((table or {}).get("schema") or {}).get("fields", [])]
        resources = []
        for content in self._rows.get(key, []):
            ordered = names or list(content)
            resources.append({"f": [{"v": content.get(name)} for name in ordered]})
        return resources

    # --- Gateway protocol ---

    def create(
        self, kind: str, resource: dict[str, Any], options: Mapping[OptionKind, Any]
    ) -> dict[str, Any]:
        with self._lock:
            self._enter("create", kind, resource)
            identity = resource["id"]
            path = f"{kind}s"
            if kind == "dataset":
                key = self._dataset_key(identity)
                if key in self._datasets:
                    raise http_error(409, "duplicate", f"Already Exists: {key}", method="POST", path=path)
                self._datasets[key] = copy.deepcopy(resource)
                return _project(self._datasets[key], options)
            if kind == "table":
                tkey = self._table_key(identity)
                if tkey[:2] not in self._datasets:
                    raise http_error(404, "notFound", f"Not found: Dataset {tkey[:2]}", method="POST", path=path)
                if tkey in self._tables:
                    raise http_error(409, "duplicate", f"Already Exists: {tkey}", method="POST", path=path)
                self._tables[tkey] = copy.deepcopy(resource)
                self._rows[tkey] = []
                return _project(self._tables[tkey], options)
            if kind == "job":
                jkey = self._job_key(identity)
                if jkey in self._jobs:
                    raise http_error(409, "duplicate", f"Already Exists: {jkey}", method="POST", path=path)
                stored = copy.deepcopy(resource)
                running = self._polls_until_complete > 0
                stored["status"] = {"state": "RUNNING" if running else "DONE"}
                self._jobs[jkey] = stored
                self._pending_polls[jkey] = self._polls_until_complete
                return _project(stored, options)
            raise http_error(400, "invalid", f"Unknown resource kind: {kind}", method="POST", path=path)

    def _store(self, kind: str) -> dict[Any, dict[str, Any]]:
        if kind == "dataset":
            return self._datasets
        if kind == "table":
            return self._tables
        if kind == "job":
            return self._jobs
        raise http_error(400, "invalid", f"Unknown resource kind: {kind}")

    def _key(self, kind: str, identity: Mapping[str, Any]) -> tuple[str, ...]:
        if kind == "dataset":
            return self._dataset_key(identity)
        if kind == "table":
            return self._table_key(identity)
        return self._job_key(identity)

    def get(
        self, kind: str, identity: dict[str, Any], options: Mapping[OptionKind, Any]
    ) -> dict[str, Any] | None:
        with self._lock:
            self._enter("get", kind, identity)
            stored = self._store(kind).get(self._key(kind, identity))
            return None if stored is None else _project(stored, options)

    def list(
        self, kind: str, parent: dict[str, Any], options: Mapping[OptionKind, Any]
    ) -> tuple[str | None, list[dict[str, Any]]]:
        with self._lock:
            self._enter("list", kind, parent, dict(options))
            path = f"{kind}s"
            if kind == "dataset":
                items = [
                    d
                    for (project, _), d in sorted(self._datasets.items())
                    if project == parent["project"]
                    and (options.get(OptionKind.ALL_DATASETS) or not d.get("hidden"))
                ]
                label_filter = options.get(OptionKind.LABEL_FILTER)
                if label_filter:
                    items = [d for d in items if _matches_label(d, label_filter)]
            elif kind == "table":
                dkey = self._dataset_key(parent)
                if dkey not in self._datasets:
                    raise http_error(404, "notFound", f"Not found: Dataset {dkey}", path=path)
                items = [t for key, t in sorted(self._tables.items()) if key[:2] == dkey]
            elif kind == "job":
                states = options.get(OptionKind.STATE_FILTER)
                items = [
                    j
                    for (project, _), j in self._jobs.items()
                    if project == parent["project"]
                    and (not states or j["status"]["state"] in states)
                ]
            elif kind == "table_data":
                tkey = self._table_key(parent)
                if tkey not in self._tables:
                    raise http_error(404, "notFound", f"Not found: Table {tkey}", path=path)
                return self._paginate(kind, self._row_resources(tkey), options, path)
            else:
                raise http_error(400, "invalid", f"Unknown list kind: {kind}", path=path)
            cursor, batch = self._paginate(kind, items, options, path)
            return cursor, [_project(r, options) for r in batch]

    def patch(
        self, kind: str, resource: dict[str, Any], options: Mapping[OptionKind, Any]
    ) -> dict[str, Any]:
        with self._lock:
            self._enter("patch", kind, resource)
            store = self._store(kind)
            key = self._key(kind, resource["id"])
            if key not in store:
                raise http_error(404, "notFound", f"Not found: {kind} {key}", method="PATCH", path=f"{kind}s")
            store[key].update(copy.deepcopy({k: v for k, v in resource.items() if k != "id"}))
            return _project(store[key], options)

    def delete(
        self, kind: str, identity: dict[str, Any], options: Mapping[OptionKind, Any]
    ) -> bool:
        with self._lock:
            self._enter("delete", kind, identity)
            store = self._store(kind)
            key = self._key(kind, identity)
            if key not in store:
                return False
            if kind == "dataset":
                tables = [t for t in self._tables if t[:2] == key]
                if tables and not options.get(OptionKind.DELETE_CONTENTS):
                    raise http_error(
                        400,
                        "resourceInUse",
                        f"Dataset {key} is still in use",
                        method="DELETE",
                        path="datasets",
                    )
                for table_key in tables:
                    self._drop_table(table_key)
            elif kind == "table":
                self._drop_table(key)
                return True
            del store[key]
            return True

    def _drop_table(self, key: tuple[str, str, str]) -> None:
        self._tables.pop(key, None)
        self._rows.pop(key, None)
        self._insert_ids.pop(key, None)

    def insert_all(self, table: dict[str, Any], request: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            self._enter("insert_all", table, request)
            key = self._table_key(table)
            if key not in self._tables:
                raise http_error(404, "notFound", f"Not found: Table {key}", method="POST", path="insertAll")
            fields = (self._tables[key].get("schema") or {}).get("fields")
            names = {f["name"] for f in fields} if fields else None

            errors: dict[int, list[dict[str, str]]] = {}
            for index, row in enumerate(request["rows"]):
                unknown = sorted(set(row["json"]) - names) if names is not None else []
                if unknown and not request.get("ignoreUnknownValues"):
                    errors[index] = [
                        {"reason": "invalid", "location": name, "message": f"no such field: {name}"}
                        for name in unknown
                    ]

            if errors and not request.get("skipInvalidRows"):
                for index in range(len(request["rows"])):
                    errors.setdefault(index, [{"reason": "stopped", "message": ""}])
            else:
                seen = self._insert_ids[key]
                for index, row in enumerate(request["rows"]):
                    if index in errors:
                        continue
                    insert_id = row.get("insertId")
                    if insert_id is not None:
                        if insert_id in seen:
                            continue
                        seen.add(insert_id)
                    content = row["json"]
                    if names is not None:
                        content = {k: v for k, v in content.items() if k in names}
                    self._rows[key].append(copy.deepcopy(content))

            if not errors:
                return {}
            return {
                "insertErrors": [
                    {"index": index, "errors": details}
                    for index, details in sorted(errors.items())
                ]
            }

    def cancel(self, job: dict[str, Any]) -> bool:
        with self._lock:
            self._enter("cancel", job)
            key = self._job_key(job)
            stored = self._jobs.get(key)
            if stored is None:
                return False
            if stored["status"]["state"] != "DONE":
                stored["status"] = {
                    "state": "DONE",
                    "errorResult": {"reason": "stopped", "message": "Job execution was cancelled"},
                }
            self._pending_polls[key] = 0
            return True

    def get_query_results(
        self, job: dict[str, Any], options: Mapping[OptionKind, Any]
    ) -> dict[str, Any]:
        with self._lock:
            self._enter("get_query_results", job, dict(options))
            key = self._job_key(job)
            stored = self._jobs.get(key)
            if stored is None:
                raise http_error(404, "notFound", f"Not found: Job {key}", path="queries")
            if self._pending_polls.get(key, 0) > 0:
                self._pending_polls[key] -= 1
                return {"jobReference": dict(job), "jobComplete": False}

            if stored["status"]["state"] != "DONE":
                stored["status"] = {"state": "DONE"}
            response: dict[str, Any] = {
                "jobReference": dict(job),
                "jobComplete": True,
                "etag": f"{key[1]}-etag",
                "cacheHit": False,
            }
            error_result = stored["status"].get("errorResult")
            if error_result:
                response["errors"] = [error_result]
                response["totalRows"] = 0
                return response

            source = ((stored.get("configuration") or {}).get("query") or {}).get("sourceTable")
            rows: list[dict[str, Any]] = []
            schema = None
            if source is not None:
                tkey = self._table_key(source)
                rows = self._row_resources(tkey)
                schema = (self._tables.get(tkey) or {}).get("schema")
            cursor, batch = self._paginate("query_results", rows, options, "queries")
            response.update(
                schema=copy.deepcopy(schema),
                rows=batch,
                pageToken=cursor,
                totalRows=len(rows),
                totalBytesProcessed=sum(len(repr(r)) for r in rows),
            )
            return response
