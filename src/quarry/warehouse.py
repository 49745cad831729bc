"""Warehouse client: resource operations over a gateway.

Every operation follows the same path: complete identities with the
configured project, build the option map (rejecting duplicates and options
the operation does not take), then run the gateway call under the retry
executor. List operations wrap the ``(cursor, batch)`` result in a Page whose
fetcher repeats the same call with the cursor as page token.
"""

from __future__ import annotations

from functools import partial
import logging
from typing import TYPE_CHECKING, Any, TypeVar

from quarry.errors import ConfigurationError, InvalidArgumentError, QuarryError
from quarry.gateway._errors import wrap_gateway_error
from quarry.ids import JobId, as_dataset_id, as_job_id, as_table_id
from quarry.models import (
    Dataset,
    ErrorDetail,
    InsertAllResponse,
    Job,
    Row,
    Schema,
    Table,
    rows_from_resources,
)
from quarry.options import OptionKind, option_map
from quarry.page import Page, PageFetcher
from quarry.query import QueryResponse, QueryResult, wait_for_query_results
from quarry.retry import run_with_retries

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    import threading
    from types import TracebackType

    from quarry.config import Config
    from quarry.gateway.base import ListKind, WarehouseGateway
    from quarry.ids import DatasetId, TableId
    from quarry.models import InsertAllRequest
    from quarry.options import RequestOption
    from quarry.retry import RetryPolicy

T = TypeVar("T")

logger = logging.getLogger(__name__)

_GET_OPTIONS = frozenset({OptionKind.FIELDS})
_DATASET_LIST_OPTIONS = frozenset(
    {
        OptionKind.ALL_DATASETS,
        OptionKind.LABEL_FILTER,
        OptionKind.MAX_RESULTS,
        OptionKind.PAGE_TOKEN,
    }
)
_DATASET_DELETE_OPTIONS = frozenset({OptionKind.DELETE_CONTENTS})
_TABLE_LIST_OPTIONS = frozenset({OptionKind.MAX_RESULTS, OptionKind.PAGE_TOKEN})
_JOB_LIST_OPTIONS = frozenset(
    {
        OptionKind.ALL_USERS,
        OptionKind.STATE_FILTER,
        OptionKind.FIELDS,
        OptionKind.MAX_RESULTS,
        OptionKind.PAGE_TOKEN,
    }
)
_TABLE_DATA_OPTIONS = frozenset(
    {OptionKind.MAX_RESULTS, OptionKind.PAGE_TOKEN, OptionKind.START_INDEX}
)
_QUERY_RESULTS_OPTIONS = _TABLE_DATA_OPTIONS | {OptionKind.TIMEOUT}


def _get_gateway(config: Config) -> WarehouseGateway:
    if config.use_mock:
        from quarry.gateway.memory import InMemoryGateway

        return InMemoryGateway()
    raise ConfigurationError(
        "No gateway configured",
        hint="Pass Warehouse(config, gateway=...) or use Config(use_mock=True).",
    )


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


class Warehouse:
    """Client for datasets, tables, jobs and query results.

    Example:
        with Warehouse(Config(project_id="analytics", use_mock=True)) as wh:
            wh.create_dataset(Dataset(DatasetId("sales")))
            for dataset in wh.list_datasets(RequestOption.page_size(100)).iter_all():
                print(dataset.dataset_id)
    """

    def __init__(self, config: Config, gateway: WarehouseGateway | None = None) -> None:
        self._config = config
        self._gateway = gateway if gateway is not None else _get_gateway(config)

    @property
    def config(self) -> Config:
        return self._config

    @property
    def gateway(self) -> WarehouseGateway:
        return self._gateway

    @property
    def _project(self) -> str:
        # Config guarantees a non-empty project id.
        return self._config.project_id  # type: ignore[return-value]

    def _call(
        self,
        operation_name: str,
        operation: Callable[[], T],
        cancel: threading.Event | None = None,
    ) -> T:
        return run_with_retries(
            operation,
            policy=self._config.retry,
            clock=self._config.clock,
            cancel=cancel,
            operation_name=operation_name,
        )

    def _list_page(
        self,
        kind: ListKind,
        parent: dict[str, Any],
        options: Mapping[OptionKind, Any],
        *,
        convert: Callable[[dict[str, Any]], T],
        cancel: threading.Event | None = None,
    ) -> Page[T]:
        cursor, batch = self._call(
            f"{kind}.list", lambda: self._gateway.list(kind, parent, options), cancel
        )
        fetcher = None
        if cursor is not None:
            # Following pages honor the same cancellation event.
            fetch_page = partial(
                self._list_page, kind, parent, convert=convert, cancel=cancel
            )
            fetcher = PageFetcher.after(cursor, fetch_page, options)
        return Page(tuple(convert(r) for r in batch), cursor, fetcher)

    # --- Datasets ---

    def create_dataset(
        self,
        dataset: Dataset,
        *options: RequestOption,
        cancel: threading.Event | None = None,
    ) -> Dataset:
        resource = dataset.with_default_project(self._project).to_resource()
        opts = option_map(*options, allowed=_GET_OPTIONS)
        return Dataset.from_resource(
            self._call(
                "dataset.create",
                lambda: self._gateway.create("dataset", resource, opts),
                cancel,
            )
        )

    def get_dataset(
        self,
        dataset: DatasetId | str,
        *options: RequestOption,
        cancel: threading.Event | None = None,
    ) -> Dataset | None:
        identity = as_dataset_id(dataset).with_default_project(self._project).to_resource()
        opts = option_map(*options, allowed=_GET_OPTIONS)
        answer = self._call(
            "dataset.get", lambda: self._gateway.get("dataset", identity, opts), cancel
        )
        return None if answer is None else Dataset.from_resource(answer)

    def list_datasets(
        self,
        *options: RequestOption,
        project: str | None = None,
        cancel: threading.Event | None = None,
    ) -> Page[Dataset]:
        """List datasets of *project* (default: the configured project)."""
        if project is not None and (not isinstance(project, str) or not project.strip()):
            raise InvalidArgumentError(f"project must be a non-empty string, got {project!r}")
        opts = option_map(*options, allowed=_DATASET_LIST_OPTIONS)
        return self._list_page(
            "dataset",
            {"project": project or self._project},
            opts,
            convert=Dataset.from_resource,
            cancel=cancel,
        )

    def update_dataset(
        self,
        dataset: Dataset,
        *options: RequestOption,
        cancel: threading.Event | None = None,
    ) -> Dataset:
        """Patch the given properties of an existing dataset."""
        resource = dataset.with_default_project(self._project).to_resource()
        opts = option_map(*options, allowed=_GET_OPTIONS)
        return Dataset.from_resource(
            self._call(
                "dataset.patch",
                lambda: self._gateway.patch("dataset", resource, opts),
                cancel,
            )
        )

    def delete_dataset(
        self,
        dataset: DatasetId | str,
        *options: RequestOption,
        cancel: threading.Event | None = None,
    ) -> bool:
        """Delete a dataset; pass ``RequestOption.delete_contents()`` to drop its tables."""
        identity = as_dataset_id(dataset).with_default_project(self._project).to_resource()
        opts = option_map(*options, allowed=_DATASET_DELETE_OPTIONS)
        return self._call(
            "dataset.delete", lambda: self._gateway.delete("dataset", identity, opts), cancel
        )

    # --- Tables ---

    def create_table(
        self,
        table: Table,
        *options: RequestOption,
        cancel: threading.Event | None = None,
    ) -> Table:
        resource = table.with_default_project(self._project).to_resource()
        opts = option_map(*options, allowed=_GET_OPTIONS)
        return Table.from_resource(
            self._call(
                "table.create", lambda: self._gateway.create("table", resource, opts), cancel
            )
        )

    def get_table(
        self,
        table: TableId | str,
        *options: RequestOption,
        cancel: threading.Event | None = None,
    ) -> Table | None:
        identity = as_table_id(table).with_default_project(self._project).to_resource()
        opts = option_map(*options, allowed=_GET_OPTIONS)
        answer = self._call(
            "table.get", lambda: self._gateway.get("table", identity, opts), cancel
        )
        return None if answer is None else Table.from_resource(answer)

    def list_tables(
        self,
        dataset: DatasetId | str,
        *options: RequestOption,
        cancel: threading.Event | None = None,
    ) -> Page[Table]:
        parent = as_dataset_id(dataset).with_default_project(self._project).to_resource()
        opts = option_map(*options, allowed=_TABLE_LIST_OPTIONS)
        return self._list_page(
            "table", parent, opts, convert=Table.from_resource, cancel=cancel
        )

    def update_table(
        self,
        table: Table,
        *options: RequestOption,
        cancel: threading.Event | None = None,
    ) -> Table:
        """Patch the given properties of an existing table."""
        resource = table.with_default_project(self._project).to_resource()
        opts = option_map(*options, allowed=_GET_OPTIONS)
        return Table.from_resource(
            self._call(
                "table.patch", lambda: self._gateway.patch("table", resource, opts), cancel
            )
        )

    def delete_table(
        self, table: TableId | str, *, cancel: threading.Event | None = None
    ) -> bool:
        identity = as_table_id(table).with_default_project(self._project).to_resource()
        opts = option_map()
        return self._call(
            "table.delete", lambda: self._gateway.delete("table", identity, opts), cancel
        )

    def list_table_data(
        self,
        table: TableId | str,
        *options: RequestOption,
        schema: Schema | None = None,
        cancel: threading.Event | None = None,
    ) -> Page[Row]:
        """Page through a table's rows.

        Rows are addressable by field name when *schema* is given; no extra
        request is made to look the schema up.
        """
        parent = as_table_id(table).with_default_project(self._project).to_resource()
        opts = option_map(*options, allowed=_TABLE_DATA_OPTIONS)
        return self._list_page(
            "table_data",
            parent,
            opts,
            convert=partial(Row.from_resource, schema=schema),
            cancel=cancel,
        )

    def insert_all(self, request: InsertAllRequest) -> InsertAllResponse:
        """Stream rows into a table.

        Not retried: a failed call may have inserted some rows, so resending
        is left to the caller, who can inspect per-row errors in the response.
        """
        request = request.with_default_project(self._project)
        table = request.table_id.to_resource()
        body = request.to_resource()
        try:
            response = self._gateway.insert_all(table, body)
        except QuarryError:
            raise
        except Exception as exc:
            raise wrap_gateway_error(exc, operation="table.insert_all") from exc
        return InsertAllResponse.from_resource(response)

    # --- Jobs ---

    def create_job(
        self,
        job: Job,
        *options: RequestOption,
        cancel: threading.Event | None = None,
    ) -> Job:
        resource = job.with_default_project(self._project).to_resource()
        opts = option_map(*options, allowed=_GET_OPTIONS)
        return Job.from_resource(
            self._call(
                "job.create", lambda: self._gateway.create("job", resource, opts), cancel
            )
        )

    def get_job(
        self,
        job: JobId | str,
        *options: RequestOption,
        cancel: threading.Event | None = None,
    ) -> Job | None:
        identity = as_job_id(job).with_default_project(self._project).to_resource()
        opts = option_map(*options, allowed=_GET_OPTIONS)
        answer = self._call(
            "job.get", lambda: self._gateway.get("job", identity, opts), cancel
        )
        return None if answer is None else Job.from_resource(answer)

    def list_jobs(
        self, *options: RequestOption, cancel: threading.Event | None = None
    ) -> Page[Job]:
        opts = option_map(*options, allowed=_JOB_LIST_OPTIONS)
        return self._list_page(
            "job",
            {"project": self._project},
            opts,
            convert=Job.from_resource,
            cancel=cancel,
        )

    def cancel(self, job: JobId | str, *, cancel: threading.Event | None = None) -> bool:
        """Request cancellation; returns False when the job does not exist.

        *cancel* stops retrying the request itself, like on every other call.
        """
        identity = as_job_id(job).with_default_project(self._project).to_resource()
        return self._call("job.cancel", lambda: self._gateway.cancel(identity), cancel)

    # --- Queries ---

    def get_query_results(
        self,
        job: JobId | str,
        *options: RequestOption,
        cancel: threading.Event | None = None,
    ) -> QueryResponse:
        """Fetch the job's completion state and, once complete, its first page of rows."""
        job_id = as_job_id(job).with_default_project(self._project)
        opts = option_map(*options, allowed=_QUERY_RESULTS_OPTIONS)
        return self._get_query_results(job_id, opts, cancel)

    def _get_query_results(
        self,
        job_id: JobId,
        options: Mapping[OptionKind, Any],
        cancel: threading.Event | None = None,
    ) -> QueryResponse:
        identity = job_id.to_resource()
        response = self._call(
            "job.get_query_results",
            lambda: self._gateway.get_query_results(identity, options),
            cancel,
        )
        return self._query_response(job_id, response, options, cancel)

    def _query_page(
        self,
        job_id: JobId,
        options: Mapping[OptionKind, Any],
        *,
        cancel: threading.Event | None = None,
    ) -> QueryResult:
        result = self._get_query_results(job_id, options, cancel).result
        return result if result is not None else QueryResult()

    def _query_response(
        self,
        job_id: JobId,
        response: Mapping[str, Any],
        options: Mapping[OptionKind, Any],
        cancel: threading.Event | None = None,
    ) -> QueryResponse:
        result = None
        if response.get("jobComplete"):
            schema = Schema.from_resource(response.get("schema"))
            cursor = response.get("pageToken")
            fetcher = None
            if cursor is not None:
                fetcher = PageFetcher.after(
                    cursor, partial(self._query_page, job_id, cancel=cancel), options
                )
            result = QueryResult(
                items=rows_from_resources(response.get("rows"), schema),
                cursor=cursor,
                fetcher=fetcher,
                schema=schema,
                total_rows=_optional_int(response.get("totalRows")),
                total_bytes_processed=_optional_int(response.get("totalBytesProcessed")),
                cache_hit=response.get("cacheHit"),
            )
        reference = response.get("jobReference")
        return QueryResponse(
            job_id=JobId.from_resource(reference) if reference else job_id,
            job_complete=bool(response.get("jobComplete")),
            result=result,
            etag=response.get("etag"),
            num_dml_affected_rows=_optional_int(response.get("numDmlAffectedRows")),
            execution_errors=tuple(
                ErrorDetail.from_resource(e) for e in response.get("errors") or ()
            ),
        )

    def wait_for_query_results(
        self,
        job: JobId | str,
        *options: RequestOption,
        wait_policy: RetryPolicy | None = None,
        cancel: threading.Event | None = None,
    ) -> QueryResponse:
        """Block until the query job completes.

        *cancel* is checked between polls and by every poll's own retries.

        Raises:
            JobTimeoutError: The wait budget (``config.query_wait`` unless
                *wait_policy* is given) ran out before completion.
            OperationCancelledError: *cancel* was set while waiting.
        """
        job_id = as_job_id(job).with_default_project(self._project)
        opts = option_map(*options, allowed=_QUERY_RESULTS_OPTIONS)
        return wait_for_query_results(
            lambda: self._get_query_results(job_id, opts, cancel),
            job_id=job_id,
            policy=wait_policy or self._config.query_wait,
            clock=self._config.clock,
            cancel=cancel,
        )

    def query(
        self,
        sql: str,
        *options: RequestOption,
        job_id: JobId | str | None = None,
        configuration: Mapping[str, Any] | None = None,
        wait_policy: RetryPolicy | None = None,
        cancel: threading.Event | None = None,
    ) -> QueryResponse:
        """Run a query job and wait for its first page of results.

        Args:
            sql: The query text.
            *options: Results options (page size, start index, max wait).
            job_id: Name for the job; generated when omitted.
            configuration: Extra query configuration merged next to ``query``.
            wait_policy: Overrides ``config.query_wait`` for this call.
            cancel: Event that stops job creation, polling and their retries.
        """
        if not isinstance(sql, str) or not sql.strip():
            raise InvalidArgumentError(
                "sql must be a non-empty string",
                hint="Pass the query text, e.g. query('SELECT 1').",
            )
        option_map(*options, allowed=_QUERY_RESULTS_OPTIONS)
        job = Job(
            as_job_id(job_id) if job_id is not None else JobId(),
            {"configuration": {"query": {"query": sql, **(configuration or {})}}},
        )
        created = self.create_job(job, cancel=cancel)
        logger.debug("Created query job %s", created.job_id)
        return self.wait_for_query_results(
            created.job_id, *options, wait_policy=wait_policy, cancel=cancel
        )

    # --- Lifecycle ---

    def close(self) -> None:
        close = getattr(self._gateway, "close", None)
        if callable(close):
            try:
                close()
            except Exception as exc:
                # Cleanup should never mask the primary failure.
                logger.warning("Gateway cleanup failed: %s", exc)

    def __enter__(self) -> Warehouse:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
