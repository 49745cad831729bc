"""Quarry: a retrying, paginating client for a remote tabular data warehouse.

Public API:
    - Warehouse: Dataset, table, job and query operations
    - Config: Configuration dataclass (default project, retry policies)
    - RequestOption: Typed request modifiers
    - Page: Lazy cursor-based pagination
    - RetryPolicy / run_with_retries: The retry executor
"""

from __future__ import annotations

import logging

from quarry.clock import Clock, SystemClock
from quarry.config import Config
from quarry.errors import (
    ConfigurationError,
    InvalidArgumentError,
    JobTimeoutError,
    NotFoundError,
    OperationCancelledError,
    QuarryError,
    RateLimitError,
    RetryExhaustedError,
    WarehouseError,
)
from quarry.gateway import InMemoryGateway, WarehouseGateway
from quarry.ids import DatasetId, JobId, TableId
from quarry.models import (
    Dataset,
    ErrorDetail,
    InsertAllRequest,
    InsertAllResponse,
    Job,
    Row,
    RowToInsert,
    Schema,
    SchemaField,
    Table,
)
from quarry.options import OptionKind, RequestOption, option_map
from quarry.page import Page, PageFetcher
from quarry.query import QueryResponse, QueryResult
from quarry.retry import QUERY_WAIT_POLICY, RetryPolicy, is_retryable, run_with_retries
from quarry.warehouse import Warehouse

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("quarry-warehouse")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("quarry").addHandler(logging.NullHandler())

__all__ = [
    "QUERY_WAIT_POLICY",
    "Clock",
    "Config",
    "ConfigurationError",
    "Dataset",
    "DatasetId",
    "ErrorDetail",
    "InMemoryGateway",
    "InsertAllRequest",
    "InsertAllResponse",
    "InvalidArgumentError",
    "Job",
    "JobId",
    "JobTimeoutError",
    "NotFoundError",
    "OperationCancelledError",
    "OptionKind",
    "Page",
    "PageFetcher",
    "QuarryError",
    "QueryResponse",
    "QueryResult",
    "RateLimitError",
    "RequestOption",
    "RetryExhaustedError",
    "RetryPolicy",
    "Row",
    "RowToInsert",
    "Schema",
    "SchemaField",
    "SystemClock",
    "Table",
    "TableId",
    "Warehouse",
    "WarehouseError",
    "WarehouseGateway",
    "is_retryable",
    "option_map",
    "run_with_retries",
]
