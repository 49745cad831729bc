"""Domain values built from gateway resources.

Resource field sets are not modelled: datasets, tables and jobs carry their
identity plus an opaque ``properties`` mapping that round-trips unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from quarry.errors import InvalidArgumentError
from quarry.ids import DatasetId, JobId, TableId

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping, Sequence


def _freeze(properties: Mapping[str, Any] | None) -> Mapping[str, Any]:
    if properties is None:
        return MappingProxyType({})
    if "id" in properties:
        raise InvalidArgumentError(
            "properties must not contain 'id'",
            hint="The identity is passed separately.",
        )
    return MappingProxyType(dict(properties))


def _split_resource(resource: Mapping[str, Any]) -> tuple[Any, dict[str, Any]]:
    properties = dict(resource)
    identity = properties.pop("id", None)
    return identity, properties


@dataclass(frozen=True)
class Dataset:
    """A dataset and its properties."""

    dataset_id: DatasetId
    properties: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "properties", _freeze(self.properties))

    def with_default_project(self, project: str) -> Dataset:
        return replace(self, dataset_id=self.dataset_id.with_default_project(project))

    def to_resource(self) -> dict[str, Any]:
        return {"id": self.dataset_id.to_resource(), **self.properties}

    @classmethod
    def from_resource(cls, resource: Mapping[str, Any]) -> Dataset:
        identity, properties = _split_resource(resource)
        return cls(DatasetId.from_resource(identity), properties)


@dataclass(frozen=True)
class Table:
    """A table and its properties (including its ``schema``, when known)."""

    table_id: TableId
    properties: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "properties", _freeze(self.properties))

    @property
    def schema(self) -> Schema | None:
        return Schema.from_resource(self.properties.get("schema"))

    def with_default_project(self, project: str) -> Table:
        return replace(self, table_id=self.table_id.with_default_project(project))

    def to_resource(self) -> dict[str, Any]:
        return {"id": self.table_id.to_resource(), **self.properties}

    @classmethod
    def from_resource(cls, resource: Mapping[str, Any]) -> Table:
        identity, properties = _split_resource(resource)
        return cls(TableId.from_resource(identity), properties)


@dataclass(frozen=True)
class Job:
    """A job and its properties; ``status.state`` tracks its progress."""

    job_id: JobId = field(default_factory=JobId)
    properties: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "properties", _freeze(self.properties))

    @property
    def state(self) -> str | None:
        status = self.properties.get("status")
        return status.get("state") if isinstance(status, dict) else None

    @property
    def done(self) -> bool:
        return self.state == "DONE"

    @property
    def error_result(self) -> ErrorDetail | None:
        status = self.properties.get("status")
        if not isinstance(status, dict) or not status.get("errorResult"):
            return None
        return ErrorDetail.from_resource(status["errorResult"])

    def with_default_project(self, project: str) -> Job:
        return replace(self, job_id=self.job_id.with_default_project(project))

    def to_resource(self) -> dict[str, Any]:
        return {"id": self.job_id.to_resource(), **self.properties}

    @classmethod
    def from_resource(cls, resource: Mapping[str, Any]) -> Job:
        identity, properties = _split_resource(resource)
        return cls(JobId.from_resource(identity), properties)


@dataclass(frozen=True)
class ErrorDetail:
    """One error reported by the warehouse for a job or an inserted row."""

    reason: str | None
    message: str | None = None
    location: str | None = None

    @classmethod
    def from_resource(cls, resource: Mapping[str, Any]) -> ErrorDetail:
        return cls(
            reason=resource.get("reason"),
            message=resource.get("message"),
            location=resource.get("location"),
        )


@dataclass(frozen=True)
class SchemaField:
    name: str
    type: str = "STRING"


@dataclass(frozen=True)
class Schema:
    """Ordered field list used to name row values."""

    fields: tuple[SchemaField, ...]

    @classmethod
    def of(cls, *fields: SchemaField | str) -> Schema:
        return cls(tuple(f if isinstance(f, SchemaField) else SchemaField(f) for f in fields))

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    def to_resource(self) -> dict[str, Any]:
        return {"fields": [{"name": f.name, "type": f.type} for f in self.fields]}

    @classmethod
    def from_resource(cls, resource: Any) -> Schema | None:
        if not isinstance(resource, dict):
            return None
        raw_fields = resource.get("fields") or []
        return cls(
            tuple(
                SchemaField(f["name"], f.get("type", "STRING"))
                for f in raw_fields
                if isinstance(f, dict) and isinstance(f.get("name"), str)
            )
        )


@dataclass(frozen=True)
class Row:
    """One row of table data or query results.

    Values are addressable by position, and by field name when the row was
    read with a schema.
    """

    values: tuple[Any, ...]
    schema: Schema | None = None

    def __getitem__(self, key: int | str) -> Any:
        if isinstance(key, str):
            if self.schema is None:
                raise KeyError(f"{key!r} (row has no schema)")
            try:
                return self.values[self.schema.names.index(key)]
            except ValueError:
                raise KeyError(key) from None
        return self.values[key]

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.values)

    def as_dict(self) -> dict[str, Any]:
        if self.schema is None:
            raise InvalidArgumentError("Row has no schema to name its values")
        return dict(zip(self.schema.names, self.values, strict=False))

    @classmethod
    def from_resource(cls, resource: Mapping[str, Any], schema: Schema | None = None) -> Row:
        cells = resource.get("f") or []
        return cls(tuple(cell.get("v") for cell in cells), schema)


def rows_from_resources(
    resources: Sequence[Mapping[str, Any]] | None, schema: Schema | None = None
) -> tuple[Row, ...]:
    return tuple(Row.from_resource(r, schema) for r in resources or ())


@dataclass(frozen=True)
class RowToInsert:
    """Row content for a streaming insert, with an optional de-duplication id."""

    content: Mapping[str, Any]
    insert_id: str | None = None

    def to_resource(self) -> dict[str, Any]:
        resource: dict[str, Any] = {"json": dict(self.content)}
        if self.insert_id is not None:
            resource["insertId"] = self.insert_id
        return resource


@dataclass(frozen=True)
class InsertAllRequest:
    """A batch of rows to stream into one table."""

    table_id: TableId
    rows: tuple[RowToInsert, ...]
    skip_invalid_rows: bool = False
    ignore_unknown_values: bool = False
    template_suffix: str | None = None

    def __post_init__(self) -> None:
        rows = tuple(
            r if isinstance(r, RowToInsert) else RowToInsert(r) for r in self.rows
        )
        if not rows:
            raise InvalidArgumentError("InsertAllRequest needs at least one row")
        object.__setattr__(self, "rows", rows)

    def with_default_project(self, project: str) -> InsertAllRequest:
        return replace(self, table_id=self.table_id.with_default_project(project))

    def to_resource(self) -> dict[str, Any]:
        resource: dict[str, Any] = {
            "rows": [r.to_resource() for r in self.rows],
            "skipInvalidRows": self.skip_invalid_rows,
            "ignoreUnknownValues": self.ignore_unknown_values,
        }
        if self.template_suffix is not None:
            resource["templateSuffix"] = self.template_suffix
        return resource


@dataclass(frozen=True)
class InsertAllResponse:
    """Per-row insert errors keyed by the row's index in the request.

    Streaming inserts are not retried automatically; callers decide per row
    whether to resend, based on these errors.
    """

    insert_errors: Mapping[int, tuple[ErrorDetail, ...]] = field(default_factory=dict)

    @property
    def has_errors(self) -> bool:
        return bool(self.insert_errors)

    def errors_for(self, index: int) -> tuple[ErrorDetail, ...]:
        return self.insert_errors.get(index, ())

    @classmethod
    def from_resource(cls, resource: Mapping[str, Any] | None) -> InsertAllResponse:
        errors: dict[int, tuple[ErrorDetail, ...]] = {}
        for entry in (resource or {}).get("insertErrors") or []:
            details = tuple(ErrorDetail.from_resource(e) for e in entry.get("errors") or [])
            errors[int(entry["index"])] = details
        return cls(MappingProxyType(errors))
