"""Resource identities: datasets, tables and jobs.

Identities may be built without a project; the client completes them with
the configured default project before anything goes over the wire.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any
import uuid

from quarry.errors import InvalidArgumentError


def _check_component(name: str, value: Any, *, optional: bool = False) -> None:
    if value is None and optional:
        return
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError(
            f"{name} must be a non-empty string, got {value!r}"
        )
    if "." in value and name in {"dataset", "table"}:
        raise InvalidArgumentError(
            f"{name} must not contain '.', got {value!r}",
            hint="Use the parse() helpers for dotted names.",
        )


def _require_project(identity: Any) -> str:
    project = identity.project
    if project is None:
        raise InvalidArgumentError(
            f"{identity!r} has no project",
            hint="Call with_default_project() before sending it to the gateway.",
        )
    return project


def _resource_field(resource: Any, key: str) -> str:
    if not isinstance(resource, dict) or not isinstance(resource.get(key), str):
        raise InvalidArgumentError(f"Resource identity is missing {key!r}: {resource!r}")
    return resource[key]


@dataclass(frozen=True)
class DatasetId:
    """Identity of a dataset."""

    dataset: str
    project: str | None = None

    def __post_init__(self) -> None:
        _check_component("dataset", self.dataset)
        _check_component("project", self.project, optional=True)

    @classmethod
    def parse(cls, value: str) -> DatasetId:
        """Parse ``dataset`` or ``project.dataset``; the project may itself contain dots."""
        parts = value.rsplit(".", 1) if isinstance(value, str) else []
        if len(parts) == 1:
            return cls(parts[0])
        if len(parts) == 2:
            return cls(parts[1], project=parts[0])
        raise InvalidArgumentError(f"Malformed dataset id: {value!r}")

    @property
    def is_qualified(self) -> bool:
        return self.project is not None

    def with_default_project(self, project: str) -> DatasetId:
        return self if self.project is not None else replace(self, project=project)

    def to_resource(self) -> dict[str, str]:
        return {"project": _require_project(self), "dataset": self.dataset}

    @classmethod
    def from_resource(cls, resource: dict[str, Any]) -> DatasetId:
        return cls(
            _resource_field(resource, "dataset"),
            project=_resource_field(resource, "project"),
        )

    def __str__(self) -> str:
        return f"{self.project}.{self.dataset}" if self.project else self.dataset


@dataclass(frozen=True)
class TableId:
    """Identity of a table within a dataset."""

    dataset: str
    table: str
    project: str | None = None

    def __post_init__(self) -> None:
        _check_component("dataset", self.dataset)
        _check_component("table", self.table)
        _check_component("project", self.project, optional=True)

    @classmethod
    def parse(cls, value: str) -> TableId:
        """Parse ``dataset.table`` or ``project.dataset.table``; the project may itself contain dots."""
        parts = value.rsplit(".", 2) if isinstance(value, str) else []
        if len(parts) == 2:
            return cls(parts[0], parts[1])
        if len(parts) == 3:
            return cls(parts[1], parts[2], project=parts[0])
        raise InvalidArgumentError(
            f"Malformed table id: {value!r}",
            hint="Expected 'dataset.table' or 'project.dataset.table'.",
        )

    @property
    def dataset_id(self) -> DatasetId:
        return DatasetId(self.dataset, project=self.project)

    @property
    def is_qualified(self) -> bool:
        return self.project is not None

    def with_default_project(self, project: str) -> TableId:
        return self if self.project is not None else replace(self, project=project)

    def to_resource(self) -> dict[str, str]:
        return {
            "project": _require_project(self),
            "dataset": self.dataset,
            "table": self.table,
        }

    @classmethod
    def from_resource(cls, resource: dict[str, Any]) -> TableId:
        return cls(
            _resource_field(resource, "dataset"),
            _resource_field(resource, "table"),
            project=_resource_field(resource, "project"),
        )

    def __str__(self) -> str:
        base = f"{self.dataset}.{self.table}"
        return f"{self.project}.{base}" if self.project else base


@dataclass(frozen=True)
class JobId:
    """Identity of a job. A random job name is generated when none is given."""

    job: str = field(default_factory=lambda: f"job_{uuid.uuid4().hex}")
    project: str | None = None

    def __post_init__(self) -> None:
        _check_component("job", self.job)
        _check_component("project", self.project, optional=True)

    @property
    def is_qualified(self) -> bool:
        return self.project is not None

    def with_default_project(self, project: str) -> JobId:
        return self if self.project is not None else replace(self, project=project)

    def to_resource(self) -> dict[str, str]:
        return {"project": _require_project(self), "job": self.job}

    @classmethod
    def from_resource(cls, resource: dict[str, Any]) -> JobId:
        return cls(
            _resource_field(resource, "job"),
            project=_resource_field(resource, "project"),
        )

    def __str__(self) -> str:
        return f"{self.project}:{self.job}" if self.project else self.job


def as_dataset_id(value: DatasetId | str) -> DatasetId:
    """Accept a DatasetId or its string form."""
    if isinstance(value, DatasetId):
        return value
    return DatasetId.parse(value)


def as_table_id(value: TableId | str) -> TableId:
    """Accept a TableId or its string form."""
    if isinstance(value, TableId):
        return value
    return TableId.parse(value)


def as_job_id(value: JobId | str) -> JobId:
    """Accept a JobId or a bare job name."""
    if isinstance(value, JobId):
        return value
    return JobId(value)
