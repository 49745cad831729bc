"""Gateway protocol: the primitive remote operations Quarry drives."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping

    from quarry.options import OptionKind

ResourceKind = Literal["dataset", "table", "job"]
ListKind = Literal["dataset", "table", "job", "table_data"]
Resource = dict[str, Any]


@runtime_checkable
class WarehouseGateway(Protocol):
    """Transport-level operations against the warehouse service.

    Resources and identities are plain mappings; identities are always fully
    qualified (they carry a project). Any method may raise a transport
    exception; Quarry classifies and translates it.
    """

    def create(
        self, kind: ResourceKind, resource: Resource, options: Mapping[OptionKind, Any]
    ) -> Resource:
        """Create a resource and return its stored representation."""
        ...

    def get(
        self, kind: ResourceKind, identity: Resource, options: Mapping[OptionKind, Any]
    ) -> Resource | None:
        """Return a resource, or None when it does not exist."""
        ...

    def list(
        self, kind: ListKind, parent: Resource, options: Mapping[OptionKind, Any]
    ) -> tuple[str | None, list[Resource]]:
        """Return one page: ``(cursor or None on the last page, batch)``."""
        ...

    def patch(
        self, kind: ResourceKind, resource: Resource, options: Mapping[OptionKind, Any]
    ) -> Resource:
        """Update the given properties of an existing resource."""
        ...

    def delete(
        self, kind: ResourceKind, identity: Resource, options: Mapping[OptionKind, Any]
    ) -> bool:
        """Delete a resource; False when it did not exist."""
        ...

    def insert_all(self, table: Resource, request: Resource) -> Resource:
        """Stream rows into a table; the response lists per-row errors."""
        ...

    def cancel(self, job: Resource) -> bool:
        """Request cancellation of a job; False when it does not exist."""
        ...

    def get_query_results(
        self, job: Resource, options: Mapping[OptionKind, Any]
    ) -> Resource:
        """Return completion state and, once complete, a page of result rows."""
        ...
