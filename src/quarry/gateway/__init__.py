"""Gateway contract and implementations."""

from .base import ListKind, ResourceKind, WarehouseGateway
from .memory import InMemoryGateway

__all__ = [
    "InMemoryGateway",
    "ListKind",
    "ResourceKind",
    "WarehouseGateway",
]
