"""Request options and the option-map builder."""

from __future__ import annotations

from dataclasses import dataclass
import enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from quarry.errors import InvalidArgumentError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


class OptionKind(enum.Enum):
    """Request parameters understood by the gateway, keyed by wire name."""

    FIELDS = "fields"
    DELETE_CONTENTS = "deleteContents"
    ALL_DATASETS = "all"
    ALL_USERS = "allUsers"
    LABEL_FILTER = "filter"
    MAX_RESULTS = "maxResults"
    PAGE_TOKEN = "pageToken"
    START_INDEX = "startIndex"
    STATE_FILTER = "stateFilter"
    TIMEOUT = "timeoutMs"


JOB_STATES: frozenset[str] = frozenset({"PENDING", "RUNNING", "DONE"})


@dataclass(frozen=True)
class RequestOption:
    """A single typed request modifier.

    Build options with the factory classmethods rather than by hand; they
    validate the value for its kind.
    """

    kind: OptionKind
    value: Any

    def __post_init__(self) -> None:
        if not isinstance(self.kind, OptionKind):
            raise InvalidArgumentError(
                f"Unknown option kind: {self.kind!r}",
                hint="Use the RequestOption factory methods.",
            )

    def __str__(self) -> str:
        return f"{self.kind.name}={self.value!r}"

    @classmethod
    def page_size(cls, size: int) -> RequestOption:
        """Maximum number of items per page."""
        if isinstance(size, bool) or not isinstance(size, int) or size < 1:
            raise InvalidArgumentError(
                f"page_size must be a positive integer, got {size!r}"
            )
        return cls(OptionKind.MAX_RESULTS, size)

    @classmethod
    def page_token(cls, token: str) -> RequestOption:
        """Start listing from an opaque cursor returned by a previous page."""
        if not isinstance(token, str) or not token:
            raise InvalidArgumentError("page_token must be a non-empty string")
        return cls(OptionKind.PAGE_TOKEN, token)

    @classmethod
    def fields(cls, *names: str) -> RequestOption:
        """Restrict the returned resource to the named top-level fields."""
        if not names or not all(isinstance(n, str) and n for n in names):
            raise InvalidArgumentError(
                "fields needs one or more non-empty field names",
                hint="Pass fields('friendlyName', 'labels').",
            )
        return cls(OptionKind.FIELDS, ",".join(dict.fromkeys(names)))

    @classmethod
    def all_datasets(cls) -> RequestOption:
        """Include hidden datasets when listing."""
        return cls(OptionKind.ALL_DATASETS, True)

    @classmethod
    def label_filter(cls, expression: str) -> RequestOption:
        """Filter datasets by label, e.g. ``labels.env:prod``."""
        if not isinstance(expression, str) or not expression.startswith("labels."):
            raise InvalidArgumentError(
                f"label_filter must look like 'labels.<key>[:<value>]', got {expression!r}"
            )
        return cls(OptionKind.LABEL_FILTER, expression)

    @classmethod
    def all_users(cls) -> RequestOption:
        """List jobs from all users of the project."""
        return cls(OptionKind.ALL_USERS, True)

    @classmethod
    def state_filter(cls, *states: str) -> RequestOption:
        """Only list jobs in the given states."""
        normalized = tuple(s.upper() for s in states if isinstance(s, str))
        if not normalized or len(normalized) != len(states):
            raise InvalidArgumentError("state_filter needs one or more job states")
        unknown = set(normalized) - JOB_STATES
        if unknown:
            raise InvalidArgumentError(
                f"Unknown job state(s): {sorted(unknown)}",
                hint=f"Valid states: {sorted(JOB_STATES)}",
            )
        return cls(OptionKind.STATE_FILTER, normalized)

    @classmethod
    def start_index(cls, index: int) -> RequestOption:
        """Zero-based row offset to start reading table data or results from."""
        if isinstance(index, bool) or not isinstance(index, int) or index < 0:
            raise InvalidArgumentError(
                f"start_index must be a non-negative integer, got {index!r}"
            )
        return cls(OptionKind.START_INDEX, index)

    @classmethod
    def delete_contents(cls) -> RequestOption:
        """Delete a dataset together with the tables it contains."""
        return cls(OptionKind.DELETE_CONTENTS, True)

    @classmethod
    def max_wait(cls, seconds: float) -> RequestOption:
        """How long one results request may wait server-side for completion."""
        if isinstance(seconds, bool) or not isinstance(seconds, (int, float)) or seconds < 0:
            raise InvalidArgumentError(
                f"max_wait must be a non-negative number of seconds, got {seconds!r}"
            )
        return cls(OptionKind.TIMEOUT, int(seconds * 1000))


def option_map(
    *options: RequestOption, allowed: Iterable[OptionKind] | None = None
) -> Mapping[OptionKind, Any]:
    """Flatten request options into a read-only kind → value mapping.

    Raises:
        InvalidArgumentError: An option kind appears twice, an argument is not
            a RequestOption, or a kind is not accepted by the operation.
    """
    allowed_kinds = frozenset(allowed) if allowed is not None else None
    result: dict[OptionKind, Any] = {}
    for option in options:
        if not isinstance(option, RequestOption):
            raise InvalidArgumentError(
                f"Expected RequestOption, got {type(option).__name__}",
                hint="Use RequestOption.page_size(), RequestOption.fields(), etc.",
            )
        if allowed_kinds is not None and option.kind not in allowed_kinds:
            raise InvalidArgumentError(
                f"Option {option.kind.name} is not supported by this operation",
                hint=f"Supported: {sorted(k.name for k in allowed_kinds)}",
            )
        if option.kind in result:
            raise InvalidArgumentError(f"Duplicate option {option}")
        result[option.kind] = option.value
    return MappingProxyType(result)


def next_request_options(
    options: Mapping[OptionKind, Any], cursor: str | None
) -> Mapping[OptionKind, Any]:
    """Return a copy of *options* asking for the page after *cursor*."""
    result = dict(options)
    if cursor is None:
        result.pop(OptionKind.PAGE_TOKEN, None)
    else:
        result[OptionKind.PAGE_TOKEN] = cursor
    return MappingProxyType(result)
