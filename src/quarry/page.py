"""Lazy, restartable pagination over remote list results.

A ``Page`` holds one already-fetched batch plus the opaque cursor the
service returned with it. Asking for the next page issues exactly one list
call through a ``PageFetcher`` that closes over the original request; nothing
is fetched ahead of time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from quarry.options import next_request_options

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping

    from quarry.options import OptionKind

T = TypeVar("T")


@dataclass(frozen=True)
class PageFetcher(Generic[T]):
    """Fetches the page after a cursor.

    ``fetch_page`` is bound to the resource identity and the client; it runs
    one list call with ``request_options`` and wraps the result in a Page.
    """

    fetch_page: Callable[[Mapping[OptionKind, Any]], Page[T]]
    request_options: Mapping[OptionKind, Any]

    @classmethod
    def after(
        cls,
        cursor: str | None,
        fetch_page: Callable[[Mapping[OptionKind, Any]], Page[T]],
        options: Mapping[OptionKind, Any],
    ) -> PageFetcher[T]:
        """Bind *fetch_page* to *options* with the page token set to *cursor*."""
        return cls(fetch_page, next_request_options(options, cursor))

    def fetch(self) -> Page[T]:
        return self.fetch_page(self.request_options)


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of results.

    ``cursor`` is ``None`` on the last page. The cursor is only ever echoed
    back to the service; it carries no meaning on this side.
    """

    items: tuple[T, ...] = ()
    cursor: str | None = None
    fetcher: PageFetcher[T] | None = field(default=None, repr=False, compare=False)

    @property
    def has_next_page(self) -> bool:
        return self.cursor is not None and self.fetcher is not None

    def next_page(self) -> Page[T]:
        """Fetch the following page, or return an empty page after the last one.

        No remote call is made when there is no cursor. Calling this twice on
        the same page repeats the same request.
        """
        fetcher = self.fetcher
        if self.cursor is None or fetcher is None:
            return Page()
        return fetcher.fetch()

    def iter_pages(self) -> Iterator[Page[T]]:
        """Yield this page and each following one, fetching lazily."""
        page: Page[T] = self
        yield page
        while page.has_next_page:
            page = page.next_page()
            yield page

    def iter_all(self) -> Iterator[T]:
        """Yield every item from this page onwards, one page fetch at a time."""
        for page in self.iter_pages():
            yield from page.items

    def __iter__(self) -> Iterator[T]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)
