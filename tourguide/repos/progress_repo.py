from __future__ import annotations

import datetime
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from tourguide.models.progress import ProgressEntry


class ProgressApiError(Exception):
    """A guide progress persistence call did not succeed."""

    def __init__(
        self, operation: str, message: str, *, status_code: int | None = None
    ) -> None:
        super().__init__(f"{operation}: {message}")
        self.operation = operation
        self.status_code = status_code


@runtime_checkable
class ProgressRepo(Protocol):
    async def fetch_all(self) -> dict[str, ProgressEntry]:
        """Return every stored entry keyed by pageId."""
        ...

    async def patch(
        self, page_id: str, *, completed: bool | None, skipped: bool | None
    ) -> None:
        """Persist the given flags for one page.  None means "leave as is"."""
        ...

    async def delete(self, page_id: str | None = None) -> None:
        """Drop one page's entry, or all of them when page_id is None."""
        ...


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class InMemoryProgressRepo:
    """In-memory persistence for local dev, demos and tests.

    Applies patches with the same first-transition timestamp rule the
    store uses, so a reload after an update sees what a real backend
    would return.
    """

    def __init__(
        self,
        entries: dict[str, ProgressEntry] | None = None,
        *,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self._entries: dict[str, ProgressEntry] = dict(entries or {})
        self._clock = clock

    async def fetch_all(self) -> dict[str, ProgressEntry]:
        return dict(self._entries)

    async def patch(
        self, page_id: str, *, completed: bool | None, skipped: bool | None
    ) -> None:
        current = self._entries.get(page_id, ProgressEntry())
        self._entries[page_id] = current.merged(
            completed=completed, skipped=skipped, now=self._clock()
        )

    async def delete(self, page_id: str | None = None) -> None:
        if page_id is None:
            self._entries.clear()
        else:
            self._entries.pop(page_id, None)
