"""Shared tour progress state, synchronized with the persistence API.

One ProgressStore is created per process and injected into every
TourEngine.  It owns the pageId -> ProgressEntry map and is the only
thing allowed to change it.

SESSION LIFECYCLE
-----------------
  session_started()  -> one guarded load() -> ready
  session_ended()    -> map cleared, load guard reset, not ready

The load guard is set before the first await, so a second call while a
load is in flight is suppressed the same way a call after it finished
is.  Each session has a generation number; a response that resolves
after the session it was issued in has ended is dropped instead of
being merged into the next session's map.

WRITES
------
update() and reset() go to the remote API first and touch the local
map only after it acknowledged.  A failure is logged and reported
through the return value; nothing is retried here.  Updates for the
same pageId are serialized on a per-page asyncio.Lock and merge against
the entry current at merge time, so two pages finishing at once cannot
overwrite each other's flags.

Every mutation builds a new dict and swaps it in with one assignment:
readers see the map before a write or after it, never halfway.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import time
from collections.abc import Awaitable, Callable
from types import MappingProxyType
from typing import TypeVar

from tourguide.core.metrics import PROGRESS_API_CALLS, PROGRESS_API_DURATION
from tourguide.models.progress import ProgressEntry, ProgressMap
from tourguide.repos.progress_repo import ProgressApiError, ProgressRepo

logger = logging.getLogger(__name__)

T = TypeVar("T")

StoreListener = Callable[["ProgressStore"], None]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class ProgressStore:
    def __init__(
        self,
        repo: ProgressRepo,
        *,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self._repo = repo
        self._clock = clock
        self._progress: dict[str, ProgressEntry] = {}
        self._has_session = False
        self._has_loaded = False
        self._is_loading = False
        self._is_ready = False
        self._generation = 0
        self._page_locks: dict[str, asyncio.Lock] = {}
        self._listeners: list[StoreListener] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        """True once this session's load has settled, successfully or not."""
        return self._is_ready

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def has_session(self) -> bool:
        return self._has_session

    def snapshot(self) -> ProgressMap:
        return MappingProxyType(self._progress)

    def entry(self, page_id: str) -> ProgressEntry | None:
        return self._progress.get(page_id)

    def is_completed(self, page_id: str) -> bool:
        entry = self._progress.get(page_id)
        return entry.completed if entry is not None else False

    def is_skipped(self, page_id: str) -> bool:
        entry = self._progress.get(page_id)
        return entry.skipped if entry is not None else False

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Call listener on readiness and after every committed change.

        A listener that raises is logged and the rest are still called.
        Returns an idempotent unsubscribe function.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Guide progress listener %r failed", listener)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def session_started(self) -> None:
        self._has_session = True
        await self.load()

    def session_ended(self) -> None:
        self._has_session = False
        self._has_loaded = False
        self._is_loading = False
        self._is_ready = False
        self._generation += 1
        self._progress = {}
        logger.info("Guide progress cleared for ended session")
        self._notify()

    # ------------------------------------------------------------------
    # Remote operations
    # ------------------------------------------------------------------

    async def load(self) -> None:
        if self._has_loaded:
            logger.debug("Guide progress load suppressed; already loaded this session")
            return
        self._has_loaded = True
        generation = self._generation
        self._is_loading = True

        entries: dict[str, ProgressEntry] | None
        try:
            entries = await self._call("load", self._repo.fetch_all())
        except ProgressApiError:
            logger.warning(
                "Failed to load guide progress",
                exc_info=True,
                extra={"operation": "load"},
            )
            entries = None

        if generation != self._generation:
            logger.info("Discarding guide progress loaded for an ended session")
            return

        self._is_loading = False
        self._is_ready = True
        if entries is not None:
            self._progress = dict(entries)
            logger.info("Loaded guide progress for %d page(s)", len(entries))
        self._notify()

    async def update(
        self,
        page_id: str,
        completed: bool | None = None,
        skipped: bool | None = None,
    ) -> bool:
        """Persist flags for page_id, then merge them locally.

        Returns False (and leaves the local map alone) if the remote
        call failed.
        """
        generation = self._generation
        async with self._lock_for(page_id):
            try:
                await self._call(
                    "update",
                    self._repo.patch(page_id, completed=completed, skipped=skipped),
                )
            except ProgressApiError:
                logger.warning(
                    "Failed to update guide progress for page=%s",
                    page_id,
                    exc_info=True,
                    extra={"page_id": page_id, "operation": "update"},
                )
                return False

            if generation != self._generation:
                logger.info(
                    "Update for page=%s acknowledged after session ended; not merged",
                    page_id,
                    extra={"page_id": page_id, "operation": "update"},
                )
                return True

            current = self._progress.get(page_id, ProgressEntry())
            merged = current.merged(
                completed=completed, skipped=skipped, now=self._clock()
            )
            self._progress = {**self._progress, page_id: merged}

        logger.info(
            "Guide progress for page=%s completed=%s skipped=%s",
            page_id,
            merged.completed,
            merged.skipped,
            extra={"page_id": page_id, "operation": "update"},
        )
        self._notify()
        return True

    async def reset(self, page_id: str | None = None) -> bool:
        """Delete progress remotely (one page or all), then locally."""
        generation = self._generation
        if page_id is None:
            ok = await self._reset(None, generation)
        else:
            async with self._lock_for(page_id):
                ok = await self._reset(page_id, generation)
        if ok and generation == self._generation:
            self._notify()
        return ok

    async def _reset(self, page_id: str | None, generation: int) -> bool:
        try:
            await self._call("reset", self._repo.delete(page_id))
        except ProgressApiError:
            logger.warning(
                "Failed to reset guide progress for page=%s",
                page_id or "*",
                exc_info=True,
                extra={"page_id": page_id, "operation": "reset"},
            )
            return False

        if generation != self._generation:
            return True

        if page_id is None:
            self._progress = {}
        else:
            self._progress = {k: v for k, v in self._progress.items() if k != page_id}
        logger.info(
            "Guide progress reset for page=%s",
            page_id or "*",
            extra={"page_id": page_id, "operation": "reset"},
        )
        return True

    def _lock_for(self, page_id: str) -> asyncio.Lock:
        if page_id not in self._page_locks:
            self._page_locks[page_id] = asyncio.Lock()
        return self._page_locks[page_id]

    async def _call(self, operation: str, call: Awaitable[T]) -> T:
        start = time.monotonic()
        result = "error"
        try:
            value = await call
            result = "ok"
            return value
        finally:
            PROGRESS_API_DURATION.labels(operation=operation).observe(
                time.monotonic() - start
            )
            PROGRESS_API_CALLS.labels(operation=operation, result=result).inc()
