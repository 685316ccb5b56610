"""Per-page tour state machine.

    IDLE ──(store ready, decision)──┬──> AWAITING_CONSENT ──start──> RUNNING
      │                             │            │
      │ should_run false            └──────────> RUNNING(0)    decline
      ▼                                          │                │
    (stays IDLE)                     advance/finish at last,      │
                                     target_not_found at last,    │
                                     close, skip                  │
                                                 ▼                ▼
                                              TERMINAL <──────────┘

The start decision waits for the store's session load to settle and is
taken once per mount: ``has_started`` flips at the decision, whatever
its result, and later evaluate() calls return immediately.

Terminal transitions commit synchronously: phase, outcome, guard
teardown.  Persisting the outcome and firing the caller's callback run
afterwards in a task on the running loop.  The async event methods
await that task, so their caller sees persistence settled; a failed
write is logged by the store and changes nothing here.  Exactly one of
on_complete / on_skip fires per mount.

mount() and evaluate() may run without an event loop.  Work that needs
one (persisting an outcome, resolving targets against an async page) is
then held until settle() is awaited.  Entering RUNNING against an
async resolver also completes in the background; settle() waits for it.
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import logging
from collections.abc import Awaitable, Callable, Coroutine, Sequence
from typing import Any

from tourguide.core.metrics import TOUR_DECISIONS, TOUR_OUTCOMES, TOURS_RUNNING
from tourguide.models.step import Step
from tourguide.models.tour import (
    ConsentPrompt,
    RendererView,
    TourEngineState,
    TourEvent,
    TourEventKind,
    TourOutcome,
    TourPhase,
)
from tourguide.services.click_guardian import InputGuard
from tourguide.services.progress_store import ProgressStore
from tourguide.services.target_resolver import TargetResolver, filter_steps

logger = logging.getLogger(__name__)

TourCallback = Callable[[], Any]


class TourEngine:
    def __init__(
        self,
        *,
        page_id: str,
        steps: Sequence[Step],
        store: ProgressStore,
        resolver: TargetResolver,
        guardian: InputGuard | None = None,
        run_override: bool | None = None,
        consent: ConsentPrompt | None = None,
        on_complete: TourCallback | None = None,
        on_skip: TourCallback | None = None,
    ) -> None:
        self._page_id = page_id
        self._steps = tuple(steps)
        self._store = store
        self._resolver = resolver
        self._guardian = guardian
        self._run_override = run_override
        self._consent = consent
        self._on_complete = on_complete
        self._on_skip = on_skip

        self._state = TourEngineState()
        self._unsubscribe: Callable[[], None] | None = None
        self._mounted = False
        self._unmounted = False
        self._pending: asyncio.Task[None] | None = None
        self._deferred: Coroutine[Any, Any, None] | None = None

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def page_id(self) -> str:
        return self._page_id

    @property
    def phase(self) -> TourPhase:
        return self._state.phase

    @property
    def state(self) -> TourEngineState:
        return dataclasses.replace(self._state)

    @property
    def consent(self) -> ConsentPrompt | None:
        """The prompt to show while AWAITING_CONSENT, else None."""
        if self._state.phase is TourPhase.AWAITING_CONSENT:
            return self._consent
        return None

    @property
    def is_mounted(self) -> bool:
        return self._mounted and not self._unmounted

    def view(self) -> RendererView:
        running = self._state.phase is TourPhase.RUNNING and not self._unmounted
        return RendererView(
            filtered_steps=self._state.filtered_steps,
            current_index=self._state.step_index,
            is_running=running,
        )

    # ------------------------------------------------------------------
    # Mount lifecycle
    # ------------------------------------------------------------------

    def mount(self) -> None:
        if self._mounted:
            return
        self._mounted = True
        self._unsubscribe = self._store.subscribe(self._on_store_change)
        self.evaluate()

    def unmount(self) -> None:
        if self._unmounted:
            return
        self._unmounted = True
        self._drop_subscription()
        if self._state.phase is TourPhase.RUNNING:
            TOURS_RUNNING.dec()
        self._release_guard()
        logger.debug("Tour engine unmounted", extra=self._log_context())

    async def settle(self) -> None:
        """Run held work and wait until no transition is in flight."""
        while True:
            if self._deferred is not None:
                work, self._deferred = self._deferred, None
                await work
            elif self._pending is not None and not self._pending.done():
                await self._pending
            else:
                return

    def _on_store_change(self, _store: ProgressStore) -> None:
        self.evaluate()

    # ------------------------------------------------------------------
    # Start decision
    # ------------------------------------------------------------------

    def evaluate(self) -> None:
        """Take the start decision if it is due.  Safe to call repeatedly."""
        if self._unmounted or self._state.has_started:
            return
        if not self._store.is_ready:
            logger.debug("Progress not loaded yet; tour undecided", extra=self._log_context())
            return

        self._state.has_started = True
        self._drop_subscription()

        if not self._should_run():
            TOUR_DECISIONS.labels(result="suppressed").inc()
            logger.debug("Tour will not run", extra=self._log_context())
            return

        if self._consent is not None:
            self._state.phase = TourPhase.AWAITING_CONSENT
            TOUR_DECISIONS.labels(result="consent").inc()
            logger.info("Tour awaiting consent", extra=self._log_context())
            return

        TOUR_DECISIONS.labels(result="run").inc()
        self._enter_running()

    def _should_run(self) -> bool:
        if not self._page_id.strip() or not self._steps:
            return False
        if self._run_override is not None:
            return self._run_override
        return not (
            self._store.is_completed(self._page_id)
            or self._store.is_skipped(self._page_id)
        )

    # ------------------------------------------------------------------
    # Consent
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """User accepted the consent prompt."""
        if not self._accepts(TourPhase.AWAITING_CONSENT):
            return
        # Targets are resolved now, not at mount; the page may have changed.
        self._enter_running()
        await self.settle()

    async def decline(self) -> None:
        """User skipped the tour from the consent prompt."""
        if not self._accepts(TourPhase.AWAITING_CONSENT):
            return
        self._terminate(TourOutcome.SKIPPED)
        await self.settle()

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    async def dispatch(self, event: TourEvent) -> None:
        """Route one renderer lifecycle event."""
        if event.kind in (TourEventKind.CLOSE, TourEventKind.SKIP):
            if self._state.phase is TourPhase.AWAITING_CONSENT:
                await self.decline()
            else:
                await self.close()
            return

        if not self._accepts(TourPhase.RUNNING):
            return
        if event.index != self._state.step_index:
            logger.debug(
                "Ignoring stale %s event for step %d",
                event.kind.value,
                event.index,
                extra=self._log_context(),
            )
            return

        if event.kind is TourEventKind.REWIND:
            self.rewind()
        elif event.kind is TourEventKind.FINISH:
            self._terminate(TourOutcome.COMPLETED)
            await self.settle()
        elif event.kind is TourEventKind.TARGET_NOT_FOUND:
            await self.target_not_found()
        else:
            await self.advance()

    async def advance(self) -> None:
        if not self._accepts(TourPhase.RUNNING):
            return
        if self._state.step_index >= len(self._state.filtered_steps) - 1:
            self._terminate(TourOutcome.COMPLETED)
            await self.settle()
            return
        self._state.step_index += 1

    def rewind(self) -> None:
        if not self._accepts(TourPhase.RUNNING):
            return
        if self._state.step_index > 0:
            self._state.step_index -= 1

    async def target_not_found(self) -> None:
        """The renderer could not find the current step's element; move on."""
        if not self._accepts(TourPhase.RUNNING):
            return
        logger.info(
            "Target %r not found; skipping step",
            self._state.filtered_steps[self._state.step_index].target,
            extra=self._log_context(),
        )
        await self.advance()

    async def close(self) -> None:
        """Close or explicit skip: abandon the remaining steps."""
        if not self._accepts(TourPhase.RUNNING):
            return
        self._terminate(TourOutcome.SKIPPED)
        await self.settle()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _accepts(self, phase: TourPhase) -> bool:
        return not self._unmounted and self._state.phase is phase

    def _enter_running(self) -> None:
        steps = filter_steps(self._steps, self._resolver)
        if inspect.isawaitable(steps):
            self._schedule(self._finish_entering(steps, self._state.phase))
            return
        self._begin_running(steps)

    async def _finish_entering(
        self, steps: Awaitable[tuple[Step, ...]], phase: TourPhase
    ) -> None:
        resolved = await steps
        if self._unmounted or self._state.phase is not phase:
            return
        self._begin_running(resolved)

    def _begin_running(self, steps: tuple[Step, ...]) -> None:
        self._state.filtered_steps = steps
        self._state.step_index = 0
        if not steps:
            logger.info(
                "None of %d step target(s) rendered; finishing empty tour",
                len(self._steps),
                extra=self._log_context(),
            )
            self._terminate(TourOutcome.COMPLETED)
            return

        # A guard that fails to install leaves the phase untouched.
        if self._guardian is not None:
            self._guardian.install()
        self._state.phase = TourPhase.RUNNING
        TOURS_RUNNING.inc()
        logger.info("Tour running with %d step(s)", len(steps), extra=self._log_context())

    def _terminate(self, outcome: TourOutcome) -> None:
        if self._state.phase is TourPhase.RUNNING:
            TOURS_RUNNING.dec()
        self._state.phase = TourPhase.TERMINAL
        self._state.outcome = outcome
        self._release_guard()
        self._drop_subscription()
        TOUR_OUTCOMES.labels(outcome=outcome.value).inc()
        logger.info("Tour %s", outcome.value, extra=self._log_context())
        self._schedule(self._persist_outcome(outcome))

    def _schedule(self, work: Coroutine[Any, Any, None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(
                "No running event loop; held until settle()", extra=self._log_context()
            )
            self._deferred = work
            return
        self._pending = loop.create_task(work)

    async def _persist_outcome(self, outcome: TourOutcome) -> None:
        if outcome is TourOutcome.COMPLETED:
            await self._store.update(self._page_id, completed=True)
            callback = self._on_complete
        else:
            await self._store.update(self._page_id, skipped=True)
            callback = self._on_skip

        if callback is not None:
            result = callback()
            if inspect.isawaitable(result):
                await result

    def _release_guard(self) -> None:
        if self._guardian is not None:
            self._guardian.remove()

    def _drop_subscription(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _log_context(self) -> dict[str, object]:
        return {
            "page_id": self._page_id,
            "phase": self._state.phase.value,
            "step_index": self._state.step_index,
        }
