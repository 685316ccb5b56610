"""Stray-input guard for running tours.

While a tour is RUNNING the page is dimmed by an overlay with a
spotlight cut around the current step's target.  A click that lands on
either would reach the renderer as "clicked outside the tooltip" and
close the tour, so the guard intercepts pointer events in the capture
phase at the document root and swallows them.  The renderer's own close
button is the one exception.

The guard is a scoped resource: the engine installs it on entering
RUNNING and removes it on every way out (finish, skip, unmount).
install() and remove() are idempotent, and ClickGuardian also works as
a context manager.

Two implementations of the InputGuard protocol:

  ClickGuardian:     policy runs in Python; the host delivers events
                     through an InputHost (add/remove capture listener).
  PageClickGuardian: policy injected into a browser page as a
                     document-level capture listener via page.evaluate.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from tourguide.core.metrics import CLICK_GUARD_SUPPRESSED

logger = logging.getLogger(__name__)

OVERLAY_SELECTOR = '[class*="__overlay"]'
SPOTLIGHT_SELECTOR = '[class*="__spotlight"]'
CLOSE_SELECTOR = 'button[aria-label*="close" i], button[title*="close" i]'


@dataclass(frozen=True)
class GuardSelectors:
    overlay: str = OVERLAY_SELECTOR
    spotlight: str = SPOTLIGHT_SELECTOR
    close: str = CLOSE_SELECTOR


class PointerEvent(Protocol):
    def closest(self, selector: str) -> bool:
        """True if the event target or one of its ancestors matches."""
        ...

    def stop_propagation(self) -> None: ...

    def prevent_default(self) -> None: ...


PointerHandler = Callable[[PointerEvent], Any]


class InputHost(Protocol):
    def add_capture_listener(self, handler: PointerHandler) -> None: ...

    def remove_capture_listener(self, handler: PointerHandler) -> None: ...


@runtime_checkable
class InputGuard(Protocol):
    @property
    def installed(self) -> bool: ...

    def install(self) -> None: ...

    def remove(self) -> None: ...


def should_suppress(event: PointerEvent, selectors: GuardSelectors) -> bool:
    """Overlay and spotlight clicks are swallowed unless they hit close."""
    if not (event.closest(selectors.overlay) or event.closest(selectors.spotlight)):
        return False
    return not event.closest(selectors.close)


class ClickGuardian:
    def __init__(
        self, host: InputHost, selectors: GuardSelectors | None = None
    ) -> None:
        self._host = host
        self._selectors = selectors or GuardSelectors()
        self._installed = False

    @property
    def installed(self) -> bool:
        return self._installed

    def install(self) -> None:
        if self._installed:
            return
        self._host.add_capture_listener(self.handle_event)
        self._installed = True
        logger.debug("Click guard installed")

    def remove(self) -> None:
        if not self._installed:
            return
        self._host.remove_capture_listener(self.handle_event)
        self._installed = False
        logger.debug("Click guard removed")

    def handle_event(self, event: PointerEvent) -> bool:
        """Apply the policy to one event.  Returns True if it was suppressed."""
        if not should_suppress(event, self._selectors):
            return False
        event.stop_propagation()
        event.prevent_default()
        CLICK_GUARD_SUPPRESSED.inc()
        return True

    def __enter__(self) -> ClickGuardian:
        self.install()
        return self

    def __exit__(self, *exc: object) -> None:
        self.remove()


_GUARD_KEY = "__tourguideClickGuard"

_INSTALL_JS = """
([key, overlay, spotlight, close, events]) => {
  if (window[key]) return;
  const handler = (e) => {
    const target = e.target;
    if (!(target instanceof Element)) return;
    const inTour = target.closest(overlay) || target.closest(spotlight);
    if (!inTour || target.closest(close)) return;
    e.stopPropagation();
    e.preventDefault();
  };
  for (const type of events) document.addEventListener(type, handler, true);
  window[key] = { handler, events };
}
"""

_REMOVE_JS = """
([key]) => {
  const guard = window[key];
  if (!guard) return;
  for (const type of guard.events) {
    document.removeEventListener(type, guard.handler, true);
  }
  delete window[key];
}
"""


class PageClickGuardian:
    """InputGuard for a browser page exposing ``evaluate`` (Playwright-style).

    With an async page, install() and remove() schedule their
    ``evaluate`` calls on the running loop, one after the other, and
    return at once; flush() waits for them.  Installing on an async page
    needs a running loop.
    """

    _EVENTS = ("pointerdown", "mousedown", "click")

    def __init__(self, page: Any, selectors: GuardSelectors | None = None) -> None:
        self._page = page
        self._selectors = selectors or GuardSelectors()
        self._installed = False
        self._inflight: asyncio.Task[None] | None = None

    @property
    def installed(self) -> bool:
        return self._installed

    def install(self) -> None:
        if self._installed:
            return
        s = self._selectors
        result = self._page.evaluate(
            _INSTALL_JS,
            [_GUARD_KEY, s.overlay, s.spotlight, s.close, list(self._EVENTS)],
        )
        self._track(result, "install")
        self._installed = True

    def remove(self) -> None:
        if not self._installed:
            return
        self._installed = False
        checker = getattr(self._page, "is_closed", None)
        if callable(checker) and checker():
            # Listener went away with the document.
            return
        try:
            self._track(self._page.evaluate(_REMOVE_JS, [_GUARD_KEY]), "removal")
        except Exception:
            logger.warning("Could not remove click guard from page", exc_info=True)

    async def flush(self) -> None:
        """Wait for page calls scheduled against an async page."""
        if self._inflight is not None:
            await self._inflight

    def _track(self, result: Any, action: str) -> None:
        if not inspect.isawaitable(result):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(result):
                result.close()
            raise
        self._inflight = loop.create_task(
            self._after(self._inflight, result, action)
        )

    async def _after(
        self, previous: asyncio.Task[None] | None, result: Awaitable[Any], action: str
    ) -> None:
        if previous is not None and not previous.done():
            await previous
        try:
            await result
        except Exception:
            logger.warning("Click guard %s failed on page", action, exc_info=True)
