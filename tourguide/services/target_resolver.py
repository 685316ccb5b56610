"""Which step targets are currently rendered.

A resolver answers ``exists(selector)`` either directly with a bool or
with an awaitable of one, the way Playwright's sync and async Page
APIs differ.  filter_steps() follows suit: a tuple for a synchronous
resolver, an awaitable of the tuple when any answer is asynchronous.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Iterable, Sequence
from typing import Any, Protocol, runtime_checkable

from tourguide.models.step import Step

logger = logging.getLogger(__name__)


@runtime_checkable
class TargetResolver(Protocol):
    def exists(self, selector: str) -> bool | Awaitable[bool]:
        """True if an element matching selector is currently rendered."""
        ...


class StaticTargetResolver:
    """Resolver over a set of selectors the host knows are on screen.

    Hosts without a live document (tests, headless previews) keep the
    set current with show()/hide().
    """

    def __init__(self, present: Iterable[str] = ()) -> None:
        self._present: set[str] = set(present)

    def exists(self, selector: str) -> bool:
        return selector in self._present

    def show(self, *selectors: str) -> None:
        self._present.update(selectors)

    def hide(self, *selectors: str) -> None:
        self._present.difference_update(selectors)


class PageTargetResolver:
    """Resolver backed by a browser page with ``query_selector``.

    Works with Playwright's sync or async Page, or anything shaped like
    either.  Against an async page exists() returns a coroutine.  A
    selector the page rejects, or a page that has gone away, counts as
    "not rendered".
    """

    def __init__(self, page: Any) -> None:
        self._page = page

    def exists(self, selector: str) -> bool | Awaitable[bool]:
        checker = getattr(self._page, "is_closed", None)
        if callable(checker) and checker():
            return False
        try:
            found = self._page.query_selector(selector)
        except Exception as e:
            logger.debug("Selector %r did not resolve: %s", selector, e)
            return False
        if inspect.isawaitable(found):
            return self._await_found(selector, found)
        return found is not None

    async def _await_found(self, selector: str, found: Awaitable[Any]) -> bool:
        try:
            return (await found) is not None
        except Exception as e:
            logger.debug("Selector %r did not resolve: %s", selector, e)
            return False


def filter_steps(
    steps: Sequence[Step], resolver: TargetResolver
) -> tuple[Step, ...] | Awaitable[tuple[Step, ...]]:
    """Keep only the steps whose target currently resolves, in order."""
    steps = tuple(steps)
    answers = [resolver.exists(step.target) for step in steps]
    if any(inspect.isawaitable(answer) for answer in answers):
        return _gather_visible(steps, answers)
    return _visible(steps, answers)


async def _gather_visible(
    steps: tuple[Step, ...], answers: list[bool | Awaitable[bool]]
) -> tuple[Step, ...]:
    found = [await a if inspect.isawaitable(a) else a for a in answers]
    return _visible(steps, found)


def _visible(steps: tuple[Step, ...], found: Sequence[Any]) -> tuple[Step, ...]:
    visible = tuple(step for step, ok in zip(steps, found) if ok)
    if len(visible) != len(steps):
        logger.debug(
            "Dropped %d of %d step(s) with no rendered target",
            len(steps) - len(visible),
            len(steps),
        )
    return visible
