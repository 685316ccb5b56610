from __future__ import annotations

import sys
from pathlib import Path

# Ensure repo root is on sys.path so `import tourguide` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import asyncio  # noqa: E402
import datetime  # noqa: E402
from collections.abc import Callable  # noqa: E402

import pytest  # noqa: E402

from tourguide.models.progress import ProgressEntry  # noqa: E402
from tourguide.models.step import Step  # noqa: E402
from tourguide.repos.progress_repo import InMemoryProgressRepo, ProgressApiError  # noqa: E402
from tourguide.services.target_resolver import StaticTargetResolver  # noqa: E402

T0 = datetime.datetime(2026, 1, 5, 9, 30, tzinfo=datetime.UTC)

STEP_A = Step(target="#stat-cards", title="Overview", content="Your metrics.")
STEP_B = Step(target="#qa-button", title="Q&A", content="Answer questions.")
STEP_C = Step(target="#job-tabs", title="Tabs", content="Switch views.", placement="top")


class FakeClock:
    """Deterministic clock; each call returns one minute later than the last."""

    def __init__(self, start: datetime.datetime = T0) -> None:
        self._next = start

    def __call__(self) -> datetime.datetime:
        now = self._next
        self._next = now + datetime.timedelta(minutes=1)
        return now


class ScriptedProgressRepo(InMemoryProgressRepo):
    """In-memory repo that records calls and can fail or stall on demand."""

    def __init__(
        self,
        entries: dict[str, ProgressEntry] | None = None,
        *,
        clock: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        super().__init__(entries, clock=clock or FakeClock())
        self.calls: list[tuple] = []
        self.failing: set[str] = set()
        self.gates: dict[str, asyncio.Event] = {}

    async def _gate(self, operation: str) -> None:
        gate = self.gates.get(operation)
        if gate is not None:
            await gate.wait()
        if operation in self.failing:
            raise ProgressApiError(operation, "backend unavailable", status_code=503)

    async def fetch_all(self) -> dict[str, ProgressEntry]:
        self.calls.append(("load",))
        await self._gate("load")
        return await super().fetch_all()

    async def patch(
        self, page_id: str, *, completed: bool | None, skipped: bool | None
    ) -> None:
        self.calls.append(("update", page_id, completed, skipped))
        await self._gate("update")
        await super().patch(page_id, completed=completed, skipped=skipped)

    async def delete(self, page_id: str | None = None) -> None:
        self.calls.append(("reset", page_id))
        await self._gate("reset")
        await super().delete(page_id)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repo() -> ScriptedProgressRepo:
    return ScriptedProgressRepo()


@pytest.fixture
def steps() -> list[Step]:
    return [STEP_A, STEP_B, STEP_C]


@pytest.fixture
def resolver() -> StaticTargetResolver:
    return StaticTargetResolver([STEP_A.target, STEP_B.target, STEP_C.target])


class AsyncQueryPage:
    """Page double shaped like Playwright's async Page: query_selector is a coroutine."""

    def __init__(self, present: set[str]) -> None:
        self.present = present
        self.closed = False

    async def query_selector(self, selector: str):
        await asyncio.sleep(0)
        if selector.startswith("!!"):
            raise ValueError(f"invalid selector {selector!r}")
        return object() if selector in self.present else None

    def is_closed(self) -> bool:
        return self.closed
