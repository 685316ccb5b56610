"""ProgressStore: guarded session load, write-through updates, resets.

Metrics assertions read deltas from the global Prometheus registry,
since counters cannot be reset between tests.
"""

from __future__ import annotations

import asyncio
import logging

import pytest
from prometheus_client import REGISTRY

from tests.conftest import T0, FakeClock, ScriptedProgressRepo
from tourguide.models.progress import ProgressEntry
from tourguide.services.progress_store import ProgressStore


def _get_sample(name: str, labels: dict | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


# ---- lookups ----


def test_unknown_page_defaults_to_false(repo: ScriptedProgressRepo) -> None:
    store = ProgressStore(repo)
    assert store.is_completed("nowhere") is False
    assert store.is_skipped("nowhere") is False
    assert store.entry("nowhere") is None


def test_not_ready_before_session(repo: ScriptedProgressRepo) -> None:
    store = ProgressStore(repo)
    assert store.is_ready is False
    assert store.has_session is False


# ---- load ----


def test_session_start_loads_progress() -> None:
    repo = ScriptedProgressRepo({"dashboard": ProgressEntry(completed=True, completed_at=T0)})
    store = ProgressStore(repo)

    asyncio.run(store.session_started())

    assert store.is_ready is True
    assert store.is_loading is False
    assert store.is_completed("dashboard") is True
    assert store.is_skipped("dashboard") is False


def test_load_runs_at_most_once_per_session(repo: ScriptedProgressRepo) -> None:
    store = ProgressStore(repo)

    async def scenario() -> None:
        await store.session_started()
        await store.load()
        await store.session_started()

    asyncio.run(scenario())
    assert repo.calls == [("load",)]


def test_concurrent_loads_share_one_request(repo: ScriptedProgressRepo) -> None:
    store = ProgressStore(repo)

    async def scenario() -> None:
        gate = repo.gates["load"] = asyncio.Event()
        first = asyncio.create_task(store.load())
        await asyncio.sleep(0)
        assert store.is_loading is True
        await store.load()  # suppressed while the first is in flight
        gate.set()
        await first

    asyncio.run(scenario())
    assert repo.calls == [("load",)]
    assert store.is_ready is True


def test_load_failure_is_logged_not_raised(
    repo: ScriptedProgressRepo, caplog: pytest.LogCaptureFixture
) -> None:
    repo.failing.add("load")
    store = ProgressStore(repo)
    before = _get_sample(
        "guide_progress_api_calls_total", {"operation": "load", "result": "error"}
    )

    with caplog.at_level(logging.WARNING):
        asyncio.run(store.session_started())

    assert store.is_ready is True
    assert dict(store.snapshot()) == {}
    assert "Failed to load guide progress" in caplog.text
    after = _get_sample(
        "guide_progress_api_calls_total", {"operation": "load", "result": "error"}
    )
    assert after - before == 1


def test_session_end_clears_map_and_allows_next_load() -> None:
    repo = ScriptedProgressRepo({"wallet": ProgressEntry(skipped=True, skipped_at=T0)})
    store = ProgressStore(repo)

    async def scenario() -> None:
        await store.session_started()
        assert store.is_skipped("wallet") is True

        store.session_ended()
        assert store.is_ready is False
        assert store.is_skipped("wallet") is False
        assert dict(store.snapshot()) == {}

        await store.session_started()

    asyncio.run(scenario())
    assert repo.calls == [("load",), ("load",)]
    assert store.is_skipped("wallet") is True


def test_late_load_from_ended_session_is_discarded() -> None:
    repo = ScriptedProgressRepo({"dashboard": ProgressEntry(completed=True)})
    store = ProgressStore(repo)

    async def scenario() -> None:
        repo.gates["load"] = asyncio.Event()
        pending = asyncio.create_task(store.session_started())
        await asyncio.sleep(0)
        store.session_ended()
        repo.gates["load"].set()
        await pending

    asyncio.run(scenario())
    assert store.is_ready is False
    assert store.is_completed("dashboard") is False


# ---- update ----


def test_update_sets_timestamp_on_first_transition_only(
    repo: ScriptedProgressRepo, clock: FakeClock
) -> None:
    store = ProgressStore(repo, clock=clock)

    async def scenario():
        await store.session_started()
        assert await store.update("dashboard", completed=True) is True
        first = store.entry("dashboard")
        assert await store.update("dashboard", completed=True) is True
        return first

    first = asyncio.run(scenario())
    assert first.completed is True
    assert first.completed_at == T0
    assert first.skipped is False
    assert first.skipped_at is None
    assert store.entry("dashboard").completed_at == T0


def test_update_keeps_unspecified_flags(repo: ScriptedProgressRepo) -> None:
    store = ProgressStore(repo)

    async def scenario() -> None:
        await store.session_started()
        await store.update("profile", skipped=True)
        await store.update("profile", completed=True)

    asyncio.run(scenario())
    entry = store.entry("profile")
    assert entry.skipped is True
    assert entry.completed is True
    assert entry.skipped_at is not None
    assert entry.completed_at is not None


def test_update_failure_leaves_local_state(
    repo: ScriptedProgressRepo, caplog: pytest.LogCaptureFixture
) -> None:
    store = ProgressStore(repo)

    async def scenario() -> bool:
        await store.session_started()
        repo.failing.add("update")
        return await store.update("dashboard", completed=True)

    with caplog.at_level(logging.WARNING):
        ok = asyncio.run(scenario())

    assert ok is False
    assert store.entry("dashboard") is None
    assert "Failed to update guide progress for page=dashboard" in caplog.text
    # No automatic retry
    assert repo.calls.count(("update", "dashboard", True, None)) == 1


def test_concurrent_updates_for_same_page_are_serialized(
    repo: ScriptedProgressRepo,
) -> None:
    store = ProgressStore(repo)
    in_flight = 0
    peak = 0
    original_patch = repo.patch

    async def tracking_patch(page_id, *, completed, skipped):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        await original_patch(page_id, completed=completed, skipped=skipped)
        in_flight -= 1

    repo.patch = tracking_patch  # type: ignore[method-assign]

    async def scenario() -> None:
        await store.session_started()
        await asyncio.gather(
            store.update("dashboard", completed=True),
            store.update("dashboard", skipped=True),
        )

    asyncio.run(scenario())
    assert peak == 1
    entry = store.entry("dashboard")
    assert entry.completed is True
    assert entry.skipped is True


def test_page_lock_is_reused_per_page(repo: ScriptedProgressRepo) -> None:
    store = ProgressStore(repo)
    lock = store._lock_for("dashboard")
    assert store._lock_for("dashboard") is lock
    assert store._lock_for("wallet") is not lock


def test_update_acknowledged_after_logout_is_not_merged(
    repo: ScriptedProgressRepo,
) -> None:
    store = ProgressStore(repo)

    async def scenario() -> None:
        await store.session_started()
        repo.gates["update"] = asyncio.Event()
        pending = asyncio.create_task(store.update("dashboard", completed=True))
        await asyncio.sleep(0)
        store.session_ended()
        repo.gates["update"].set()
        assert await pending is True

    asyncio.run(scenario())
    assert store.entry("dashboard") is None


# ---- reset ----


def test_reset_single_page() -> None:
    repo = ScriptedProgressRepo(
        {"a": ProgressEntry(completed=True), "b": ProgressEntry(skipped=True)}
    )
    store = ProgressStore(repo)

    async def scenario() -> bool:
        await store.session_started()
        return await store.reset("a")

    assert asyncio.run(scenario()) is True
    assert store.entry("a") is None
    assert store.is_skipped("b") is True


def test_reset_all_pages() -> None:
    repo = ScriptedProgressRepo(
        {"a": ProgressEntry(completed=True), "b": ProgressEntry(skipped=True)}
    )
    store = ProgressStore(repo)

    async def scenario() -> None:
        await store.session_started()
        await store.reset()

    asyncio.run(scenario())
    assert dict(store.snapshot()) == {}
    assert repo.calls[-1] == ("reset", None)


def test_reset_failure_keeps_entries() -> None:
    repo = ScriptedProgressRepo({"a": ProgressEntry(completed=True)})
    store = ProgressStore(repo)

    async def scenario() -> bool:
        await store.session_started()
        repo.failing.add("reset")
        return await store.reset("a")

    assert asyncio.run(scenario()) is False
    assert store.is_completed("a") is True


# ---- snapshots and listeners ----


def test_snapshot_is_read_only_and_stable(repo: ScriptedProgressRepo) -> None:
    store = ProgressStore(repo)

    async def scenario():
        await store.session_started()
        before = store.snapshot()
        await store.update("dashboard", completed=True)
        return before

    before = asyncio.run(scenario())
    assert "dashboard" not in before
    assert "dashboard" in store.snapshot()
    with pytest.raises(TypeError):
        before["x"] = ProgressEntry()  # type: ignore[index]


def test_listeners_notified_on_ready_and_change(repo: ScriptedProgressRepo) -> None:
    store = ProgressStore(repo)
    seen: list[bool] = []
    unsubscribe = store.subscribe(lambda s: seen.append(s.is_ready))

    async def scenario() -> None:
        await store.session_started()
        await store.update("dashboard", completed=True)
        unsubscribe()
        unsubscribe()  # idempotent
        await store.update("wallet", skipped=True)

    asyncio.run(scenario())
    assert seen == [True, True]


def test_raising_listener_does_not_break_load_or_other_listeners(
    repo: ScriptedProgressRepo, caplog: pytest.LogCaptureFixture
) -> None:
    store = ProgressStore(repo)
    seen: list[bool] = []

    def broken(_store: ProgressStore) -> None:
        raise RuntimeError("listener blew up")

    store.subscribe(broken)
    store.subscribe(lambda s: seen.append(s.is_ready))

    with caplog.at_level(logging.ERROR):
        asyncio.run(store.session_started())

    assert store.is_ready is True
    assert seen == [True]
    assert "Guide progress listener" in caplog.text
    assert "listener blew up" in caplog.text
