"""Tour engine metrics using the Prometheus client library.

Every metric the package records is defined here, in one inventory.
The store, engine and guardian import the ones they own and increment
or observe them at the point of action.

  COUNTERS:  decisions taken, tours finished or skipped, persistence
             calls by result, pointer events swallowed by the guard.
  GAUGE:     tours currently in the RUNNING phase in this process.
  HISTOGRAM: round-trip time of the persistence API.

A host that already exposes ``/metrics`` picks these up from the default
registry; nothing here starts an HTTP server.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# Tour lifecycle (populated by TourEngine)
# ---------------------------------------------------------------------------

TOUR_DECISIONS = Counter(
    "tour_decisions_total",
    "Start decisions taken by tour engines",
    ["result"],  # "run", "consent", "suppressed"
)

TOUR_OUTCOMES = Counter(
    "tour_outcomes_total",
    "Terminal transitions reached by tour engines",
    ["outcome"],  # "completed" or "skipped"
)

TOURS_RUNNING = Gauge(
    "tours_running",
    "Number of tours currently in the RUNNING phase",
)

# ---------------------------------------------------------------------------
# Persistence API (populated by ProgressStore)
# ---------------------------------------------------------------------------

PROGRESS_API_CALLS = Counter(
    "guide_progress_api_calls_total",
    "Calls to the guide progress persistence API by result",
    ["operation", "result"],  # load|update|reset, "ok" or "error"
)

PROGRESS_API_DURATION = Histogram(
    "guide_progress_api_duration_seconds",
    "Guide progress persistence API round-trip time in seconds",
    ["operation"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# ---------------------------------------------------------------------------
# Input guard (populated by ClickGuardian)
# ---------------------------------------------------------------------------

CLICK_GUARD_SUPPRESSED = Counter(
    "click_guard_suppressed_total",
    "Pointer events suppressed while a tour was running",
)
