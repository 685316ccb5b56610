"""Demo: walk two tours against the in-memory progress backend.

Run with:
    python scripts/demo_tour.py
"""

from __future__ import annotations

import asyncio

from tourguide.core.config import SETTINGS
from tourguide.core.logging import setup_logging
from tourguide.models.guide_config import GuideConfig
from tourguide.models.tour import TourEvent, TourEventKind
from tourguide.repos.progress_repo import InMemoryProgressRepo
from tourguide.services.progress_store import ProgressStore
from tourguide.services.target_resolver import StaticTargetResolver
from tourguide.services.tour_engine import TourEngine

DASHBOARD = GuideConfig.model_validate(
    {
        "pageId": "dashboard",
        "steps": [
            {
                "target": "[data-guide='stat-cards']",
                "title": "Dashboard Overview",
                "content": "Your key metrics at a glance.",
            },
            {
                "target": "[data-guide='qa-button']",
                "title": "Q&A Feature",
                "content": "Answer common questions to improve your matches.",
            },
            {
                "target": "[data-guide='job-tabs']",
                "title": "Job Tabs",
                "content": "Switch between Matches, Applied, Viewed and Skipped.",
            },
        ],
    }
)

SETTINGS_PAGE = GuideConfig.model_validate(
    {
        "pageId": "settings",
        "showModal": True,
        "modalTitle": "Your Settings",
        "steps": [
            {
                "target": "[data-guide='notifications']",
                "title": "Notifications",
                "content": "Choose what we email you about.",
            }
        ],
    }
)


def _engine(store: ProgressStore, config: GuideConfig, resolver) -> TourEngine:
    return TourEngine(
        page_id=config.page_id,
        steps=config.to_steps(),
        store=store,
        resolver=resolver,
        consent=config.consent(),
        on_complete=lambda: print(f"   on_complete({config.page_id})"),
        on_skip=lambda: print(f"   on_skip({config.page_id})"),
    )


async def main() -> None:
    repo = InMemoryProgressRepo()
    store = ProgressStore(repo)
    resolver = StaticTargetResolver(
        s.target for s in DASHBOARD.to_steps() + SETTINGS_PAGE.to_steps()
    )

    # ── Session start: one load ─────────────────────────────────────
    await store.session_started()
    print(f"1. session started          → ready={store.is_ready}")

    # ── Dashboard: run to completion ────────────────────────────────
    dashboard = _engine(store, DASHBOARD, resolver)
    dashboard.mount()
    print(f"2. dashboard mounted        → {dashboard.phase.value}")
    while dashboard.view().is_running:
        view = dashboard.view()
        print(f"   showing step {view.current_index}: {view.current_step.title}")
        await dashboard.dispatch(TourEvent(TourEventKind.ADVANCE, view.current_index))
    print(f"3. dashboard finished       → {dashboard.phase.value}")

    # ── Settings: decline at the consent prompt ─────────────────────
    settings = _engine(store, SETTINGS_PAGE, resolver)
    settings.mount()
    print(f"4. settings mounted         → {settings.phase.value} ({settings.consent.title})")
    await settings.decline()
    print(f"5. settings declined        → {settings.phase.value}")

    # ── Remount: both tours are remembered ──────────────────────────
    again = _engine(store, DASHBOARD, resolver)
    again.mount()
    print(f"6. dashboard remounted      → {again.phase.value}")
    print(f"7. stored progress          → {dict(store.snapshot())}")


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(main())
