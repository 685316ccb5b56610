"""Per-page guide configuration.

Pages ship their tour as static data:

    {
      "pageId": "dashboard",
      "showModal": true,
      "modalTitle": "Welcome to Your Dashboard!",
      "modalContent": "...",
      "steps": [
        {"target": "[data-guide='stat-cards']", "title": "...",
         "content": "...", "placement": "bottom"}
      ]
    }

The pydantic models below validate that shape and turn it into the
frozen ``Step`` / ``ConsentPrompt`` values the engine consumes.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from tourguide.models.step import Placement, Step
from tourguide.models.tour import (
    DEFAULT_CONSENT_CONTENT,
    DEFAULT_CONSENT_TITLE,
    ConsentPrompt,
)


class StepConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    target: str = Field(min_length=1)
    title: str = ""
    content: str
    placement: Placement = "bottom"

    def to_step(self) -> Step:
        return Step(
            target=self.target,
            title=self.title,
            content=self.content,
            placement=self.placement,
        )


class GuideConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    page_id: str = Field(alias="pageId", min_length=1)
    steps: list[StepConfig] = Field(default_factory=list)
    show_modal: bool = Field(default=False, alias="showModal")
    modal_title: str = Field(default=DEFAULT_CONSENT_TITLE, alias="modalTitle")
    modal_content: str = Field(default=DEFAULT_CONSENT_CONTENT, alias="modalContent")

    def to_steps(self) -> tuple[Step, ...]:
        return tuple(s.to_step() for s in self.steps)

    def consent(self) -> ConsentPrompt | None:
        if not self.show_modal:
            return None
        return ConsentPrompt(title=self.modal_title, content=self.modal_content)


def load_guide_config(path: str | Path) -> GuideConfig:
    """Read and validate a guide config from a JSON file.

    Raises pydantic.ValidationError on a malformed document.
    """
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    return GuideConfig.model_validate(raw)
