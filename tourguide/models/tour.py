from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from tourguide.models.step import Step

DEFAULT_CONSENT_TITLE = "Welcome!"
DEFAULT_CONSENT_CONTENT = "Let's take a quick tour to help you get started with this page!"


class TourPhase(str, Enum):
    IDLE = "idle"
    AWAITING_CONSENT = "awaiting_consent"
    RUNNING = "running"
    TERMINAL = "terminal"


class TourOutcome(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"


class TourEventKind(str, Enum):
    """Lifecycle events the tour renderer reports back to the engine."""

    ADVANCE = "advance"
    REWIND = "rewind"
    CLOSE = "close"
    SKIP = "skip"
    FINISH = "finish"
    TARGET_NOT_FOUND = "target_not_found"


@dataclass(frozen=True, slots=True)
class TourEvent:
    kind: TourEventKind
    index: int  # step index the renderer was showing when it fired


@dataclass(frozen=True, slots=True)
class ConsentPrompt:
    """Upfront start-or-skip prompt shown before the first step."""

    title: str = DEFAULT_CONSENT_TITLE
    content: str = DEFAULT_CONSENT_CONTENT


@dataclass(slots=True)
class TourEngineState:
    """Per-mount engine state.  Never persisted."""

    phase: TourPhase = TourPhase.IDLE
    step_index: int = 0
    filtered_steps: tuple[Step, ...] = field(default_factory=tuple)
    has_started: bool = False
    outcome: TourOutcome | None = None


@dataclass(frozen=True, slots=True)
class RendererView:
    """What the tour renderer needs to draw the current frame."""

    filtered_steps: tuple[Step, ...]
    current_index: int
    is_running: bool

    @property
    def current_step(self) -> Step | None:
        if not self.is_running or not self.filtered_steps:
            return None
        return self.filtered_steps[self.current_index]
