from __future__ import annotations

import datetime
from collections.abc import Mapping
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True, slots=True)
class ProgressEntry:
    """Completion/skip record for one page's tour.

    ``completed`` and ``skipped`` are independent flags; both may be true.
    Each ``*_at`` stamp is set the first time its flag turns true and only
    goes away with an explicit reset.
    """

    completed: bool = False
    completed_at: datetime.datetime | None = None
    skipped: bool = False
    skipped_at: datetime.datetime | None = None

    def merged(
        self,
        *,
        completed: bool | None,
        skipped: bool | None,
        now: datetime.datetime,
    ) -> ProgressEntry:
        """Return a copy with the given flags applied (None keeps the old value)."""
        new_completed = self.completed if completed is None else completed
        new_skipped = self.skipped if skipped is None else skipped
        return ProgressEntry(
            completed=new_completed,
            completed_at=(
                now if completed and not self.completed else self.completed_at
            ),
            skipped=new_skipped,
            skipped_at=now if skipped and not self.skipped else self.skipped_at,
        )


# pageId -> entry; handed out read-only
ProgressMap = Mapping[str, ProgressEntry]


class ProgressEntryWire(BaseModel):
    """JSON shape of one entry on the persistence API."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    completed: bool = False
    completed_at: datetime.datetime | None = Field(default=None, alias="completedAt")
    skipped: bool = False
    skipped_at: datetime.datetime | None = Field(default=None, alias="skippedAt")

    def to_entry(self) -> ProgressEntry:
        return ProgressEntry(
            completed=self.completed,
            completed_at=self.completed_at,
            skipped=self.skipped,
            skipped_at=self.skipped_at,
        )

    @classmethod
    def from_entry(cls, entry: ProgressEntry) -> ProgressEntryWire:
        return cls(
            completed=entry.completed,
            completed_at=entry.completed_at,
            skipped=entry.skipped,
            skipped_at=entry.skipped_at,
        )


class ProgressPatch(BaseModel):
    """Body of ``PATCH /guide-progress/{pageId}``; unset flags are omitted."""

    completed: bool | None = None
    skipped: bool | None = None
