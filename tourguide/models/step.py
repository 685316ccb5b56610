from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

Placement = Literal[
    "top",
    "top-start",
    "top-end",
    "bottom",
    "bottom-start",
    "bottom-end",
    "left",
    "left-start",
    "left-end",
    "right",
    "right-start",
    "right-end",
    "auto",
    "center",
]


@dataclass(frozen=True, slots=True)
class Step:
    """One anchored explanation unit of a tour."""

    target: str  # CSS selector the tooltip anchors to
    title: str
    content: str
    placement: Placement = "bottom"
