"""
DiskChatter Type Definitions — structured types for data flowing through the system.

Use these instead of raw dicts for filesystem notifications and the
states reported by the feedback components.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


# ─── Sensor Data ─────────────────────────────────────────────

@dataclass(frozen=True)
class ActivityEvent:
    """One filesystem notification. Only the timestamp drives behaviour."""
    timestamp: float
    kind: str = "modified"  # "created", "modified", "deleted", "renamed"
    path: Optional[str] = None


# ─── Classification / States ─────────────────────────────────

class ActivityClass(Enum):
    SHORT = "short"
    SUSTAINED = "sustained"


class IndicatorState(Enum):
    IDLE = "idle"
    PULSING = "pulsing"


class SlotState(Enum):
    EMPTY = "empty"
    PLAYING = "playing"


class CoordinatorState(Enum):
    IDLE = "idle"
    CYCLING = "cycling"
