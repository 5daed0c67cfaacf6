"""
Universal data structures shared by the crossing controller modules.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Hashable, Optional


class CrossingState(Enum):
    """Enumeration of level crossing phases."""
    FREE_TO_CROSS = 0
    LOCKED = 1
    PRE_LOCKED = 2


class CrossingEventType(Enum):
    """Enumeration of events published by the crossing controller."""
    CAR_PERMISSION_GRANTED = "CarCrossingPermissionGranted"
    CAR_PERMISSION_RELEASED = "CarCrossingPermissionReleased"
    TRAIN_CROSSING_REQUEST = "TrainCrossingRequest"
    TRAIN_PERMISSION_RELEASED = "TrainCrossingPermissionReleased"
    STOP_TRAIN = "StopTrain"


@dataclass(frozen=True)
class CrossingEvent:
    """Event packet sent to crossing listeners.

    Attributes:
        event_type: Kind of event.
        identity: Identity of the car or train the event concerns.
        timestamp: Clock reading (seconds) when the event was emitted.
        granted: Outcome of a train crossing request, None for other events.
    """
    event_type: CrossingEventType
    identity: Hashable
    timestamp: int
    granted: Optional[bool] = None

    def __str__(self) -> str:
        if self.granted is None:
            return f"{self.event_type.value}({self.identity})"
        return f"{self.event_type.value}({self.identity}, {self.granted})"
