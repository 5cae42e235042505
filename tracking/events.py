"""
Typed events produced by the tracking core.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from contracts import constants as c


class EventType(str, Enum):
    APPEARED = c.EVENT_APPEARED
    UPDATED = c.EVENT_UPDATED
    DISAPPEARED = c.EVENT_DISAPPEARED
    EMERGENCY = c.EVENT_EMERGENCY
    FLIGHT_STARTED = c.EVENT_FLIGHT_STARTED
    FLIGHT_UPDATED = c.EVENT_FLIGHT_UPDATED
    FLIGHT_ENDED = c.EVENT_FLIGHT_ENDED
    ZONE_ENTERED = c.EVENT_ZONE_ENTERED
    ZONE_EXITED = c.EVENT_ZONE_EXITED
    APPROACH_DETECTED = c.EVENT_APPROACH_DETECTED
    DEPARTURE_DETECTED = c.EVENT_DEPARTURE_DETECTED
    LANDING_DETECTED = c.EVENT_LANDING_DETECTED
    GROUND_MOVEMENT = c.EVENT_GROUND_MOVEMENT
    TAXI_MOVEMENT = c.EVENT_TAXI_MOVEMENT
    PARKING_STATUS = c.EVENT_PARKING_STATUS
    HELICOPTER_ACTION = c.EVENT_HELICOPTER_ACTION
    ALERT_GENERATED = c.EVENT_ALERT_GENERATED


@dataclass
class TrackingEvent:
    """
    One domain event.

    `sequence` and `source` are assigned by the aggregator when the event is
    forwarded; components leave them unset.
    """
    type: EventType
    aircraft_id: str
    timestamp: datetime
    payload: dict = field(default_factory=dict)
    sequence: Optional[int] = None
    source: Optional[str] = None

    def to_envelope(self) -> dict:
        return {
            "schema_version": c.SCHEMA_VERSION,
            "type": self.type.value,
            "sequence": self.sequence,
            "source": self.source or c.SOURCE_TRACKING_CORE,
            "aircraft_id": self.aircraft_id,
            "timestamp": self.timestamp.isoformat(),
            "payload": self.payload,
        }
