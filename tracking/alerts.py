"""
Smart alerts.

Threshold rules evaluated over the track table each tick. An alert fires when
its condition becomes true for an aircraft and re-arms once it clears.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Set

from contracts.constants import PRIORITY_HIGH, PRIORITY_MEDIUM
from tracking.events import EventType, TrackingEvent
from tracking.models import AircraftTrack

logger = logging.getLogger(__name__)


class AlertType(str, Enum):
    LOW_ALTITUDE = "low_altitude"
    HIGH_SPEED = "high_speed"
    RAPID_DESCENT = "rapid_descent"


class SmartAlertDetector:
    """Stateful alert rules across all tracked aircraft."""

    # Thresholds
    LOW_ALTITUDE_FT = 1000.0
    HIGH_SPEED_KT = 500.0
    RAPID_DESCENT_FPM = -2000.0

    PRIORITIES = {
        AlertType.LOW_ALTITUDE: PRIORITY_MEDIUM,
        AlertType.HIGH_SPEED: PRIORITY_MEDIUM,
        AlertType.RAPID_DESCENT: PRIORITY_HIGH,
    }

    def __init__(self):
        self.raised: Dict[str, Set[AlertType]] = {}

    def conditions(self, track: AircraftTrack) -> Set[AlertType]:
        found = set()
        # A zero altitude is a ground report, not a low-altitude flight
        if track.altitude and track.altitude < self.LOW_ALTITUDE_FT:
            found.add(AlertType.LOW_ALTITUDE)
        if track.ground_speed is not None and track.ground_speed > self.HIGH_SPEED_KT:
            found.add(AlertType.HIGH_SPEED)
        if track.vertical_rate is not None and track.vertical_rate < self.RAPID_DESCENT_FPM:
            found.add(AlertType.RAPID_DESCENT)
        return found

    def evaluate(self, tracks: Iterable[AircraftTrack], now: datetime) -> List[TrackingEvent]:
        events = []
        seen = set()
        for track in tracks:
            seen.add(track.id)
            current = self.conditions(track)
            previous = self.raised.get(track.id, set())
            for alert in sorted(current - previous, key=lambda a: a.value):
                logger.info(f"Alert {alert.value} for {track.id}")
                events.append(TrackingEvent(
                    type=EventType.ALERT_GENERATED,
                    aircraft_id=track.id,
                    timestamp=now,
                    payload={
                        "alert": alert.value,
                        "priority": self.PRIORITIES[alert],
                        "aircraft": track.to_dict(),
                    },
                ))
            if current:
                self.raised[track.id] = current
            else:
                self.raised.pop(track.id, None)

        for aircraft_id in set(self.raised) - seen:
            del self.raised[aircraft_id]
        return events
