"""
Flight session state machine.

Each aircraft is GROUNDED (no open session) or AIRBORNE (one open session).
Sessions shorter than the configured minimum duration are treated as sensor
noise and discarded without an event.
"""

import itertools
import logging
from datetime import datetime, timedelta
from typing import Dict, Iterator, List, Optional

from tracking.config import EngineConfig
from tracking.events import EventType, TrackingEvent
from tracking.metrics import OPEN_FLIGHTS, STATE_INCONSISTENCIES
from tracking.models import AircraftTrack, EndReason, FlightSession

logger = logging.getLogger(__name__)


def is_airborne(
    ground_speed: Optional[float],
    altitude: Optional[float],
    vertical_rate: Optional[float],
    max_ground_speed: float,
    min_altitude: float,
    vertical_rate_threshold: float,
) -> bool:
    """Any one condition suffices. A missing value never satisfies its condition."""
    if ground_speed is not None and ground_speed > max_ground_speed:
        return True
    if altitude is not None and altitude > min_altitude:
        return True
    if vertical_rate is not None and abs(vertical_rate) > vertical_rate_threshold:
        return True
    return False


class FlightStateMachine:
    """Tracks open flight sessions for every aircraft in the track table."""

    def __init__(self, config: EngineConfig, session_ids: Optional[Iterator[int]] = None):
        self.config = config
        self.sessions: Dict[str, FlightSession] = {}
        self._session_ids = session_ids or itertools.count(1)
        self.started = 0
        self.ended = 0
        self.discarded = 0

    def is_airborne(self, track: AircraftTrack) -> bool:
        return is_airborne(
            track.ground_speed,
            track.altitude,
            track.vertical_rate,
            self.config.max_ground_speed,
            self.config.min_altitude,
            self.config.vertical_rate_threshold,
        )

    def observe(self, track: AircraftTrack, now: datetime) -> List[TrackingEvent]:
        """Apply one reconciled (appeared or present) track."""
        session = self.sessions.get(track.id)
        airborne = self.is_airborne(track)

        if airborne and session is None:
            return [self._open(track, now)]

        if airborne:
            session.last_position = track.position
            session.last_update = now
            if track.callsign:
                session.callsign = track.callsign
            if self.config.emit_flight_updates:
                return [TrackingEvent(
                    type=EventType.FLIGHT_UPDATED,
                    aircraft_id=track.id,
                    timestamp=now,
                    payload={"flight": session.to_dict()},
                )]
            return []

        if session is not None:
            session.last_position = track.position
            return self._close(track.id, now, EndReason.LANDED)

        return []

    def handle_disappeared(self, aircraft_id: str, now: datetime) -> List[TrackingEvent]:
        if aircraft_id not in self.sessions:
            return []
        return self._close(aircraft_id, now, EndReason.DISAPPEARED)

    def sweep_timeouts(self, now: datetime) -> List[TrackingEvent]:
        """Force-close sessions that have not been updated within the timeout."""
        events = []
        cutoff = now - self.config.flight_end_timeout
        stale = [s.aircraft_id for s in self.sessions.values() if s.last_update < cutoff]
        for aircraft_id in stale:
            logger.info(f"Flight session for {aircraft_id} timed out")
            events.extend(self._close(aircraft_id, now, EndReason.TIMEOUT))
        return events

    def close(self, aircraft_id: str, now: datetime, reason: EndReason) -> List[TrackingEvent]:
        """Close a session on request. Closing a missing session is a logged no-op."""
        if aircraft_id not in self.sessions:
            STATE_INCONSISTENCIES.labels(kind="flight_session").inc()
            logger.warning(f"No open flight session for {aircraft_id}; ignoring close ({reason.value})")
            return []
        return self._close(aircraft_id, now, reason)

    def _open(self, track: AircraftTrack, now: datetime) -> TrackingEvent:
        session = FlightSession(
            session_id=next(self._session_ids),
            aircraft_id=track.id,
            callsign=track.callsign,
            start_time=now,
            start_position=track.position,
            last_position=track.position,
            last_update=now,
        )
        self.sessions[track.id] = session
        self.started += 1
        OPEN_FLIGHTS.set(len(self.sessions))

        logger.info(
            f"Flight started: {track.id} session={session.session_id} "
            f"alt={track.altitude}ft speed={track.ground_speed}kt"
        )
        return TrackingEvent(
            type=EventType.FLIGHT_STARTED,
            aircraft_id=track.id,
            timestamp=now,
            payload={"flight": session.to_dict()},
        )

    def _close(self, aircraft_id: str, now: datetime, reason: EndReason) -> List[TrackingEvent]:
        session = self.sessions.pop(aircraft_id)
        OPEN_FLIGHTS.set(len(self.sessions))

        duration = now - session.start_time
        if duration < self.config.min_flight_duration:
            self.discarded += 1
            logger.debug(
                f"Discarding flight session {session.session_id} for {aircraft_id}: "
                f"{duration.total_seconds():.1f}s is below the minimum duration"
            )
            return []

        session.end_time = now
        session.end_position = session.last_position
        session.duration_ms = int(duration / timedelta(milliseconds=1))
        session.end_reason = reason
        self.ended += 1

        logger.info(
            f"Flight ended: {aircraft_id} session={session.session_id} "
            f"reason={reason.value} duration={duration.total_seconds():.0f}s"
        )
        return [TrackingEvent(
            type=EventType.FLIGHT_ENDED,
            aircraft_id=aircraft_id,
            timestamp=now,
            payload={"flight": session.to_dict()},
        )]
