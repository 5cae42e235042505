"""
Track reconciliation.

Turns one snapshot of raw reports plus the previous track table into a new
table and the presence events between them. reconcile() is a pure function of
its arguments: the previous table is never mutated and no module state is
read, so a recorded sequence of snapshots replays deterministically.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from contracts.constants import EMERGENCY_MEANINGS, PRIORITY_CRITICAL
from contracts.validation import validate_raw_report, RawReport
from tracking.errors import InputError
from tracking.events import EventType, TrackingEvent
from tracking.models import AircraftTrack, Position, Velocity

logger = logging.getLogger(__name__)

TrackTable = Dict[str, AircraftTrack]


@dataclass
class ReconciliationResult:
    tracks: TrackTable
    appeared: List[AircraftTrack] = field(default_factory=list)
    updated: List[AircraftTrack] = field(default_factory=list)
    disappeared: List[AircraftTrack] = field(default_factory=list)
    events: List[TrackingEvent] = field(default_factory=list)
    dropped: List[str] = field(default_factory=list)


def parse_report(raw: Mapping) -> RawReport:
    """Validate one raw report. Raises InputError when it has no usable id."""
    is_valid, report, error = validate_raw_report(raw)
    if not is_valid:
        raise InputError(error)
    return report


def build_track(
    report: RawReport,
    now: datetime,
    emergency_codes: Sequence[str],
    previous: Optional[AircraftTrack] = None,
) -> AircraftTrack:
    """Create the track for a report, carrying first_seen over from the previous track."""
    return AircraftTrack(
        id=report.id,
        callsign=report.callsign,
        position=Position(lat=report.lat, lon=report.lon, altitude=report.altitude),
        velocity=Velocity(
            ground_speed=report.ground_speed,
            track=report.heading,
            vertical_rate=report.vertical_rate,
        ),
        squawk=report.squawk,
        emergency=report.squawk in emergency_codes if report.squawk else False,
        first_seen=previous.first_seen if previous else now,
        last_seen=now,
        last_update=now,
    )


def diff_tracks(old: AircraftTrack, new: AircraftTrack) -> dict:
    """Significant changes between two versions of a track."""
    changes = {}

    if (old.position.lat, old.position.lon) != (new.position.lat, new.position.lon):
        changes["position"] = {
            "old": {"lat": old.position.lat, "lon": old.position.lon},
            "new": {"lat": new.position.lat, "lon": new.position.lon},
        }

    if old.altitude != new.altitude:
        changes["altitude"] = {"old": old.altitude, "new": new.altitude}

    if old.ground_speed != new.ground_speed:
        changes["ground_speed"] = {"old": old.ground_speed, "new": new.ground_speed}

    if old.emergency != new.emergency:
        changes["emergency"] = {"old": old.emergency, "new": new.emergency}

    return changes


def emergency_event(track: AircraftTrack, now: datetime) -> TrackingEvent:
    return TrackingEvent(
        type=EventType.EMERGENCY,
        aircraft_id=track.id,
        timestamp=now,
        payload={
            "squawk": track.squawk,
            "meaning": EMERGENCY_MEANINGS.get(track.squawk, "Emergency"),
            "priority": PRIORITY_CRITICAL,
            "aircraft": track.to_dict(),
        },
    )


def reconcile(
    previous: Mapping[str, AircraftTrack],
    snapshot: Iterable[Mapping],
    now: datetime,
    emergency_codes: Sequence[str],
) -> ReconciliationResult:
    """
    Reconcile one snapshot against the previous track table.

    Returns:
        ReconciliationResult with the new table, the appeared / updated /
        disappeared tracks and the corresponding events in emission order.
    """
    result = ReconciliationResult(tracks={})

    for raw in snapshot:
        try:
            report = parse_report(raw)
        except InputError as e:
            logger.warning(f"Dropping report without usable id: {e}")
            result.dropped.append("invalid_id")
            continue

        if report.id in result.tracks:
            logger.warning(f"Dropping duplicate report for {report.id} in snapshot")
            result.dropped.append("duplicate_id")
            continue

        old = previous.get(report.id)
        track = build_track(report, now, emergency_codes, old)
        result.tracks[track.id] = track

        if old is None:
            result.appeared.append(track)
            result.events.append(TrackingEvent(
                type=EventType.APPEARED,
                aircraft_id=track.id,
                timestamp=now,
                payload={"aircraft": track.to_dict()},
            ))
            logger.info(
                f"Aircraft appeared: {track.id} ({track.callsign or 'no callsign'}) "
                f"at {track.position.lat}, {track.position.lon}"
            )
            if track.emergency:
                result.events.append(emergency_event(track, now))
                logger.warning(f"Emergency detected: {track.id} squawking {track.squawk}")
            continue

        changes = diff_tracks(old, track)
        if not changes:
            continue

        result.updated.append(track)
        result.events.append(TrackingEvent(
            type=EventType.UPDATED,
            aircraft_id=track.id,
            timestamp=now,
            payload={"aircraft": track.to_dict(), "changes": changes},
        ))

        if track.emergency and not old.emergency:
            result.events.append(emergency_event(track, now))
            logger.warning(f"Emergency detected: {track.id} squawking {track.squawk}")

    for aircraft_id, old in previous.items():
        if aircraft_id in result.tracks:
            continue
        result.disappeared.append(old)
        result.events.append(TrackingEvent(
            type=EventType.DISAPPEARED,
            aircraft_id=aircraft_id,
            timestamp=now,
            payload={"aircraft": old.to_dict()},
        ))
        logger.info(f"Aircraft disappeared: {aircraft_id} ({old.callsign or 'no callsign'})")

    return result
