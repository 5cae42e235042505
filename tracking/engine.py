"""
Tracking engine.

Owns the explicit state store (track table, flight sessions, zone violations,
airport inference state) and runs one tick of the pipeline:

    reconcile -> flight state -> geofence -> airport inference -> alerts -> emit

Ticks, timeout sweeps, purges and enrichment application are serialized
behind one re-entrant lock. Every operation takes an optional `now` so that
tests and replays control time; otherwise the injected clock is used.
"""

import logging
import threading
import time
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Deque, Dict, Iterable, List, Mapping, Optional, Sequence

from contracts.constants import EMERGENCY_MEANINGS, PRIORITY_CRITICAL
from tracking.aggregator import EventAggregator
from tracking.airport import AirportInferenceEngine, load_airports
from tracking.alerts import SmartAlertDetector
from tracking.config import EngineConfig
from tracking.enrichment import AircraftInfo, Enrichment
from tracking.events import EventType, TrackingEvent
from tracking.flight_state import FlightStateMachine
from tracking.geofence import GeofenceEngine, ZoneRegistry
from tracking.metrics import (
    SNAPSHOTS_PROCESSED,
    SNAPSHOTS_SKIPPED,
    REPORTS_DROPPED,
    TRACKED_AIRCRAFT,
    TICK_LATENCY,
)
from tracking.models import AircraftTrack, Airport, EmergencyRecord, EndReason, Zone, ZoneViolation
from tracking.reconciler import ReconciliationResult, TrackTable, reconcile
from tracking.spatial import haversine_nm

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

MAX_EMERGENCY_EVENTS = 50


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def matches_filter(track: AircraftTrack, criteria: Mapping) -> bool:
    """Apply the aircraft query filter keys to one track."""
    if "emergency" in criteria and track.emergency != bool(criteria["emergency"]):
        return False

    altitude = track.altitude
    if "min_altitude" in criteria and (altitude is None or altitude < criteria["min_altitude"]):
        return False
    if "max_altitude" in criteria and (altitude is None or altitude > criteria["max_altitude"]):
        return False

    speed = track.ground_speed
    if "min_speed" in criteria and (speed is None or speed < criteria["min_speed"]):
        return False
    if "max_speed" in criteria and (speed is None or speed > criteria["max_speed"]):
        return False

    within = criteria.get("within_range")
    if within:
        if not track.position.has_fix:
            return False
        center = within["center"]
        distance = haversine_nm(center["lat"], center["lon"], track.position.lat, track.position.lon)
        if distance > within["range_nm"]:
            return False

    return True


class TrackingEngine:
    """Single owner of all tracking state."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        airports: Optional[Sequence[Airport]] = None,
        zones: Optional[ZoneRegistry] = None,
        aggregator: Optional[EventAggregator] = None,
        clock: Clock = utc_now,
    ):
        self.config = config or EngineConfig()
        self.clock = clock
        if airports is None:
            airports = load_airports(self.config.airports_file)

        self.zones = zones or ZoneRegistry()
        self.aggregator = aggregator or EventAggregator()
        self.flights = FlightStateMachine(self.config)
        self.geofence = GeofenceEngine(self.config, self.zones)
        self.airport = AirportInferenceEngine(self.config, airports)
        self.alerts = SmartAlertDetector() if self.config.smart_alerts_enabled else None

        self.tracks: TrackTable = {}
        self.aircraft_info: Dict[str, AircraftInfo] = {}
        self.squawk_descriptions: Dict[str, str] = {}
        self.emergencies: Deque[EmergencyRecord] = deque(maxlen=MAX_EMERGENCY_EVENTS)
        self._open_emergencies: Dict[str, EmergencyRecord] = {}
        self._enriched_at: Dict[str, datetime] = {}

        self.stopping = False
        self._lock = threading.RLock()
        self._counters = {
            "ticks": 0,
            "skipped_ticks": 0,
            "appeared": 0,
            "disappeared": 0,
            "dropped_reports": 0,
            "enrichment_errors": 0,
            "stale_enrichments": 0,
        }

    def subscribe(self, handler, types: Optional[Iterable[EventType]] = None):
        return self.aggregator.subscribe(handler, types)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def process_snapshot(self, snapshot: Optional[Iterable[Mapping]], now: Optional[datetime] = None) -> List[TrackingEvent]:
        """
        Run one tick over a snapshot.

        A None snapshot means the source produced nothing this tick: the tick
        is skipped and nothing disappears.

        Returns:
            The events published during the tick, in emission order.
        """
        with self._lock:
            if self.stopping:
                return []
            if snapshot is None:
                self._counters["skipped_ticks"] += 1
                SNAPSHOTS_SKIPPED.inc()
                logger.warning("No snapshot this tick; skipping")
                return []

            now = now or self.clock()
            started = time.perf_counter()

            result = reconcile(self.tracks, snapshot, now, self.config.emergency_codes)
            events = list(result.events)
            self._record_reconciliation(result, now)

            for track in result.tracks.values():
                events.extend(self.flights.observe(track, now))

            for old in result.disappeared:
                events.extend(self.flights.handle_disappeared(old.id, now))
                events.extend(self.geofence.resolve_aircraft(old.id, now, reason="disappeared"))
                self._forget(old.id)

            self.tracks = result.tracks

            events.extend(self.geofence.evaluate(self.tracks, now))
            self.airport.refresh_active_runways(now)
            for track in self.tracks.values():
                events.extend(self.airport.evaluate(track, now))
            if self.alerts is not None:
                events.extend(self.alerts.evaluate(self.tracks.values(), now))

            published = self.aggregator.publish_all(events)

            self._counters["ticks"] += 1
            SNAPSHOTS_PROCESSED.inc()
            TRACKED_AIRCRAFT.set(len(self.tracks))
            TICK_LATENCY.observe(time.perf_counter() - started)
            logger.debug(
                f"Tick at {now.isoformat()}: {len(self.tracks)} aircraft, {len(published)} events"
            )
            return published

    def _record_reconciliation(self, result: ReconciliationResult, now: datetime) -> None:
        self._counters["appeared"] += len(result.appeared)
        self._counters["disappeared"] += len(result.disappeared)
        self._counters["dropped_reports"] += len(result.dropped)
        for reason in result.dropped:
            REPORTS_DROPPED.labels(reason=reason).inc()

        for track in result.tracks.values():
            record = self._open_emergencies.get(track.id)
            if track.emergency and record is None:
                record = EmergencyRecord(
                    aircraft_id=track.id,
                    callsign=track.callsign,
                    squawk=track.squawk,
                    meaning=EMERGENCY_MEANINGS.get(track.squawk, "Emergency"),
                    priority=PRIORITY_CRITICAL,
                    detected_at=now,
                )
                self._open_emergencies[track.id] = record
                self.emergencies.append(record)
            elif not track.emergency and record is not None:
                self._resolve_emergency(track.id, now)

        for old in result.disappeared:
            if old.id in self._open_emergencies:
                self._resolve_emergency(old.id, now)

    def _resolve_emergency(self, aircraft_id: str, now: datetime) -> None:
        record = self._open_emergencies.pop(aircraft_id)
        record.status = "resolved"
        record.resolved_at = now
        logger.info(f"Emergency resolved: {aircraft_id} ({record.squawk})")

    def _forget(self, aircraft_id: str) -> None:
        self.airport.forget(aircraft_id)
        self.aircraft_info.pop(aircraft_id, None)
        self.squawk_descriptions.pop(aircraft_id, None)
        self._enriched_at.pop(aircraft_id, None)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def sweep_timeouts(self, now: Optional[datetime] = None) -> List[TrackingEvent]:
        with self._lock:
            if self.stopping:
                return []
            return self.aggregator.publish_all(self.flights.sweep_timeouts(now or self.clock()))

    def purge_violations(self, now: Optional[datetime] = None) -> int:
        with self._lock:
            return self.geofence.purge(now or self.clock())

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    def apply_enrichment(self, enrichment: Enrichment, now: Optional[datetime] = None) -> List[TrackingEvent]:
        """
        Apply lookup results.

        Results are dropped as stale when the aircraft is no longer tracked,
        when they were made for an earlier appearance of the same id, or when
        a result for a later observation has already been applied.
        """
        with self._lock:
            if self.stopping:
                return []
            self._counters["enrichment_errors"] += len(enrichment.errors)

            track = self.tracks.get(enrichment.aircraft_id)
            if track is None:
                return self._drop_enrichment(enrichment, "no longer tracked")
            if enrichment.first_seen is not None and enrichment.first_seen != track.first_seen:
                return self._drop_enrichment(enrichment, "made for an earlier appearance")
            applied = self._enriched_at.get(track.id)
            if enrichment.observed_at is not None and applied is not None and enrichment.observed_at < applied:
                return self._drop_enrichment(enrichment, "older than the last applied result")
            if enrichment.observed_at is not None:
                self._enriched_at[track.id] = enrichment.observed_at

            if enrichment.info is not None:
                self.aircraft_info[track.id] = enrichment.info
                self.airport.set_rotorcraft(track.id, enrichment.info.is_rotorcraft)

            if enrichment.squawk_description is not None and enrichment.squawk == track.squawk:
                self.squawk_descriptions[track.id] = enrichment.squawk_description
                record = self._open_emergencies.get(track.id)
                if record is not None and record.squawk == enrichment.squawk:
                    record.description = enrichment.squawk_description

            if enrichment.airspaces is None:
                return []
            events = self.airport.apply_airspaces(track, enrichment.airspaces, now or self.clock())
            return self.aggregator.publish_all(events)

    def _drop_enrichment(self, enrichment: Enrichment, reason: str) -> List[TrackingEvent]:
        self._counters["stale_enrichments"] += 1
        logger.debug(f"Dropping enrichment for {enrichment.aircraft_id}: {reason}")
        return []

    # ------------------------------------------------------------------
    # Zones and sessions
    # ------------------------------------------------------------------

    def create_zone(self, polygon, **kwargs) -> Zone:
        with self._lock:
            return self.zones.create_zone(polygon, now=self.clock(), **kwargs)

    def update_zone(self, zone_id: str, **kwargs) -> Zone:
        with self._lock:
            return self.zones.update_zone(zone_id, now=self.clock(), **kwargs)

    def delete_zone(self, zone_id: str) -> Zone:
        """Remove a zone and every violation recorded against it."""
        with self._lock:
            zone = self.zones.delete_zone(zone_id)
            dropped = self.geofence.drop_zone(zone_id)
            if dropped:
                logger.info(f"Dropped {dropped} violations of deleted zone {zone_id}")
            return zone

    def list_zones(self, zone_type: Optional[str] = None, active: Optional[bool] = None) -> List[Zone]:
        with self._lock:
            return self.zones.list_zones(zone_type=zone_type, active=active)

    def get_violations(self, zone_id: Optional[str] = None, status=None) -> List[ZoneViolation]:
        with self._lock:
            return self.geofence.violations(zone_id=zone_id, status=status)

    def resolve_violation(self, zone_id: str, aircraft_id: str, now: Optional[datetime] = None) -> List[TrackingEvent]:
        with self._lock:
            event = self.geofence.resolve(zone_id, aircraft_id, now or self.clock())
            return self.aggregator.publish_all([event] if event else [])

    def end_flight(self, aircraft_id: str, reason: EndReason, now: Optional[datetime] = None) -> List[TrackingEvent]:
        with self._lock:
            return self.aggregator.publish_all(self.flights.close(aircraft_id, now or self.clock(), reason))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_aircraft(
        self,
        aircraft_id: Optional[str] = None,
        callsign: Optional[str] = None,
        filter: Optional[Mapping] = None,
    ) -> List[AircraftTrack]:
        with self._lock:
            tracks = list(self.tracks.values())

        if aircraft_id is not None:
            aircraft_id = aircraft_id.strip().upper()
            tracks = [t for t in tracks if t.id == aircraft_id]
        if callsign is not None:
            callsign = callsign.strip().upper()
            tracks = [t for t in tracks if t.callsign and t.callsign.upper() == callsign]
        if filter:
            tracks = [t for t in tracks if matches_filter(t, filter)]
        return tracks

    def get_emergency_events(self, status: Optional[str] = None, since: Optional[datetime] = None) -> List[EmergencyRecord]:
        with self._lock:
            records = list(self.emergencies)
        if status is not None:
            records = [r for r in records if r.status == status]
        if since is not None:
            records = [r for r in records if r.detected_at >= since]
        return records

    def stats(self) -> dict:
        with self._lock:
            return {
                **self._counters,
                "aircraft": len(self.tracks),
                "open_flights": len(self.flights.sessions),
                "flights_started": self.flights.started,
                "flights_ended": self.flights.ended,
                "flights_discarded": self.flights.discarded,
                "zones": len(self.zones.list_zones()),
                "active_violations": len(self.geofence.active),
                "total_violations": self.geofence.total_violations,
                "active_emergencies": len(self._open_emergencies),
                "events_emitted": self.aggregator.sequence,
            }

    def stop(self) -> None:
        """Stop emitting. Ticks and timers after this are no-ops."""
        with self._lock:
            if self.stopping:
                return
            self.stopping = True
            self.aggregator.close()
            logger.info("Tracking engine stopped")
