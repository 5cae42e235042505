"""
Zone geofencing.

Zones are polygons of {lat, lon} vertices. Membership uses the even-odd ray
casting rule in tracking.spatial (planar lat/lon, not geodesically exact); a
shapely STRtree over the zone polygons narrows each aircraft to the zones
whose bounding box contains it.
"""

import itertools
import logging
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Set, Tuple

from shapely.geometry import Point, Polygon
from shapely.strtree import STRtree

from contracts.constants import ZONE_TYPE_PRIORITIES, ZONE_TYPE_CUSTOM
from tracking.config import EngineConfig
from tracking.errors import ZoneNotFoundError
from tracking.events import EventType, TrackingEvent
from tracking.metrics import STATE_INCONSISTENCIES
from tracking.models import AircraftTrack, Zone, ZoneViolation, ViolationStatus
from tracking.spatial import point_in_polygon

logger = logging.getLogger(__name__)


class ZoneSource(Protocol):
    def list_active_zones(self) -> List[Zone]: ...


def _validate_polygon(polygon) -> List[dict]:
    if not polygon or len(polygon) < 3:
        raise ValueError("Zone polygon needs at least 3 vertices")
    vertices = []
    for vertex in polygon:
        try:
            lat, lon = float(vertex["lat"]), float(vertex["lon"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Invalid zone vertex {vertex!r}") from e
        vertices.append({"lat": lat, "lon": lon})
    return vertices


class ZoneRegistry:
    """In-memory zone store implementing the zone management operations."""

    def __init__(self):
        self._zones: Dict[str, Zone] = {}
        self._ids = itertools.count(1)

    def create_zone(
        self,
        polygon: Iterable[Mapping[str, float]],
        name: Optional[str] = None,
        zone_type: str = ZONE_TYPE_CUSTOM,
        zone_id: Optional[str] = None,
        properties: Optional[dict] = None,
        active: bool = True,
        now: Optional[datetime] = None,
    ) -> Zone:
        if zone_type not in ZONE_TYPE_PRIORITIES:
            raise ValueError(f"Unknown zone type: {zone_type}")
        vertices = _validate_polygon(list(polygon))

        if zone_id is None:
            zone_id = f"zone_{next(self._ids)}"
            while zone_id in self._zones:
                zone_id = f"zone_{next(self._ids)}"
        elif zone_id in self._zones:
            raise ValueError(f"Zone already exists: {zone_id}")

        zone = Zone(
            id=zone_id,
            name=name or f"Zone {zone_id}",
            type=zone_type,
            polygon=vertices,
            active=active,
            properties=dict(properties or {}),
            created_at=now,
            updated_at=now,
        )
        self._zones[zone_id] = zone
        logger.info(f"Zone created: {zone_id} type={zone_type} vertices={len(vertices)}")
        return zone

    def update_zone(
        self,
        zone_id: str,
        name: Optional[str] = None,
        polygon: Optional[Iterable[Mapping[str, float]]] = None,
        properties: Optional[dict] = None,
        active: Optional[bool] = None,
        now: Optional[datetime] = None,
    ) -> Zone:
        zone = self.get_zone(zone_id)
        if name:
            zone.name = name
        if polygon is not None:
            zone.polygon = _validate_polygon(list(polygon))
        if properties:
            zone.properties = {**zone.properties, **properties}
        if active is not None:
            zone.active = active
        zone.updated_at = now
        logger.info(f"Zone updated: {zone_id}")
        return zone

    def delete_zone(self, zone_id: str) -> Zone:
        zone = self.get_zone(zone_id)
        del self._zones[zone_id]
        logger.info(f"Zone deleted: {zone_id}")
        return zone

    def get_zone(self, zone_id: str) -> Zone:
        try:
            return self._zones[zone_id]
        except KeyError:
            raise ZoneNotFoundError(f"Zone not found: {zone_id}") from None

    def list_zones(self, zone_type: Optional[str] = None, active: Optional[bool] = None) -> List[Zone]:
        zones = list(self._zones.values())
        if zone_type is not None:
            zones = [z for z in zones if z.type == zone_type]
        if active is not None:
            zones = [z for z in zones if z.active == active]
        return zones

    def list_active_zones(self) -> List[Zone]:
        return self.list_zones(active=True)


class ZoneIndex:
    """Bounding-box index over a fixed list of zones. Malformed zones are skipped."""

    def __init__(self, zones: List[Zone]):
        self.zones: List[Zone] = []
        self.tree = None
        polygons = []
        for zone in zones:
            try:
                vertices = _validate_polygon(zone.polygon)
                polygon = Polygon([(v["lon"], v["lat"]) for v in vertices])
            except ValueError as e:
                STATE_INCONSISTENCIES.labels(kind="zone_polygon").inc()
                logger.warning(f"Skipping zone {zone.id}: {e}")
                continue
            self.zones.append(replace(zone, polygon=vertices))
            polygons.append(polygon)
        if polygons:
            self.tree = STRtree(polygons)

    def containing(self, lat: float, lon: float) -> Set[str]:
        """Ids of the zones whose polygon contains the point."""
        if self.tree is None:
            return set()
        inside = set()
        for i in self.tree.query(Point(lon, lat)):
            zone = self.zones[int(i)]
            if point_in_polygon(lat, lon, zone.polygon):
                inside.add(zone.id)
        return inside


class GeofenceEngine:
    """
    Maintains the zone violation lifecycle.

    Active violations are keyed by (zone_id, aircraft_id), so there is never
    more than one per pair. Resolved violations are kept per zone until purged.
    """

    def __init__(self, config: EngineConfig, zones: ZoneSource):
        self.config = config
        self.zones = zones
        self.active: Dict[Tuple[str, str], ZoneViolation] = {}
        self.resolved: Dict[str, List[ZoneViolation]] = defaultdict(list)
        self._by_aircraft: Dict[str, Set[str]] = defaultdict(set)
        self._ids = itertools.count(1)
        self.total_violations = 0

    def evaluate(self, tracks: Mapping[str, AircraftTrack], now: datetime) -> List[TrackingEvent]:
        """Check every positioned aircraft against every active zone."""
        zones = self.zones.list_active_zones()
        by_id = {zone.id: zone for zone in zones}
        index = ZoneIndex(zones)
        events = []

        for track in tracks.values():
            if not track.position.has_fix:
                logger.debug(f"Skipping geofence for {track.id}: no position")
                continue

            inside = index.containing(track.position.lat, track.position.lon)

            for zone_id in sorted(inside):
                if (zone_id, track.id) not in self.active:
                    events.append(self._enter(by_id[zone_id], track, now))

            for zone_id in sorted(self._by_aircraft.get(track.id, ())):
                if zone_id in by_id and zone_id not in inside:
                    events.append(self._exit(by_id[zone_id], track.id, now, track=track))

        return events

    def resolve_aircraft(self, aircraft_id: str, now: datetime, reason: str) -> List[TrackingEvent]:
        """Resolve every active violation of an aircraft that left the track table."""
        events = []
        for zone_id in sorted(self._by_aircraft.get(aircraft_id, ())):
            events.append(self._exit(None, aircraft_id, now, zone_id=zone_id, reason=reason))
        return events

    def resolve(self, zone_id: str, aircraft_id: str, now: datetime) -> Optional[TrackingEvent]:
        """Resolve one violation on request. Missing violations are a logged no-op."""
        if (zone_id, aircraft_id) not in self.active:
            STATE_INCONSISTENCIES.labels(kind="zone_violation").inc()
            logger.warning(f"No active violation for {aircraft_id} in {zone_id}; ignoring resolve")
            return None
        return self._exit(None, aircraft_id, now, zone_id=zone_id)

    def drop_zone(self, zone_id: str) -> int:
        """Forget all violations of a deleted zone."""
        dropped = 0
        for key in [k for k in self.active if k[0] == zone_id]:
            del self.active[key]
            zones = self._by_aircraft[key[1]]
            zones.discard(zone_id)
            if not zones:
                del self._by_aircraft[key[1]]
            dropped += 1
        dropped += len(self.resolved.pop(zone_id, []))
        return dropped

    def purge(self, now: datetime) -> int:
        """Drop resolved violations older than the retention period."""
        cutoff = now - self.config.violation_retention
        purged = 0
        for zone_id in list(self.resolved):
            kept = [v for v in self.resolved[zone_id] if v.resolved_at >= cutoff]
            purged += len(self.resolved[zone_id]) - len(kept)
            if kept:
                self.resolved[zone_id] = kept
            else:
                del self.resolved[zone_id]
        if purged:
            logger.info(f"Purged {purged} resolved zone violations")
        return purged

    def violations(self, zone_id: Optional[str] = None, status: Optional[ViolationStatus] = None) -> List[ZoneViolation]:
        result = []
        if status in (None, ViolationStatus.ACTIVE):
            result.extend(v for (z, _), v in self.active.items() if zone_id in (None, z))
        if status in (None, ViolationStatus.RESOLVED):
            for z, items in self.resolved.items():
                if zone_id in (None, z):
                    result.extend(items)
        return result

    def _enter(self, zone: Zone, track: AircraftTrack, now: datetime) -> TrackingEvent:
        violation = ZoneViolation(
            id=f"violation_{zone.id}_{track.id}_{next(self._ids)}",
            zone_id=zone.id,
            aircraft_id=track.id,
            entered_at=now,
        )
        self.active[(zone.id, track.id)] = violation
        self._by_aircraft[track.id].add(zone.id)
        self.total_violations += 1

        logger.info(f"Aircraft entered zone: {track.id} -> {zone.name} ({zone.id})")
        return TrackingEvent(
            type=EventType.ZONE_ENTERED,
            aircraft_id=track.id,
            timestamp=now,
            payload={
                "violation": violation.to_dict(),
                "zone": {"id": zone.id, "name": zone.name, "type": zone.type},
                "priority": ZONE_TYPE_PRIORITIES.get(zone.type),
                "aircraft": track.to_dict(),
            },
        )

    def _exit(
        self,
        zone: Optional[Zone],
        aircraft_id: str,
        now: datetime,
        zone_id: Optional[str] = None,
        track: Optional[AircraftTrack] = None,
        reason: str = "exited",
    ) -> TrackingEvent:
        zone_id = zone.id if zone else zone_id
        violation = self.active.pop((zone_id, aircraft_id))
        self._by_aircraft[aircraft_id].discard(zone_id)
        if not self._by_aircraft[aircraft_id]:
            del self._by_aircraft[aircraft_id]

        violation.status = ViolationStatus.RESOLVED
        violation.resolved_at = now
        self.resolved[zone_id].append(violation)

        logger.info(f"Aircraft exited zone: {aircraft_id} <- {zone_id} ({reason})")
        payload = {
            "violation": violation.to_dict(),
            "zone": {"id": zone.id, "name": zone.name, "type": zone.type} if zone else {"id": zone_id},
            "reason": reason,
        }
        if track is not None:
            payload["aircraft"] = track.to_dict()
        return TrackingEvent(
            type=EventType.ZONE_EXITED,
            aircraft_id=aircraft_id,
            timestamp=now,
            payload=payload,
        )
