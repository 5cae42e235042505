"""
Unit tests for zone management and the violation lifecycle.
"""

from datetime import datetime, timedelta, timezone

import pytest

from tracking.config import EngineConfig
from tracking.errors import ZoneNotFoundError
from tracking.events import EventType
from tracking.geofence import GeofenceEngine, ZoneRegistry
from tracking.models import AircraftTrack, Position, Velocity, ViolationStatus, Zone

T0 = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)

APRON = [
    {"lat": 55.50, "lon": -4.60},
    {"lat": 55.50, "lon": -4.58},
    {"lat": 55.52, "lon": -4.58},
    {"lat": 55.52, "lon": -4.60},
]

INSIDE = (55.51, -4.59)
OUTSIDE = (55.60, -4.59)


def track(aircraft_id="A1", lat=INSIDE[0], lon=INSIDE[1]):
    return AircraftTrack(
        id=aircraft_id,
        position=Position(lat=lat, lon=lon, altitude=0.0),
        velocity=Velocity(ground_speed=0.0),
        first_seen=T0,
        last_seen=T0,
        last_update=T0,
    )


def table(*tracks):
    return {t.id: t for t in tracks}


@pytest.fixture
def registry():
    return ZoneRegistry()


@pytest.fixture
def engine(registry):
    return GeofenceEngine(EngineConfig(), registry)


class TestZoneRegistry:
    """Zone CRUD."""

    def test_create_zone_assigns_id(self, registry):
        """Test that a new zone gets a generated id."""
        zone = registry.create_zone(APRON, name="Apron", zone_type="parking")
        assert zone.id == "zone_1"
        assert zone.active
        assert registry.get_zone("zone_1") is zone

    def test_polygon_needs_three_vertices(self, registry):
        """Test that a polygon needs three vertices."""
        with pytest.raises(ValueError):
            registry.create_zone(APRON[:2])

    def test_invalid_vertex_rejected(self, registry):
        """Test that a vertex without coordinates is rejected."""
        with pytest.raises(ValueError):
            registry.create_zone([{"lat": 1}, {"lat": 2, "lon": 2}, {"lat": 3, "lon": 3}])

    def test_unknown_type_rejected(self, registry):
        """Test that an unknown zone type is rejected."""
        with pytest.raises(ValueError):
            registry.create_zone(APRON, zone_type="volcano")

    def test_duplicate_id_rejected(self, registry):
        """Test that zone ids are unique."""
        registry.create_zone(APRON, zone_id="apron")
        with pytest.raises(ValueError):
            registry.create_zone(APRON, zone_id="apron")

    def test_update_zone(self, registry):
        """Test that zone updates merge properties."""
        registry.create_zone(APRON, zone_id="apron", properties={"owner": "ops"})
        zone = registry.update_zone("apron", name="North Apron", active=False, properties={"level": 2})

        assert zone.name == "North Apron"
        assert not zone.active
        assert zone.properties == {"owner": "ops", "level": 2}

    def test_unknown_zone_raises(self, registry):
        """Test that unknown zone ids raise."""
        with pytest.raises(ZoneNotFoundError):
            registry.get_zone("missing")
        with pytest.raises(ZoneNotFoundError):
            registry.delete_zone("missing")

    def test_list_zones_filters(self, registry):
        """Test zone listing by type and active flag."""
        registry.create_zone(APRON, zone_type="parking")
        registry.create_zone(APRON, zone_type="runway", active=False)

        assert len(registry.list_zones()) == 2
        assert [z.type for z in registry.list_zones(zone_type="runway")] == ["runway"]
        assert [z.type for z in registry.list_active_zones()] == ["parking"]


class TestViolationLifecycle:
    """Enter, stay, exit."""

    def test_entering_creates_violation(self, registry, engine):
        """Test that entering a zone opens a violation."""
        registry.create_zone(APRON, zone_id="apron", zone_type="parking")
        events = engine.evaluate(table(track()), T0)

        assert [e.type for e in events] == [EventType.ZONE_ENTERED]
        assert events[0].payload["zone"]["id"] == "apron"
        assert events[0].payload["priority"] == "low"
        violation = engine.active[("apron", "A1")]
        assert violation.entered_at == T0
        assert violation.status == ViolationStatus.ACTIVE

    def test_staying_inside_is_quiet(self, registry, engine):
        """Test that staying inside emits nothing."""
        registry.create_zone(APRON, zone_id="apron")
        engine.evaluate(table(track()), T0)
        assert engine.evaluate(table(track()), T0 + timedelta(seconds=5)) == []
        assert len(engine.active) == 1

    def test_leaving_resolves_violation(self, registry, engine):
        """Test that leaving a zone resolves the violation."""
        registry.create_zone(APRON, zone_id="apron")
        engine.evaluate(table(track()), T0)
        events = engine.evaluate(table(track(lat=OUTSIDE[0], lon=OUTSIDE[1])), T0 + timedelta(minutes=1))

        assert [e.type for e in events] == [EventType.ZONE_EXITED]
        assert engine.active == {}
        resolved = engine.violations(status=ViolationStatus.RESOLVED)
        assert len(resolved) == 1
        assert resolved[0].resolved_at == T0 + timedelta(minutes=1)

    def test_reentry_gets_new_violation_id(self, registry, engine):
        """Test that re-entry opens a new violation."""
        registry.create_zone(APRON, zone_id="apron")
        first = engine.evaluate(table(track()), T0)[0].payload["violation"]["id"]
        engine.evaluate(table(track(lat=OUTSIDE[0], lon=OUTSIDE[1])), T0 + timedelta(minutes=1))
        second = engine.evaluate(table(track()), T0 + timedelta(minutes=2))[0].payload["violation"]["id"]
        assert first != second

    def test_aircraft_without_position_is_skipped(self, registry, engine):
        """Test that aircraft without position are skipped."""
        registry.create_zone(APRON)
        assert engine.evaluate(table(track(lat=None, lon=None)), T0) == []

    def test_inactive_zone_is_ignored(self, registry, engine):
        """Test that inactive zones are not checked."""
        registry.create_zone(APRON, active=False)
        assert engine.evaluate(table(track()), T0) == []

    def test_overlapping_zones_each_get_a_violation(self, registry, engine):
        """Test that overlapping zones each get a violation."""
        registry.create_zone(APRON, zone_id="a")
        registry.create_zone(APRON, zone_id="b", zone_type="emergency")
        events = engine.evaluate(table(track()), T0)
        assert sorted(e.payload["zone"]["id"] for e in events) == ["a", "b"]

    def test_disappearance_resolves_violations(self, registry, engine):
        """Test that disappearance resolves every violation."""
        registry.create_zone(APRON, zone_id="apron")
        engine.evaluate(table(track()), T0)
        events = engine.resolve_aircraft("A1", T0 + timedelta(seconds=5), reason="disappeared")

        assert [e.payload["reason"] for e in events] == ["disappeared"]
        assert engine.active == {}

    def test_resolving_missing_violation_is_noop(self, engine):
        """Test that resolving a missing violation does nothing."""
        assert engine.resolve("apron", "A1", T0) is None

    def test_drop_zone_forgets_violations(self, registry, engine):
        """Test that dropping a zone forgets its violations."""
        registry.create_zone(APRON, zone_id="apron")
        engine.evaluate(table(track("A1"), track("B2")), T0)
        assert engine.drop_zone("apron") == 2
        assert engine.violations() == []

    def test_malformed_external_zone_is_skipped(self):
        """A zone source serving a degenerate polygon does not break the check."""

        class ExternalZones:
            def list_active_zones(self):
                return [
                    Zone(id="line", name="Line", type="custom", polygon=APRON[:2]),
                    Zone(id="apron", name="Apron", type="parking", polygon=APRON),
                ]

        engine = GeofenceEngine(EngineConfig(), ExternalZones())
        events = engine.evaluate(table(track()), T0)
        assert [e.payload["zone"]["id"] for e in events] == ["apron"]


class TestPurge:
    """Retention of resolved violations."""

    def test_old_resolved_violations_are_purged(self, registry, engine):
        """Test that resolved violations past retention are purged."""
        registry.create_zone(APRON, zone_id="apron")
        engine.evaluate(table(track()), T0)
        engine.evaluate(table(), T0 + timedelta(minutes=1))
        engine.resolve_aircraft("A1", T0 + timedelta(minutes=1), reason="disappeared")

        assert engine.purge(T0 + timedelta(hours=24)) == 0
        assert engine.purge(T0 + timedelta(hours=25)) == 1
        assert engine.violations() == []

    def test_active_violations_are_never_purged(self, registry, engine):
        """Test that active violations survive a purge."""
        registry.create_zone(APRON, zone_id="apron")
        engine.evaluate(table(track()), T0)
        assert engine.purge(T0 + timedelta(days=3)) == 0
        assert len(engine.active) == 1
