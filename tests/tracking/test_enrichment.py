"""
Unit tests for enrichment lookups.

Async lookups are driven with asyncio.run; slow lookups use an event that is
never set rather than a real delay.
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from tracking.airport import Airspace
from tracking.enrichment import AircraftInfo, EnrichmentCoordinator
from tracking.models import AircraftTrack, Position, Velocity

T0 = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


def track(aircraft_id="A1", squawk="7000", lat=55.5, lon=-4.59):
    return AircraftTrack(
        id=aircraft_id,
        position=Position(lat=lat, lon=lon, altitude=1500.0),
        velocity=Velocity(ground_speed=140.0, track=120.0, vertical_rate=-700.0),
        first_seen=T0,
        last_seen=T0,
        last_update=T0,
        squawk=squawk,
    )


class FakeRegistry:
    def __init__(self, info=None, error=None):
        self.info = info or AircraftInfo(registration="G-ABCD", type_code="A320", is_rotorcraft=False)
        self.error = error
        self.calls = []

    async def lookup(self, aircraft_id):
        self.calls.append(aircraft_id)
        if self.error:
            raise self.error
        return self.info


class FakeAirspace:
    def __init__(self, airspaces):
        self.airspaces = airspaces
        self.calls = 0

    async def lookup(self, lat, lon, altitude):
        self.calls += 1
        return self.airspaces


class FakeSquawks:
    def __init__(self):
        self.calls = []

    async def lookup(self, code):
        self.calls.append(code)
        return f"code {code}"


class HangingLookup:
    async def lookup(self, *args):
        await asyncio.Event().wait()


class TestLookupPolicy:
    """Which lookups run when."""

    def test_registration_once_per_appearance(self):
        """Test that registration is looked up once per appearance."""
        registry = FakeRegistry()
        coordinator = EnrichmentCoordinator(registration=registry)

        first = asyncio.run(coordinator.enrich(track()))
        second = asyncio.run(coordinator.enrich(track()))

        assert first.info.registration == "G-ABCD"
        assert second.info is None
        assert registry.calls == ["A1"]

        coordinator.forget("A1")
        asyncio.run(coordinator.enrich(track()))
        assert registry.calls == ["A1", "A1"]

    def test_airspace_every_time(self):
        """Test that airspace membership is looked up every time."""
        airspace = FakeAirspace([Airspace(id="fa", name="Final", type="final_approach")])
        coordinator = EnrichmentCoordinator(airspace=airspace)

        for _ in range(3):
            result = asyncio.run(coordinator.enrich(track()))
        assert airspace.calls == 3
        assert [a.id for a in result.airspaces] == ["fa"]

    def test_airspace_needs_position(self):
        """Test that airspace lookups need a position."""
        airspace = FakeAirspace([])
        coordinator = EnrichmentCoordinator(airspace=airspace)
        result = asyncio.run(coordinator.enrich(track(lat=None, lon=None)))
        assert result.airspaces is None
        assert airspace.calls == 0

    def test_squawk_once_per_new_code(self):
        """Test that each new squawk code is looked up once."""
        squawks = FakeSquawks()
        coordinator = EnrichmentCoordinator(squawk=squawks)

        asyncio.run(coordinator.enrich(track(squawk="7000")))
        asyncio.run(coordinator.enrich(track(squawk="7000")))
        result = asyncio.run(coordinator.enrich(track(squawk="7700")))

        assert squawks.calls == ["7000", "7700"]
        assert result.squawk == "7700"
        assert result.squawk_description == "code 7700"

    def test_results_are_stamped_with_the_appearance(self):
        """Each result carries the first_seen and observation time it was made for."""
        coordinator = EnrichmentCoordinator(registration=FakeRegistry())
        result = asyncio.run(coordinator.enrich(track()))
        assert result.first_seen == T0
        assert result.observed_at == T0

    def test_new_appearance_is_looked_up_again(self):
        """A reappearing aircraft gets a fresh registration lookup even if forget raced a lookup."""
        registry = FakeRegistry()
        coordinator = EnrichmentCoordinator(registration=registry)
        asyncio.run(coordinator.enrich(track()))

        later = T0 + timedelta(minutes=30)
        asyncio.run(coordinator.enrich(replace(track(), first_seen=later, last_seen=later)))
        assert registry.calls == ["A1", "A1"]


class TestFailures:
    """Timeouts and errors leave fields empty."""

    def test_failed_lookup_is_counted_and_retried(self):
        """Test that a failed lookup is counted and tried again."""
        registry = FakeRegistry(error=ConnectionError("registry down"))
        coordinator = EnrichmentCoordinator(registration=registry)

        result = asyncio.run(coordinator.enrich(track()))
        assert result.info is None
        assert result.errors == ["registration"]
        assert coordinator.errors["registration"] == 1

        registry.error = None
        assert asyncio.run(coordinator.enrich(track())).info is not None

    def test_timeout_does_not_block_other_lookups(self):
        """Test that a hanging lookup times out without blocking the rest."""
        airspace = FakeAirspace([])
        coordinator = EnrichmentCoordinator(registration=HangingLookup(), airspace=airspace, timeout=0.01)

        result = asyncio.run(coordinator.enrich(track()))
        assert result.info is None
        assert result.airspaces == []
        assert result.errors == ["registration"]

    def test_enrich_all(self):
        """Test that every aircraft of a tick is enriched."""
        coordinator = EnrichmentCoordinator(registration=FakeRegistry())
        results = asyncio.run(coordinator.enrich_all([track("A1"), track("B2")]))
        assert [r.aircraft_id for r in results] == ["A1", "B2"]
