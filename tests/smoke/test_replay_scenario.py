"""
Smoke test: replay recorded snapshots through the whole tracking core.

This test verifies that:
1. A low, fast aircraft near Prestwick appears and starts a flight
2. Its disappearance ends the flight with reason "disappeared"
3. The asyncio runner polls, enriches and stops cleanly
"""

import asyncio
from datetime import datetime, timedelta, timezone

from tracking.airport import Airspace
from tracking.config import EngineConfig
from tracking.engine import TrackingEngine
from tracking.enrichment import AircraftInfo, EnrichmentCoordinator
from tracking.events import EventType
from tracking.runner import EngineRunner

T0 = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)

A1 = {"id": "A1", "lat": 55.50, "lon": -4.59, "altitude": 125, "groundSpeed": 121.6, "verticalRate": -64}


class ReplaySource:
    """Snapshot source replaying a fixed list; None entries are missed polls."""

    def __init__(self, snapshots, error_at=None):
        self.snapshots = list(snapshots)
        self.error_at = error_at
        self.polls = 0

    async def __call__(self):
        index = self.polls
        self.polls += 1
        if index == self.error_at:
            raise ConnectionError("receiver offline")
        if index >= len(self.snapshots):
            return []
        return self.snapshots[index]


class SteppingClock:
    def __init__(self, start, step):
        self.now = start
        self.step = step

    def __call__(self):
        current = self.now
        self.now += self.step
        return current


class Registry:
    async def lookup(self, aircraft_id):
        return AircraftInfo(registration="G-TEST", type_code="AS50", is_rotorcraft=True)


class Airspaces:
    async def lookup(self, lat, lon, altitude):
        return [Airspace(id="fa30", name="EGPK FINAL_APPROACH 30", type="approach")]


class TestReplayScenario:
    """The reference appear / fly / disappear scenario."""

    def test_appear_then_disappear(self):
        """Test the appear, fly, disappear sequence end to end."""
        engine = TrackingEngine(EngineConfig(home_airport="EGPK"))
        received = []
        engine.subscribe(received.append)

        first = engine.process_snapshot([A1], T0)
        assert [e.type for e in first] == [EventType.APPEARED, EventType.FLIGHT_STARTED]

        second = engine.process_snapshot([], T0 + timedelta(seconds=30))
        assert [e.type for e in second] == [EventType.DISAPPEARED, EventType.FLIGHT_ENDED]
        flight = second[1].payload["flight"]
        assert flight["end_reason"] == "disappeared"
        assert flight["duration_ms"] == 30000

        assert [e.sequence for e in received] == [1, 2, 3, 4]
        assert engine.tracks == {}

    def test_short_flight_is_not_reported(self):
        """Test that a flight shorter than the minimum ends silently."""
        engine = TrackingEngine(EngineConfig(home_airport="EGPK"))
        engine.process_snapshot([A1], T0)
        events = engine.process_snapshot([], T0 + timedelta(seconds=10))
        assert [e.type for e in events] == [EventType.DISAPPEARED]


class TestRunner:
    """Async scheduling around the engine."""

    def test_poll_failure_skips_tick(self):
        """Test that a failing source skips the tick instead of emptying the table."""
        engine = TrackingEngine(EngineConfig(), airports=[], clock=SteppingClock(T0, timedelta(seconds=5)))
        runner = EngineRunner(engine, ReplaySource([[A1], [], []], error_at=1))

        async def scenario():
            first = await runner.poll_once()
            failed = await runner.poll_once()
            gone = await runner.poll_once()
            return first, failed, gone

        first, failed, gone = asyncio.run(scenario())
        assert len(first) == 2
        assert failed == []
        assert runner.poll_failures == 1
        assert [e.type for e in gone] == [EventType.DISAPPEARED]

    def test_enrichment_is_applied_after_tick(self):
        """Test that scheduled lookups reach the engine."""
        engine = TrackingEngine(
            EngineConfig(home_airport="EGPK"), clock=SteppingClock(T0, timedelta(seconds=5))
        )
        coordinator = EnrichmentCoordinator(registration=Registry(), airspace=Airspaces())
        runner = EngineRunner(engine, ReplaySource([[A1]]), enrichment=coordinator)
        received = []
        engine.subscribe(received.append, types=[EventType.APPROACH_DETECTED])

        async def scenario():
            await runner.poll_once()
            await runner.drain()

        asyncio.run(scenario())
        assert engine.aircraft_info["A1"].registration == "G-TEST"
        assert engine.airport.rotorcraft["A1"] is True
        assert [e.aircraft_id for e in received] == ["A1"]

    def test_stop_cancels_tasks_and_silences_engine(self):
        """Test that stopping cancels the loops and silences the engine."""
        engine = TrackingEngine(EngineConfig(), airports=[])
        runner = EngineRunner(engine, ReplaySource([[A1]]))
        received = []
        engine.subscribe(received.append)

        async def scenario():
            runner.start()
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            assert runner.running
            await runner.stop()

        asyncio.run(scenario())
        assert not runner.running
        assert engine.stopping
        assert [e.type for e in received] == [EventType.APPEARED, EventType.FLIGHT_STARTED]
        assert engine.process_snapshot([], T0 + timedelta(hours=1)) == []
