"""
Best-effort enrichment lookups.

Registration, airspace membership and squawk descriptions come from external
services. Lookups run concurrently under a timeout; a failure or timeout is
logged and counted and leaves the corresponding field None. Results are
handed back to the engine stamped with the track's first_seen and the time
of the observation they were made for; the engine applies them only to the
same appearance of the aircraft and never older than what it already applied.
"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Dict, List, Optional, Protocol, Sequence

from tracking.airport import Airspace
from tracking.errors import EnrichmentUnavailable
from tracking.metrics import ENRICHMENT_ERRORS
from tracking.models import AircraftTrack

logger = logging.getLogger(__name__)

SOURCE_REGISTRATION = "registration"
SOURCE_AIRSPACE = "airspace"
SOURCE_SQUAWK = "squawk"


@dataclass(frozen=True)
class AircraftInfo:
    registration: Optional[str] = None
    type_code: Optional[str] = None
    is_rotorcraft: Optional[bool] = None


@dataclass
class Enrichment:
    """Lookup results for one aircraft. None means not looked up or unavailable."""
    aircraft_id: str
    first_seen: Optional[datetime] = None
    observed_at: Optional[datetime] = None
    info: Optional[AircraftInfo] = None
    airspaces: Optional[List[Airspace]] = None
    squawk: Optional[str] = None
    squawk_description: Optional[str] = None
    errors: List[str] = field(default_factory=list)


class RegistrationLookup(Protocol):
    async def lookup(self, aircraft_id: str) -> Optional[AircraftInfo]: ...


class AirspaceLookup(Protocol):
    async def lookup(self, lat: float, lon: float, altitude: Optional[float]) -> List[Airspace]: ...


class SquawkLookup(Protocol):
    async def lookup(self, code: str) -> Optional[str]: ...


class EnrichmentCoordinator:
    """
    Decides which lookups an aircraft needs and runs them.

    Registration is looked up once per appearance, the squawk description once
    per new squawk code, airspace membership on every tick. A failed one-shot
    lookup is retried on the next tick.
    """

    def __init__(
        self,
        registration: Optional[RegistrationLookup] = None,
        airspace: Optional[AirspaceLookup] = None,
        squawk: Optional[SquawkLookup] = None,
        timeout: float = 2.0,
    ):
        self.registration = registration
        self.airspace = airspace
        self.squawk = squawk
        self.timeout = timeout
        self.errors: Counter = Counter()
        self._registered: Dict[str, datetime] = {}
        self._squawks: Dict[str, str] = {}

    async def _call(self, source: str, aircraft_id: str, lookup: Awaitable):
        try:
            return await asyncio.wait_for(lookup, timeout=self.timeout)
        except asyncio.TimeoutError:
            error = EnrichmentUnavailable(source, f"timed out after {self.timeout}s")
        except Exception as e:
            error = EnrichmentUnavailable(source, str(e))
        self.errors[source] += 1
        ENRICHMENT_ERRORS.labels(source=source).inc()
        logger.warning(f"Enrichment for {aircraft_id} unavailable: {error}")
        raise error

    async def enrich(self, track: AircraftTrack) -> Enrichment:
        result = Enrichment(aircraft_id=track.id, first_seen=track.first_seen, observed_at=track.last_seen)
        calls = {}

        if self.registration is not None and self._registered.get(track.id) != track.first_seen:
            calls[SOURCE_REGISTRATION] = self.registration.lookup(track.id)
        if self.airspace is not None and track.position.has_fix:
            calls[SOURCE_AIRSPACE] = self.airspace.lookup(
                track.position.lat, track.position.lon, track.altitude
            )
        if self.squawk is not None and track.squawk and self._squawks.get(track.id) != track.squawk:
            calls[SOURCE_SQUAWK] = self.squawk.lookup(track.squawk)

        if not calls:
            return result

        outcomes = await asyncio.gather(
            *(self._call(source, track.id, lookup) for source, lookup in calls.items()),
            return_exceptions=True,
        )
        for source, outcome in zip(calls, outcomes):
            if isinstance(outcome, EnrichmentUnavailable):
                result.errors.append(source)
                continue
            if isinstance(outcome, BaseException):
                raise outcome

            if source == SOURCE_REGISTRATION:
                self._registered[track.id] = track.first_seen
                result.info = outcome
            elif source == SOURCE_AIRSPACE:
                result.airspaces = list(outcome or [])
            elif source == SOURCE_SQUAWK:
                self._squawks[track.id] = track.squawk
                result.squawk = track.squawk
                result.squawk_description = outcome

        return result

    async def enrich_all(self, tracks: Sequence[AircraftTrack]) -> List[Enrichment]:
        """Run the lookups for every aircraft of a tick concurrently."""
        return list(await asyncio.gather(*(self.enrich(track) for track in tracks)))

    def forget(self, aircraft_id: str) -> None:
        """Reset one-shot lookups so a reappearing aircraft is looked up again."""
        self._registered.pop(aircraft_id, None)
        self._squawks.pop(aircraft_id, None)
