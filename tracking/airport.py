"""
Airport and runway inference.

Heuristic classification of what an aircraft is doing around an airport:
approach, landing, departure, taxi, parking, ground movement and helicopter
actions. Every weight and threshold below is a tunable heuristic, not a
physical constant; confidences are clamped to [0, 1].
"""

import json
import logging
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Deque, Dict, List, Optional, Sequence, Set, Tuple

from shapely.geometry import shape

from tracking.config import EngineConfig
from tracking.events import EventType, TrackingEvent
from tracking.models import (
    AircraftTrack,
    Airport,
    DetectionEvent,
    DetectionKind,
    Runway,
    RunwayUsageSample,
)
from tracking.spatial import haversine_km, heading_difference

logger = logging.getLogger(__name__)

# Runway scoring
HEADING_WEIGHT = 0.7
PROXIMITY_WEIGHT = 0.3
HEADING_TOLERANCE_DEG = 45.0
PROXIMITY_RANGE_KM = 2.0
RUNWAY_SCORE_THRESHOLD = 0.5

# Ground classification (feet, knots)
ON_GROUND_ALTITUDE_FT = 50.0
TAXI_MAX_ALTITUDE_FT = 20.0
TAXI_MIN_SPEED_KT = 5.0
TAXI_MAX_SPEED_KT = 50.0
PARKED_MAX_ALTITUDE_FT = 10.0
PARKED_MAX_SPEED_KT = 5.0

# Helicopter heuristics (feet/minute, knots)
HELICOPTER_VERTICAL_RATE_FPM = 1000.0
HELICOPTER_MAX_SPEED_KT = 100.0
HELICOPTER_CLIMB_FPM = 300.0
HELICOPTER_HOVER_SPEED_KT = 20.0
HELICOPTER_LOW_ALTITUDE_FT = 500.0

# Landing
LANDING_MAX_ALTITUDE_FT = 100.0
LANDING_MAX_VERTICAL_RATE_FPM = 100.0
LANDING_MAX_SPEED_KT = 150.0
APPROACH_MEMORY = timedelta(minutes=5)

# Approach / departure confidence
BASE_CONFIDENCE = 0.5
VERTICAL_RATE_BONUS = 0.3
SPEED_BONUS = 0.2
APPROACH_DESCENT_FPM = 300.0
APPROACH_MAX_SPEED_KT = 180.0
DEPARTURE_CLIMB_FPM = 300.0
DEPARTURE_MIN_SPEED_KT = 100.0
FINAL_APPROACH_MARKER = "final_approach"

# Landing, taxi and ground movement confidence
RUNWAY_MATCH_BONUS = 0.3
DESCENDING_BONUS = 0.2
TAXI_SPEED_BAND_KT = (10.0, 30.0)
TAXI_SPEED_BONUS = 0.3
TAXI_RUNWAY_BONUS = 0.2
GROUND_ALTITUDE_BONUS = 0.3
GROUND_SPEED_BONUS = 0.2

# Parking and helicopter confidence
PARKING_BASE_CONFIDENCE = 0.6
STOPPED_SPEED_KT = 1.0
STOPPED_BONUS = 0.2
NEAR_TERMINAL_BONUS = 0.2
NEAR_TERMINAL_AREAS = ("terminal", "apron")
HELICOPTER_BASE_CONFIDENCE = 0.6
ROTORCRAFT_BONUS = 0.2
LOW_ALTITUDE_BONUS = 0.2

# Ground movement bands (km)
RUNWAY_APPROACH_BAND_KM = 0.5
TAXIWAY_BAND_KM = 1.0
TERMINAL_BAND_KM = 0.3
APRON_BAND_KM = 0.8
REMOTE_BAND_KM = 1.5


def clamp_confidence(value: float) -> float:
    return max(0.0, min(1.0, value))


def runway_key(airport: Airport, runway: Runway) -> str:
    return f"{airport.icao}/{runway.id}"


@dataclass(frozen=True)
class Airspace:
    """A named airspace polygon reported by the airspace-membership service."""
    id: str
    name: str
    type: str

    @property
    def is_final_approach(self) -> bool:
        return FINAL_APPROACH_MARKER in self.type.lower() or FINAL_APPROACH_MARKER in self.name.lower()


@dataclass(frozen=True)
class RunwayScore:
    runway: Runway
    score: float
    heading_score: float
    proximity_score: float
    distance_km: float


def load_airports(path: str) -> List[Airport]:
    """
    Load the static airport table from GeoJSON.

    Each feature's geometry locates the airport (polygons use their
    representative point); properties carry icao, name and runways.
    """
    with open(path) as f:
        data = json.load(f)

    airports = []
    for feature in data["features"]:
        geom = shape(feature["geometry"])
        if geom.geom_type != "Point":
            geom = geom.representative_point()
        props = feature["properties"]
        runways = [
            Runway(
                id=str(r["id"]),
                heading=float(r["heading"]),
                length_m=float(r.get("length_m", 0)),
                lat=float(r.get("lat", geom.y)),
                lon=float(r.get("lon", geom.x)),
                active=bool(r.get("active", False)),
            )
            for r in props.get("runways", [])
        ]
        airports.append(Airport(
            icao=props["icao"].upper(),
            name=props.get("name", props["icao"]),
            lat=geom.y,
            lon=geom.x,
            runways=runways,
        ))

    logger.info(f"Loaded {len(airports)} airports from {path}")
    return airports


def score_runway(track_heading: float, lat: float, lon: float, runway: Runway) -> RunwayScore:
    distance_km = haversine_km(lat, lon, runway.lat, runway.lon)
    diff = heading_difference(track_heading, runway.heading)
    heading_score = max(0.0, 1 - diff / HEADING_TOLERANCE_DEG)
    proximity_score = max(0.0, 1 - distance_km / PROXIMITY_RANGE_KM)
    return RunwayScore(
        runway=runway,
        score=HEADING_WEIGHT * heading_score + PROXIMITY_WEIGHT * proximity_score,
        heading_score=heading_score,
        proximity_score=proximity_score,
        distance_km=distance_km,
    )


def is_on_ground(track: AircraftTrack) -> bool:
    return track.altitude is not None and track.altitude < ON_GROUND_ALTITUDE_FT


def is_taxiing(track: AircraftTrack) -> bool:
    if track.altitude is None or track.ground_speed is None:
        return False
    return (
        track.altitude < TAXI_MAX_ALTITUDE_FT
        and TAXI_MIN_SPEED_KT < track.ground_speed < TAXI_MAX_SPEED_KT
    )


def is_parked(track: AircraftTrack) -> bool:
    if track.altitude is None or track.ground_speed is None:
        return False
    return track.altitude < PARKED_MAX_ALTITUDE_FT and track.ground_speed < PARKED_MAX_SPEED_KT


def is_helicopter(track: AircraftTrack, rotorcraft: Optional[bool] = None) -> bool:
    """Registration data wins when known; otherwise climb/descent rate at low speed."""
    if rotorcraft is not None:
        return rotorcraft
    if track.vertical_rate is None or track.ground_speed is None:
        return False
    return (
        abs(track.vertical_rate) > HELICOPTER_VERTICAL_RATE_FPM
        and track.ground_speed < HELICOPTER_MAX_SPEED_KT
    )


def determine_helicopter_action(track: AircraftTrack) -> str:
    speed = track.ground_speed or 0.0
    vrate = track.vertical_rate or 0.0
    if is_on_ground(track) and speed < PARKED_MAX_SPEED_KT:
        return "landed"
    if vrate > HELICOPTER_CLIMB_FPM:
        return "takeoff"
    if vrate < -HELICOPTER_CLIMB_FPM:
        return "landing"
    if speed < HELICOPTER_HOVER_SPEED_KT:
        return "hovering"
    return "transit"


def determine_ground_movement_type(track: AircraftTrack) -> str:
    if is_parked(track):
        return "parked"
    if is_taxiing(track):
        return "taxiing"
    speed = track.ground_speed or 0.0
    if speed >= TAXI_MAX_SPEED_KT:
        return "runway_roll"
    if speed <= TAXI_MIN_SPEED_KT:
        return "stationary"
    return "ground_movement"


def determine_taxi_phase(distance_to_runway_km: Optional[float]) -> str:
    if distance_to_runway_km is None:
        return "apron"
    if distance_to_runway_km < RUNWAY_APPROACH_BAND_KM:
        return "runway_approach"
    if distance_to_runway_km < TAXIWAY_BAND_KM:
        return "taxiway"
    return "apron"


def determine_parking_area(distance_to_center_km: float) -> str:
    if distance_to_center_km < TERMINAL_BAND_KM:
        return "terminal"
    if distance_to_center_km < APRON_BAND_KM:
        return "apron"
    if distance_to_center_km < REMOTE_BAND_KM:
        return "remote"
    return "maintenance"


def approach_confidence(track: AircraftTrack) -> float:
    confidence = BASE_CONFIDENCE
    if track.vertical_rate is not None and track.vertical_rate < -APPROACH_DESCENT_FPM:
        confidence += VERTICAL_RATE_BONUS
    if track.ground_speed is not None and track.ground_speed < APPROACH_MAX_SPEED_KT:
        confidence += SPEED_BONUS
    return clamp_confidence(confidence)


def departure_confidence(track: AircraftTrack) -> float:
    confidence = BASE_CONFIDENCE
    if track.vertical_rate is not None and track.vertical_rate > DEPARTURE_CLIMB_FPM:
        confidence += VERTICAL_RATE_BONUS
    if track.ground_speed is not None and track.ground_speed > DEPARTURE_MIN_SPEED_KT:
        confidence += SPEED_BONUS
    return clamp_confidence(confidence)


def landing_confidence(track: AircraftTrack, runway: Optional[Runway]) -> float:
    confidence = BASE_CONFIDENCE
    if runway is not None:
        confidence += RUNWAY_MATCH_BONUS
    if track.vertical_rate is not None and track.vertical_rate < 0:
        confidence += DESCENDING_BONUS
    return clamp_confidence(confidence)


def taxi_confidence(track: AircraftTrack, runway: Optional[Runway]) -> float:
    confidence = BASE_CONFIDENCE
    low, high = TAXI_SPEED_BAND_KT
    if track.ground_speed is not None and low <= track.ground_speed <= high:
        confidence += TAXI_SPEED_BONUS
    if runway is not None:
        confidence += TAXI_RUNWAY_BONUS
    return clamp_confidence(confidence)


def parking_confidence(track: AircraftTrack, area: str) -> float:
    confidence = PARKING_BASE_CONFIDENCE
    if track.ground_speed is not None and track.ground_speed < STOPPED_SPEED_KT:
        confidence += STOPPED_BONUS
    if area in NEAR_TERMINAL_AREAS:
        confidence += NEAR_TERMINAL_BONUS
    return clamp_confidence(confidence)


def ground_movement_confidence(track: AircraftTrack) -> float:
    confidence = BASE_CONFIDENCE
    if track.altitude is not None and track.altitude < TAXI_MAX_ALTITUDE_FT:
        confidence += GROUND_ALTITUDE_BONUS
    if track.ground_speed is not None and track.ground_speed < TAXI_MAX_SPEED_KT:
        confidence += GROUND_SPEED_BONUS
    return clamp_confidence(confidence)


def helicopter_confidence(track: AircraftTrack, rotorcraft: Optional[bool]) -> float:
    confidence = HELICOPTER_BASE_CONFIDENCE
    if rotorcraft:
        confidence += ROTORCRAFT_BONUS
    if track.altitude is not None and track.altitude < HELICOPTER_LOW_ALTITUDE_FT:
        confidence += LOW_ALTITUDE_BONUS
    return clamp_confidence(confidence)


class AirportInferenceEngine:
    """
    Per-aircraft maneuver classification around the airports of a static table.

    Ground, taxi, parking and helicopter events are edge-triggered: one event
    when the classification of an aircraft changes, not one per tick.
    """

    def __init__(self, config: EngineConfig, airports: Sequence[Airport]):
        self.config = config
        self.airports = list(airports)
        self.home_airport = None
        if config.home_airport:
            self.home_airport = next((a for a in self.airports if a.icao == config.home_airport), None)
            if self.home_airport is None:
                logger.warning(f"Home airport {config.home_airport} is not in the airport table")

        self.usage: Deque[RunwayUsageSample] = deque()
        self.last_approach: Dict[str, datetime] = {}
        self.rotorcraft: Dict[str, bool] = {}
        self._final_approach: Dict[str, Set[str]] = {}
        self._ground_state: Dict[str, Tuple[str, str]] = {}

    # ------------------------------------------------------------------
    # Airport and runway selection
    # ------------------------------------------------------------------

    def select_airport(self, lat: float, lon: float) -> Optional[Airport]:
        radius = self.config.airport_radius_km
        home = self.home_airport
        if home is not None and haversine_km(lat, lon, home.lat, home.lon) <= radius:
            return home

        nearest, nearest_km = None, None
        for airport in self.airports:
            distance = haversine_km(lat, lon, airport.lat, airport.lon)
            if distance <= radius and (nearest_km is None or distance < nearest_km):
                nearest, nearest_km = airport, distance
        return nearest

    def select_runway(self, track: AircraftTrack, airport: Airport) -> Optional[RunwayScore]:
        if track.heading is None or not track.position.has_fix:
            return None
        best = None
        for runway in airport.runways:
            scored = score_runway(track.heading, track.position.lat, track.position.lon, runway)
            if best is None or scored.score > best.score:
                best = scored
        if best is None or best.score <= RUNWAY_SCORE_THRESHOLD:
            return None
        return best

    def record_runway_usage(self, aircraft_id: str, airport: Airport, runway: Runway, now: datetime) -> None:
        self.usage.append(RunwayUsageSample(aircraft_id, runway_key(airport, runway), now))
        self.refresh_active_runways(now)

    def runway_usage(self, now: datetime) -> Dict[str, int]:
        """Sample counts per runway ("ICAO/id") within the rolling window."""
        self.refresh_active_runways(now)
        return dict(Counter(sample.runway_id for sample in self.usage))

    def _prune_usage(self, now: datetime) -> None:
        cutoff = now - self.config.runway_usage_window
        while self.usage and self.usage[0].timestamp < cutoff:
            self.usage.popleft()

    def refresh_active_runways(self, now: datetime) -> None:
        """Flag the busiest runway of each airport within the window; an airport with no samples has none."""
        self._prune_usage(now)
        counts: Counter = Counter()
        latest: Dict[str, datetime] = {}
        for sample in self.usage:
            counts[sample.runway_id] += 1
            latest[sample.runway_id] = sample.timestamp

        for airport in self.airports:
            keys = {r.id: runway_key(airport, r) for r in airport.runways}
            used = [r for r in airport.runways if counts[keys[r.id]]]
            busiest = None
            if used:
                busiest = max(used, key=lambda r: (counts[keys[r.id]], latest[keys[r.id]]))
            for runway in airport.runways:
                runway.active = runway is busiest

    # ------------------------------------------------------------------
    # Per-tick inference
    # ------------------------------------------------------------------

    def set_rotorcraft(self, aircraft_id: str, rotorcraft: Optional[bool]) -> None:
        if rotorcraft is None:
            self.rotorcraft.pop(aircraft_id, None)
        else:
            self.rotorcraft[aircraft_id] = rotorcraft

    def is_likely_landing(self, track: AircraftTrack, now: datetime) -> bool:
        if track.altitude is None or track.ground_speed is None:
            return False
        if track.altitude > LANDING_MAX_ALTITUDE_FT:
            return False
        if track.vertical_rate is not None and track.vertical_rate > LANDING_MAX_VERTICAL_RATE_FPM:
            return False
        if track.ground_speed > LANDING_MAX_SPEED_KT:
            return False
        approached_at = self.last_approach.get(track.id)
        return approached_at is not None and now - approached_at <= APPROACH_MEMORY

    def evaluate(self, track: AircraftTrack, now: datetime) -> List[TrackingEvent]:
        """Classify one reconciled track. Tracks without position or altitude are skipped."""
        if not track.position.has_fix or track.altitude is None:
            logger.debug(f"Skipping airport inference for {track.id}: partial data")
            return []

        airport = self.select_airport(track.position.lat, track.position.lon)
        if airport is None:
            self._ground_state.pop(track.id, None)
            return []

        scored = self.select_runway(track, airport)
        runway = scored.runway if scored else None
        if runway is not None:
            self.record_runway_usage(track.id, airport, runway, now)

        rotorcraft = self.rotorcraft.get(track.id)
        if is_helicopter(track, rotorcraft):
            action = determine_helicopter_action(track)
            detection = DetectionEvent(
                kind=DetectionKind.HELICOPTER_ACTION,
                aircraft_id=track.id,
                confidence=helicopter_confidence(track, rotorcraft),
                timestamp=now,
                airport=airport,
                runway=runway,
                metadata={"action": action},
            )
            return self._on_state_change(track, ("helicopter", action), detection)

        events = []
        if self.is_likely_landing(track, now):
            del self.last_approach[track.id]
            events.append(self._emit(track, DetectionEvent(
                kind=DetectionKind.LANDING,
                aircraft_id=track.id,
                confidence=landing_confidence(track, runway),
                timestamp=now,
                airport=airport,
                runway=runway,
            )))
            logger.info(f"Landing detected: {track.id} at {airport.icao} runway {runway.id if runway else 'unknown'}")

        if is_parked(track):
            area = determine_parking_area(haversine_km(
                track.position.lat, track.position.lon, airport.lat, airport.lon
            ))
            detection = DetectionEvent(
                kind=DetectionKind.PARKING,
                aircraft_id=track.id,
                confidence=parking_confidence(track, area),
                timestamp=now,
                airport=airport,
                metadata={"area": area},
            )
            events.extend(self._on_state_change(track, ("parking", area), detection))
        elif is_taxiing(track):
            phase = determine_taxi_phase(self._nearest_runway_km(track, airport))
            detection = DetectionEvent(
                kind=DetectionKind.TAXI,
                aircraft_id=track.id,
                confidence=taxi_confidence(track, runway),
                timestamp=now,
                airport=airport,
                runway=runway,
                metadata={"phase": phase},
            )
            events.extend(self._on_state_change(track, ("taxi", phase), detection))
        elif is_on_ground(track):
            movement = determine_ground_movement_type(track)
            detection = DetectionEvent(
                kind=DetectionKind.GROUND_MOVEMENT,
                aircraft_id=track.id,
                confidence=ground_movement_confidence(track),
                timestamp=now,
                airport=airport,
                runway=runway,
                metadata={"movement_type": movement},
            )
            events.extend(self._on_state_change(track, ("ground", movement), detection))
        else:
            self._ground_state.pop(track.id, None)

        return events

    def apply_airspaces(self, track: AircraftTrack, airspaces: Sequence[Airspace], now: datetime) -> List[TrackingEvent]:
        """Derive approach/departure events from final-approach airspace membership changes."""
        current = {a.id: a for a in airspaces if a.is_final_approach}
        previous = self._final_approach.get(track.id, set())
        self._final_approach[track.id] = set(current)

        entered = sorted(set(current) - previous)
        exited = sorted(previous - set(current))
        if not entered and not exited:
            return []

        airport = None
        runway = None
        if track.position.has_fix:
            airport = self.select_airport(track.position.lat, track.position.lon)
            if airport is not None:
                scored = self.select_runway(track, airport)
                runway = scored.runway if scored else None

        events = []
        for airspace_id in entered:
            self.last_approach[track.id] = now
            airspace = current[airspace_id]
            events.append(self._emit(track, DetectionEvent(
                kind=DetectionKind.APPROACH,
                aircraft_id=track.id,
                confidence=approach_confidence(track),
                timestamp=now,
                airport=airport,
                runway=runway,
                metadata={"airspace": {"id": airspace.id, "name": airspace.name, "type": airspace.type}},
            )))
            logger.info(f"Approach detected: {track.id} entered {airspace.name}")

        for airspace_id in exited:
            events.append(self._emit(track, DetectionEvent(
                kind=DetectionKind.DEPARTURE,
                aircraft_id=track.id,
                confidence=departure_confidence(track),
                timestamp=now,
                airport=airport,
                runway=runway,
                metadata={"airspace": {"id": airspace_id}},
            )))
            logger.info(f"Departure detected: {track.id} left {airspace_id}")

        return events

    def forget(self, aircraft_id: str) -> None:
        """Drop per-aircraft state when an aircraft leaves the track table."""
        self.last_approach.pop(aircraft_id, None)
        self.rotorcraft.pop(aircraft_id, None)
        self._final_approach.pop(aircraft_id, None)
        self._ground_state.pop(aircraft_id, None)

    def _nearest_runway_km(self, track: AircraftTrack, airport: Airport) -> Optional[float]:
        distances = [
            haversine_km(track.position.lat, track.position.lon, r.lat, r.lon) for r in airport.runways
        ]
        return min(distances) if distances else None

    def _on_state_change(
        self, track: AircraftTrack, state: Tuple[str, str], detection: DetectionEvent
    ) -> List[TrackingEvent]:
        if self._ground_state.get(track.id) == state:
            return []
        self._ground_state[track.id] = state
        logger.debug(f"{track.id} is now {state[0]}:{state[1]}")
        return [self._emit(track, detection)]

    @staticmethod
    def _emit(track: AircraftTrack, detection: DetectionEvent) -> TrackingEvent:
        return TrackingEvent(
            type=DETECTION_EVENT_TYPES[detection.kind],
            aircraft_id=track.id,
            timestamp=detection.timestamp,
            payload={**detection.to_payload(), "aircraft": track.to_dict()},
        )


DETECTION_EVENT_TYPES = {
    DetectionKind.APPROACH: EventType.APPROACH_DETECTED,
    DetectionKind.DEPARTURE: EventType.DEPARTURE_DETECTED,
    DetectionKind.LANDING: EventType.LANDING_DETECTED,
    DetectionKind.GROUND_MOVEMENT: EventType.GROUND_MOVEMENT,
    DetectionKind.TAXI: EventType.TAXI_MOVEMENT,
    DetectionKind.PARKING: EventType.PARKING_STATUS,
    DetectionKind.HELICOPTER_ACTION: EventType.HELICOPTER_ACTION,
}
