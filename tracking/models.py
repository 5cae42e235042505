"""
Domain models for the tracking core.

Units throughout: altitude in feet, ground speed in knots, vertical rate in
feet per minute, headings in degrees true.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, List

from contracts.constants import (
    END_REASON_LANDED,
    END_REASON_DISAPPEARED,
    END_REASON_TIMEOUT,
    VIOLATION_ACTIVE,
    VIOLATION_RESOLVED,
    DETECTION_APPROACH,
    DETECTION_DEPARTURE,
    DETECTION_LANDING,
    DETECTION_GROUND_MOVEMENT,
    DETECTION_TAXI,
    DETECTION_PARKING,
    DETECTION_HELICOPTER_ACTION,
)


class EndReason(str, Enum):
    LANDED = END_REASON_LANDED
    DISAPPEARED = END_REASON_DISAPPEARED
    TIMEOUT = END_REASON_TIMEOUT


class ViolationStatus(str, Enum):
    ACTIVE = VIOLATION_ACTIVE
    RESOLVED = VIOLATION_RESOLVED


class DetectionKind(str, Enum):
    APPROACH = DETECTION_APPROACH
    DEPARTURE = DETECTION_DEPARTURE
    LANDING = DETECTION_LANDING
    GROUND_MOVEMENT = DETECTION_GROUND_MOVEMENT
    TAXI = DETECTION_TAXI
    PARKING = DETECTION_PARKING
    HELICOPTER_ACTION = DETECTION_HELICOPTER_ACTION


@dataclass(frozen=True)
class Position:
    lat: Optional[float] = None
    lon: Optional[float] = None
    altitude: Optional[float] = None

    @property
    def has_fix(self) -> bool:
        return self.lat is not None and self.lon is not None

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lon": self.lon, "altitude": self.altitude}


@dataclass(frozen=True)
class Velocity:
    ground_speed: Optional[float] = None
    track: Optional[float] = None
    vertical_rate: Optional[float] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class AircraftTrack:
    """Latest reconciled state of one aircraft. Replaced wholesale every tick."""
    id: str
    position: Position
    velocity: Velocity
    first_seen: datetime
    last_seen: datetime
    last_update: datetime
    callsign: Optional[str] = None
    squawk: Optional[str] = None
    emergency: bool = False

    @property
    def altitude(self) -> Optional[float]:
        return self.position.altitude

    @property
    def ground_speed(self) -> Optional[float]:
        return self.velocity.ground_speed

    @property
    def vertical_rate(self) -> Optional[float]:
        return self.velocity.vertical_rate

    @property
    def heading(self) -> Optional[float]:
        return self.velocity.track

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "callsign": self.callsign,
            "position": self.position.to_dict(),
            "velocity": self.velocity.to_dict(),
            "squawk": self.squawk,
            "emergency": self.emergency,
            "first_seen": self.first_seen.isoformat(),
            "last_seen": self.last_seen.isoformat(),
        }


@dataclass
class FlightSession:
    """Continuous interval during which an aircraft is classified airborne."""
    session_id: int
    aircraft_id: str
    start_time: datetime
    start_position: Position
    last_position: Position
    last_update: datetime
    callsign: Optional[str] = None
    end_time: Optional[datetime] = None
    end_position: Optional[Position] = None
    duration_ms: Optional[int] = None
    end_reason: Optional[EndReason] = None

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "aircraft_id": self.aircraft_id,
            "callsign": self.callsign,
            "start_time": self.start_time.isoformat(),
            "start_position": self.start_position.to_dict(),
            "last_position": self.last_position.to_dict(),
            "last_update": self.last_update.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "end_position": self.end_position.to_dict() if self.end_position else None,
            "duration_ms": self.duration_ms,
            "end_reason": self.end_reason.value if self.end_reason else None,
        }


@dataclass
class Zone:
    id: str
    name: str
    type: str
    polygon: List[dict]
    active: bool = True
    properties: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "polygon": [dict(v) for v in self.polygon],
            "active": self.active,
            "properties": dict(self.properties),
        }


@dataclass
class ZoneViolation:
    id: str
    zone_id: str
    aircraft_id: str
    entered_at: datetime
    status: ViolationStatus = ViolationStatus.ACTIVE
    resolved_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "zone_id": self.zone_id,
            "aircraft_id": self.aircraft_id,
            "status": self.status.value,
            "entered_at": self.entered_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }


@dataclass
class Runway:
    id: str
    heading: float
    length_m: float
    lat: float
    lon: float
    active: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Airport:
    icao: str
    name: str
    lat: float
    lon: float
    runways: List[Runway] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"icao": self.icao, "name": self.name, "lat": self.lat, "lon": self.lon}


@dataclass(frozen=True)
class RunwayUsageSample:
    aircraft_id: str
    runway_id: str
    timestamp: datetime


@dataclass
class DetectionEvent:
    kind: DetectionKind
    aircraft_id: str
    confidence: float
    timestamp: datetime
    airport: Optional[Airport] = None
    runway: Optional[Runway] = None
    metadata: dict = field(default_factory=dict)

    def to_payload(self) -> dict:
        return {
            "kind": self.kind.value,
            "confidence": self.confidence,
            "airport": self.airport.to_dict() if self.airport else None,
            "runway": self.runway.id if self.runway else None,
            **self.metadata,
        }


@dataclass
class EmergencyRecord:
    aircraft_id: str
    squawk: str
    meaning: str
    priority: str
    detected_at: datetime
    callsign: Optional[str] = None
    status: str = "active"
    resolved_at: Optional[datetime] = None
    description: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "aircraft_id": self.aircraft_id,
            "callsign": self.callsign,
            "squawk": self.squawk,
            "meaning": self.meaning,
            "description": self.description,
            "priority": self.priority,
            "status": self.status,
            "detected_at": self.detected_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }
