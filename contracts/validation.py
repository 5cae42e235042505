"""
Validation library for SkyEvents message contracts.

Provides Pydantic models for the raw surveillance reports consumed by the
tracking core and for the event envelopes it publishes.
"""

import math
from typing import Any, Optional, Literal
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, AliasChoices, ValidationError, field_validator
from contracts.constants import (
    SCHEMA_VERSION,
    SOURCE_TRACKING_CORE,
    EVENT_APPEARED,
    EVENT_UPDATED,
    EVENT_DISAPPEARED,
    EVENT_EMERGENCY,
    EVENT_FLIGHT_STARTED,
    EVENT_FLIGHT_UPDATED,
    EVENT_FLIGHT_ENDED,
    EVENT_ZONE_ENTERED,
    EVENT_ZONE_EXITED,
    EVENT_APPROACH_DETECTED,
    EVENT_DEPARTURE_DETECTED,
    EVENT_LANDING_DETECTED,
    EVENT_GROUND_MOVEMENT,
    EVENT_TAXI_MOVEMENT,
    EVENT_PARKING_STATUS,
    EVENT_HELICOPTER_ACTION,
    EVENT_ALERT_GENERATED,
)


def _to_float(value: Any) -> Optional[float]:
    """Coerce a loosely-typed numeric field. Unusable values become None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


# ============================================================================
# Raw Surveillance Report
# ============================================================================

class RawReport(BaseModel):
    """
    One aircraft report from a snapshot.

    Accepts the camelCase names of the snapshot interface, snake_case, and the
    dump1090 aircraft.json names. Missing or malformed numeric fields are
    normalized to None; only a missing id invalidates the report.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(validation_alias=AliasChoices("id", "icao24", "hex"))
    callsign: Optional[str] = Field(None, validation_alias=AliasChoices("callsign", "flight"))
    lat: Optional[float] = Field(None, validation_alias=AliasChoices("lat", "latitude"))
    lon: Optional[float] = Field(None, validation_alias=AliasChoices("lon", "longitude"))
    altitude: Optional[float] = Field(
        None, validation_alias=AliasChoices("altitude", "alt_baro", "alt_geom")
    )
    ground_speed: Optional[float] = Field(
        None, validation_alias=AliasChoices("groundSpeed", "ground_speed", "speed", "gs")
    )
    heading: Optional[float] = Field(None, validation_alias=AliasChoices("heading", "track"))
    vertical_rate: Optional[float] = Field(
        None, validation_alias=AliasChoices("verticalRate", "vertical_rate", "baro_rate")
    )
    squawk: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def normalize_id(cls, v):
        """Normalize aircraft id to stripped uppercase."""
        if v is None:
            raise ValueError("aircraft id is required")
        v = str(v).strip().upper()
        if not v:
            raise ValueError("aircraft id is blank")
        return v

    @field_validator("callsign", mode="before")
    @classmethod
    def normalize_callsign(cls, v):
        if v is None:
            return None
        return str(v).strip() or None

    @field_validator("altitude", mode="before")
    @classmethod
    def parse_altitude(cls, v):
        """dump1090 reports 'ground' instead of a barometric altitude."""
        if isinstance(v, str) and v.strip().lower() == "ground":
            return 0.0
        return _to_float(v)

    @field_validator("ground_speed", "heading", "vertical_rate", mode="before")
    @classmethod
    def parse_number(cls, v):
        return _to_float(v)

    @field_validator("lat", mode="before")
    @classmethod
    def parse_lat(cls, v):
        number = _to_float(v)
        if number is None or not -90 <= number <= 90:
            return None
        return number

    @field_validator("lon", mode="before")
    @classmethod
    def parse_lon(cls, v):
        number = _to_float(v)
        if number is None or not -180 <= number <= 180:
            return None
        return number

    @field_validator("squawk", mode="before")
    @classmethod
    def normalize_squawk(cls, v):
        """Squawk codes are four octal digits; integers are zero-padded."""
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, int):
            return f"{v:04d}"
        return str(v).strip() or None


# ============================================================================
# Event Envelope
# ============================================================================

EventTypeName = Literal[
    "appeared",
    "updated",
    "disappeared",
    "emergency",
    "flight:started",
    "flight:updated",
    "flight:ended",
    "zone:entered",
    "zone:exited",
    "approach:detected",
    "departure:detected",
    "landing:detected",
    "ground:movement",
    "taxi:movement",
    "parking:status",
    "helicopter:action",
    "alert:generated",
]

EVENT_TYPES = (
    EVENT_APPEARED,
    EVENT_UPDATED,
    EVENT_DISAPPEARED,
    EVENT_EMERGENCY,
    EVENT_FLIGHT_STARTED,
    EVENT_FLIGHT_UPDATED,
    EVENT_FLIGHT_ENDED,
    EVENT_ZONE_ENTERED,
    EVENT_ZONE_EXITED,
    EVENT_APPROACH_DETECTED,
    EVENT_DEPARTURE_DETECTED,
    EVENT_LANDING_DETECTED,
    EVENT_GROUND_MOVEMENT,
    EVENT_TAXI_MOVEMENT,
    EVENT_PARKING_STATUS,
    EVENT_HELICOPTER_ACTION,
    EVENT_ALERT_GENERATED,
)


class EventEnvelope(BaseModel):
    """Envelope for every event forwarded by the aggregator."""
    schema_version: Literal[1] = SCHEMA_VERSION
    type: EventTypeName
    sequence: int = Field(ge=1, description="Monotonic per-aggregator sequence number")
    source: str = SOURCE_TRACKING_CORE
    aircraft_id: str = Field(min_length=1)
    timestamp: datetime
    payload: dict = Field(default_factory=dict, description="Event-specific details")

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, v):
        """Parse ISO 8601 datetime string."""
        if isinstance(v, str):
            return datetime.fromisoformat(v.replace("Z", "+00:00"))
        return v


# ============================================================================
# Validation Functions
# ============================================================================

def validate_raw_report(data: Any) -> tuple[bool, Optional[RawReport], Optional[str]]:
    """
    Validate a raw surveillance report.

    Returns:
        (is_valid, report_or_none, error_message_or_none)
    """
    try:
        report = RawReport.model_validate(data)
        return True, report, None
    except ValidationError as e:
        return False, None, str(e)


def validate_event_envelope(data: dict) -> tuple[bool, Optional[EventEnvelope], Optional[str]]:
    """
    Validate EventEnvelope.

    Returns:
        (is_valid, envelope_or_none, error_message_or_none)
    """
    try:
        envelope = EventEnvelope.model_validate(data)
        return True, envelope, None
    except ValidationError as e:
        return False, None, str(e)
