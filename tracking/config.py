"""
Engine configuration.

Values come from keyword arguments or from the environment (see from_env).
Durations are timedeltas; plain numbers are read as seconds. Invalid values
raise ConfigurationError, which is fatal at startup.
"""

import os
import logging
from datetime import timedelta
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from contracts.constants import DEFAULT_EMERGENCY_CODES
from tracking.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_AIRPORTS_FILE = os.path.join(os.path.dirname(__file__), "data", "airports.geojson")


class EngineConfig(BaseModel):
    """Thresholds and timers consumed by the tracking core."""
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="forbid")

    # Flight detection
    max_ground_speed: float = Field(30.0, ge=0, alias="maxGroundSpeed", description="knots")
    min_altitude: float = Field(500.0, ge=0, alias="minAltitude", description="feet")
    vertical_rate_threshold: float = Field(
        100.0, ge=0, alias="verticalRateThreshold", description="feet/minute"
    )
    min_flight_duration: timedelta = Field(timedelta(seconds=30), alias="minFlightDuration")
    flight_end_timeout: timedelta = Field(timedelta(minutes=5), alias="flightEndTimeout")
    emit_flight_updates: bool = Field(False, alias="emitFlightUpdates")

    # Emergencies
    emergency_codes: Tuple[str, ...] = Field(DEFAULT_EMERGENCY_CODES, alias="emergencyCodes")

    # Airports
    home_airport: Optional[str] = Field(None, alias="homeAirport")
    airports_file: str = Field(DEFAULT_AIRPORTS_FILE, alias="airportsFile")
    airport_radius_km: float = Field(10.0, gt=0, alias="airportRadiusKm")
    runway_usage_window: timedelta = Field(timedelta(minutes=30), alias="runwayUsageWindow")

    # Geofencing
    violation_retention: timedelta = Field(timedelta(hours=24), alias="violationRetention")

    # Smart alerts
    smart_alerts_enabled: bool = Field(False, alias="smartAlertsEnabled")

    # Scheduling and enrichment (seconds)
    poll_interval: float = Field(5.0, gt=0, alias="pollInterval")
    sweep_interval: float = Field(30.0, gt=0, alias="sweepInterval")
    purge_interval: float = Field(3600.0, gt=0, alias="purgeInterval")
    enrichment_timeout: float = Field(2.0, gt=0, alias="enrichmentTimeout")

    @field_validator(
        "min_flight_duration",
        "flight_end_timeout",
        "runway_usage_window",
        "violation_retention",
    )
    @classmethod
    def validate_duration(cls, v: timedelta, info) -> timedelta:
        if v < timedelta(0):
            raise ValueError(f"{info.field_name} must not be negative")
        if info.field_name != "min_flight_duration" and v == timedelta(0):
            raise ValueError(f"{info.field_name} must be positive")
        return v

    @field_validator("emergency_codes", mode="before")
    @classmethod
    def parse_emergency_codes(cls, v):
        """Accept a comma-separated string or any iterable of codes."""
        if isinstance(v, str):
            v = [code for code in v.split(",")]
        codes = tuple(str(code).strip() for code in v if str(code).strip())
        if not codes:
            raise ValueError("at least one emergency code is required")
        for code in codes:
            if len(code) != 4 or not code.isdigit():
                raise ValueError(f"invalid squawk code: {code!r}")
        return codes

    @field_validator("home_airport")
    @classmethod
    def normalize_home_airport(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip().upper() or None

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "EngineConfig":
        return from_env(environ)


def build_config(data: Optional[dict] = None, **overrides) -> EngineConfig:
    """Validate configuration values. Raises ConfigurationError."""
    values = dict(data or {})
    values.update(overrides)
    try:
        return EngineConfig(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid engine configuration: {e}") from e


# Environment variable -> config field
ENV_VARS = {
    "MAX_GROUND_SPEED_KT": "max_ground_speed",
    "MIN_ALTITUDE_FT": "min_altitude",
    "VERTICAL_RATE_THRESHOLD_FPM": "vertical_rate_threshold",
    "MIN_FLIGHT_DURATION_S": "min_flight_duration",
    "FLIGHT_END_TIMEOUT_S": "flight_end_timeout",
    "EMIT_FLIGHT_UPDATES": "emit_flight_updates",
    "EMERGENCY_CODES": "emergency_codes",
    "HOME_AIRPORT": "home_airport",
    "AIRPORTS_FILE": "airports_file",
    "AIRPORT_RADIUS_KM": "airport_radius_km",
    "SMART_ALERTS_ENABLED": "smart_alerts_enabled",
    "POLL_INTERVAL_SECONDS": "poll_interval",
    "SWEEP_INTERVAL_SECONDS": "sweep_interval",
    "PURGE_INTERVAL_SECONDS": "purge_interval",
    "ENRICHMENT_TIMEOUT_SECONDS": "enrichment_timeout",
}

DURATION_FIELDS = {"min_flight_duration", "flight_end_timeout"}


def from_env(environ: Optional[dict] = None) -> EngineConfig:
    """Build configuration from environment variables, defaults for unset ones."""
    environ = os.environ if environ is None else environ
    values = {}
    for var, field_name in ENV_VARS.items():
        raw = environ.get(var)
        if raw is None or raw == "":
            continue
        if field_name in DURATION_FIELDS:
            try:
                raw = float(raw)
            except ValueError as e:
                raise ConfigurationError(f"{var} must be a number of seconds, got {raw!r}") from e
        values[field_name] = raw

    config = build_config(values)
    logger.info(
        f"Engine config: maxGroundSpeed={config.max_ground_speed}kt "
        f"minAltitude={config.min_altitude}ft "
        f"minFlightDuration={config.min_flight_duration.total_seconds()}s "
        f"flightEndTimeout={config.flight_end_timeout.total_seconds()}s "
        f"homeAirport={config.home_airport}"
    )
    return config
