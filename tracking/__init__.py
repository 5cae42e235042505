"""
SkyEvents tracking core.

Turns periodic aircraft surveillance snapshots into typed domain events.
"""

from tracking.aggregator import EventAggregator
from tracking.config import EngineConfig, build_config, from_env
from tracking.engine import TrackingEngine
from tracking.errors import ConfigurationError, EnrichmentUnavailable, InputError, ZoneNotFoundError
from tracking.events import EventType, TrackingEvent
from tracking.geofence import ZoneRegistry
from tracking.runner import EngineRunner

__all__ = [
    "EventAggregator",
    "EngineConfig",
    "build_config",
    "from_env",
    "TrackingEngine",
    "ConfigurationError",
    "EnrichmentUnavailable",
    "InputError",
    "ZoneNotFoundError",
    "EventType",
    "TrackingEvent",
    "ZoneRegistry",
    "EngineRunner",
]
