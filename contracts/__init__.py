"""
SkyEvents Contracts Package

Provides shared constants and validation for event contracts.
"""

from contracts.constants import *
from contracts.validation import (
    RawReport,
    EventEnvelope,
    EVENT_TYPES,
    validate_raw_report,
    validate_event_envelope,
)

__all__ = [
    # Constants
    "SCHEMA_VERSION",
    "SOURCE_TRACKING_CORE",
    "DEFAULT_EMERGENCY_CODES",
    "EMERGENCY_MEANINGS",
    "ZONE_TYPE_PRIORITIES",
    # Models
    "RawReport",
    "EventEnvelope",
    "EVENT_TYPES",
    # Validators
    "validate_raw_report",
    "validate_event_envelope",
]
