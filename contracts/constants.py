"""
Shared constants for SkyEvents.

This module provides a single source of truth for:
- Event type names
- Emergency squawk codes
- Zone types and priorities
- Schema versions

All components should import from this module to ensure consistency.
"""

# Schema version
SCHEMA_VERSION = 1

# Event source tag
SOURCE_TRACKING_CORE = "skyevents-tracking"

# Aircraft presence events
EVENT_APPEARED = "appeared"
EVENT_UPDATED = "updated"
EVENT_DISAPPEARED = "disappeared"
EVENT_EMERGENCY = "emergency"

# Flight session events
EVENT_FLIGHT_STARTED = "flight:started"
EVENT_FLIGHT_UPDATED = "flight:updated"
EVENT_FLIGHT_ENDED = "flight:ended"

# Geofence events
EVENT_ZONE_ENTERED = "zone:entered"
EVENT_ZONE_EXITED = "zone:exited"

# Airport / maneuver events
EVENT_APPROACH_DETECTED = "approach:detected"
EVENT_DEPARTURE_DETECTED = "departure:detected"
EVENT_LANDING_DETECTED = "landing:detected"
EVENT_GROUND_MOVEMENT = "ground:movement"
EVENT_TAXI_MOVEMENT = "taxi:movement"
EVENT_PARKING_STATUS = "parking:status"
EVENT_HELICOPTER_ACTION = "helicopter:action"

# Smart alerts
EVENT_ALERT_GENERATED = "alert:generated"

# Emergency squawk codes
SQUAWK_HIJACK = "7500"
SQUAWK_RADIO_FAILURE = "7600"
SQUAWK_GENERAL_EMERGENCY = "7700"

DEFAULT_EMERGENCY_CODES = (SQUAWK_HIJACK, SQUAWK_RADIO_FAILURE, SQUAWK_GENERAL_EMERGENCY)

EMERGENCY_MEANINGS = {
    SQUAWK_HIJACK: "Hijack",
    SQUAWK_RADIO_FAILURE: "Radio Failure",
    SQUAWK_GENERAL_EMERGENCY: "General Emergency",
}

# Flight end reasons
END_REASON_LANDED = "landed"
END_REASON_DISAPPEARED = "disappeared"
END_REASON_TIMEOUT = "timeout"

# Violation status
VIOLATION_ACTIVE = "active"
VIOLATION_RESOLVED = "resolved"

# Priorities
PRIORITY_LOW = "low"
PRIORITY_MEDIUM = "medium"
PRIORITY_HIGH = "high"
PRIORITY_CRITICAL = "critical"

# Zone types
ZONE_TYPE_PRIORITIES = {
    "parking": PRIORITY_LOW,
    "taxiway": PRIORITY_MEDIUM,
    "runway": PRIORITY_HIGH,
    "approach": PRIORITY_HIGH,
    "departure": PRIORITY_HIGH,
    "emergency": PRIORITY_CRITICAL,
    "custom": PRIORITY_MEDIUM,
}
ZONE_TYPE_CUSTOM = "custom"

# Detection kinds
DETECTION_APPROACH = "approach"
DETECTION_DEPARTURE = "departure"
DETECTION_LANDING = "landing"
DETECTION_GROUND_MOVEMENT = "groundMovement"
DETECTION_TAXI = "taxi"
DETECTION_PARKING = "parking"
DETECTION_HELICOPTER_ACTION = "helicopterAction"
