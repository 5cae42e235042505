"""
Contract tests for the tracking core.

Validates raw report parsing and the event envelope schema against the
example payloads in contracts/examples.
"""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from contracts.validation import validate_raw_report, validate_event_envelope, EVENT_TYPES
from contracts.constants import SCHEMA_VERSION, SOURCE_TRACKING_CORE, EVENT_FLIGHT_ENDED
from tracking.events import EventType, TrackingEvent


def load_example(filename: str) -> dict:
    """Load example JSON file."""
    example_path = Path(__file__).parent.parent.parent / "contracts" / "examples" / filename
    with open(example_path) as f:
        return json.load(f)


class TestRawReportContract:
    """Raw snapshot reports in the accepted naming schemes."""

    def test_raw_report_example_validates(self):
        """Test that the example raw report validates."""
        example = load_example("raw_report.json")
        is_valid, report, error = validate_raw_report(example)

        assert is_valid, f"Example should validate: {error}"
        assert report.id == "A1B2C3"
        assert report.callsign == "EZY45TR"
        assert report.altitude == 125.0
        assert report.ground_speed == 121.6
        assert report.vertical_rate == -64.0
        assert report.heading == 300.0

    def test_dump1090_names_are_accepted(self):
        """Test that dump1090 field names map onto report fields."""
        example = load_example("dump1090_report.json")
        is_valid, report, error = validate_raw_report(example)

        assert is_valid, f"dump1090 report should validate: {error}"
        assert report.id == "4CA7B5"
        assert report.callsign == "RYR2KC"
        assert report.altitude == 0.0, "alt_baro 'ground' reads as zero feet"
        assert report.ground_speed == 12.4
        assert report.heading == 122.3

    def test_missing_id_fails(self):
        """Test that a report without an id is invalid."""
        example = load_example("raw_report.json")
        del example["id"]
        is_valid, report, error = validate_raw_report(example)
        assert not is_valid
        assert report is None
        assert error

    def test_blank_id_fails(self):
        """Test that a whitespace-only id is invalid."""
        example = load_example("raw_report.json")
        example["id"] = "   "
        is_valid, _, _ = validate_raw_report(example)
        assert not is_valid

    @pytest.mark.parametrize("value", ["abc", None, float("nan"), float("inf"), True, ""])
    def test_unusable_numbers_become_none(self, value):
        """Test that non-numeric values are read as missing."""
        example = load_example("raw_report.json")
        example["altitude"] = value
        example["groundSpeed"] = value
        is_valid, report, error = validate_raw_report(example)

        assert is_valid, error
        assert report.altitude is None
        assert report.ground_speed is None

    def test_numeric_strings_are_parsed(self):
        """Test that numbers sent as strings are parsed."""
        is_valid, report, _ = validate_raw_report({"id": "abc", "altitude": "3500", "gs": " 240.5 "})
        assert is_valid
        assert report.altitude == 3500.0
        assert report.ground_speed == 240.5

    def test_out_of_range_coordinates_become_none(self):
        """Test that impossible coordinates are read as missing."""
        is_valid, report, _ = validate_raw_report({"id": "abc", "lat": 91.0, "lon": -181.0})
        assert is_valid
        assert report.lat is None
        assert report.lon is None

    def test_integer_squawk_is_zero_padded(self):
        """Test that an integer squawk becomes a four-digit code."""
        is_valid, report, _ = validate_raw_report({"id": "abc", "squawk": 1200})
        assert is_valid
        assert report.squawk == "1200"

        is_valid, report, _ = validate_raw_report({"id": "abc", "squawk": 21})
        assert report.squawk == "0021"


class TestEventEnvelopeContract:
    """Envelopes forwarded by the aggregator."""

    def test_event_envelope_example_validates(self):
        """Test that the example event envelope validates."""
        example = load_example("event_envelope.json")
        is_valid, envelope, error = validate_event_envelope(example)

        assert is_valid, f"Example should validate: {error}"
        assert envelope.schema_version == SCHEMA_VERSION
        assert envelope.type == EVENT_FLIGHT_ENDED
        assert envelope.source == SOURCE_TRACKING_CORE
        assert envelope.timestamp.tzinfo is not None

    def test_unknown_event_type_fails(self):
        """Test that an event type outside the closed set is rejected."""
        example = load_example("event_envelope.json")
        example["type"] = "aircraft:teleported"
        is_valid, _, _ = validate_event_envelope(example)
        assert not is_valid

    def test_sequence_must_be_positive(self):
        """Test that sequence numbers start at 1."""
        example = load_example("event_envelope.json")
        example["sequence"] = 0
        is_valid, _, _ = validate_event_envelope(example)
        assert not is_valid

    def test_empty_aircraft_id_fails(self):
        """Test that an empty aircraft id is rejected."""
        example = load_example("event_envelope.json")
        example["aircraft_id"] = ""
        is_valid, _, _ = validate_event_envelope(example)
        assert not is_valid

    def test_wrong_schema_version_fails(self):
        """Test that another schema version is rejected."""
        example = load_example("event_envelope.json")
        example["schema_version"] = 2
        is_valid, _, _ = validate_event_envelope(example)
        assert not is_valid

    def test_every_event_type_is_in_the_contract(self):
        """The EventType enum and the envelope type list are the same closed set."""
        assert {t.value for t in EventType} == set(EVENT_TYPES)

    def test_tracking_event_envelope_validates(self):
        """Test that envelopes built from tracking events validate."""
        event = TrackingEvent(
            type=EventType.ZONE_ENTERED,
            aircraft_id="A1B2C3",
            timestamp=datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc),
            payload={"zone": {"id": "zone_1"}},
            sequence=1,
        )
        is_valid, envelope, error = validate_event_envelope(event.to_envelope())
        assert is_valid, error
        assert envelope.type == "zone:entered"
        assert envelope.source == SOURCE_TRACKING_CORE
