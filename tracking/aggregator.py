"""
Event aggregation and fan-out.

The aggregator is the single exit point for domain events: it assigns the
sequence number and source tag, validates the envelope and forwards the event
to every subscriber registered for its type.
"""

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Deque, Dict, Iterable, List, Optional, Set

from contracts.constants import SOURCE_TRACKING_CORE
from contracts.validation import validate_event_envelope
from tracking.events import EventType, TrackingEvent
from tracking.metrics import EVENTS_EMITTED

logger = logging.getLogger(__name__)

EventHandler = Callable[[TrackingEvent], None]

DEFAULT_HISTORY_SIZE = 1000


class Subscription:
    def __init__(self, handler: EventHandler, types: Optional[Set[EventType]]):
        self.handler = handler
        self.types = types

    def wants(self, event: TrackingEvent) -> bool:
        return self.types is None or event.type in self.types


class EventAggregator:
    """Sequences, validates and forwards TrackingEvents to subscribers."""

    def __init__(self, source: str = SOURCE_TRACKING_CORE, history_size: int = DEFAULT_HISTORY_SIZE):
        self.source = source
        self.sequence = 0
        self.recent: Deque[TrackingEvent] = deque(maxlen=history_size)
        self.counts: Dict[str, int] = {}
        self.rejected = 0
        self.handler_errors = 0
        self.closed = False
        self._subscriptions: List[Subscription] = []

    def subscribe(self, handler: EventHandler, types: Optional[Iterable[EventType]] = None) -> Subscription:
        """Register a handler, optionally for a subset of event types."""
        subscription = Subscription(handler, set(types) if types is not None else None)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, event: TrackingEvent) -> Optional[TrackingEvent]:
        """
        Forward one event.

        Returns:
            The sequenced event, or None if the aggregator is closed or the
            envelope failed validation.
        """
        if self.closed:
            logger.debug(f"Aggregator closed; dropping {event.type.value} for {event.aircraft_id}")
            return None

        if event.timestamp is None:
            event.timestamp = datetime.now(timezone.utc)
        event.sequence = self.sequence + 1
        event.source = self.source

        is_valid, _, error = validate_event_envelope(event.to_envelope())
        if not is_valid:
            self.rejected += 1
            logger.error(f"Invalid {event.type.value} event for {event.aircraft_id}: {error}")
            return None

        self.sequence = event.sequence
        self.recent.append(event)
        self.counts[event.type.value] = self.counts.get(event.type.value, 0) + 1
        EVENTS_EMITTED.labels(event_type=event.type.value).inc()

        for subscription in list(self._subscriptions):
            if not subscription.wants(event):
                continue
            try:
                subscription.handler(event)
            except Exception as e:
                self.handler_errors += 1
                logger.error(f"Event handler failed for {event.type.value} #{event.sequence}: {e}")

        return event

    def publish_all(self, events: Iterable[TrackingEvent]) -> List[TrackingEvent]:
        published = []
        for event in events:
            result = self.publish(event)
            if result is not None:
                published.append(result)
        return published

    def history(self, event_type: Optional[EventType] = None, limit: Optional[int] = None) -> List[TrackingEvent]:
        events = [e for e in self.recent if event_type is None or e.type == event_type]
        if limit is not None:
            events = events[-limit:]
        return events

    def close(self) -> None:
        self.closed = True
        self._subscriptions.clear()
        logger.info(f"Event aggregator closed after {self.sequence} events")
