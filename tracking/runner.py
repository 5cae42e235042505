"""
Asyncio scheduler for the tracking engine.

Runs the snapshot poll loop, the flight timeout sweep and the violation purge
as tasks, and schedules enrichment lookups off the tick path.
"""

import asyncio
import logging
import os
from typing import Awaitable, Callable, List, Mapping, Optional, Sequence, Set

from prometheus_client import start_http_server

from tracking.enrichment import EnrichmentCoordinator
from tracking.engine import TrackingEngine
from tracking.events import EventType, TrackingEvent
from tracking.models import AircraftTrack

logger = logging.getLogger(__name__)

METRICS_PORT = int(os.getenv("METRICS_PORT", "8080"))

SnapshotSource = Callable[[], Awaitable[Optional[Sequence[Mapping]]]]


def start_metrics_server(port: int = METRICS_PORT) -> bool:
    """Expose the Prometheus metrics endpoint."""
    try:
        start_http_server(port)
        logger.info(f"Prometheus metrics server started on port {port}")
        return True
    except OSError as e:
        logger.error(f"Failed to start metrics server: {e}")
        return False


class EngineRunner:
    """Drives a TrackingEngine from an async snapshot source."""

    def __init__(
        self,
        engine: TrackingEngine,
        source: SnapshotSource,
        enrichment: Optional[EnrichmentCoordinator] = None,
    ):
        self.engine = engine
        self.source = source
        self.enrichment = enrichment
        self.config = engine.config
        self.poll_failures = 0
        self._tasks: List[asyncio.Task] = []
        self._enrichment_tasks: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def poll_once(self) -> List[TrackingEvent]:
        """Fetch one snapshot and run a tick. A failed fetch skips the tick."""
        try:
            snapshot = await self.source()
        except Exception as e:
            self.poll_failures += 1
            logger.error(f"Snapshot source failed: {e}")
            snapshot = None

        events = self.engine.process_snapshot(snapshot)

        if self.enrichment is not None:
            for event in events:
                if event.type == EventType.DISAPPEARED:
                    self.enrichment.forget(event.aircraft_id)
            if snapshot is not None and not self.engine.stopping:
                self.schedule_enrichment(list(self.engine.tracks.values()))

        return events

    def schedule_enrichment(self, tracks: Sequence[AircraftTrack]) -> Optional[asyncio.Task]:
        if not tracks or self.enrichment is None:
            return None
        task = asyncio.create_task(self._enrich(tracks))
        self._enrichment_tasks.add(task)
        task.add_done_callback(self._enrichment_tasks.discard)
        return task

    async def _enrich(self, tracks: Sequence[AircraftTrack]) -> None:
        results = await self.enrichment.enrich_all(tracks)
        for result in results:
            self.engine.apply_enrichment(result)

    async def drain(self) -> None:
        """Wait for the enrichment lookups already scheduled."""
        if self._enrichment_tasks:
            await asyncio.gather(*list(self._enrichment_tasks))

    async def _poll_loop(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self.config.poll_interval)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.sweep_interval)
            self.engine.sweep_timeouts()

    async def _purge_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.purge_interval)
            self.engine.purge_violations()

    def start(self) -> None:
        """Start the loops on the running event loop."""
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._poll_loop(), name="tracking-poll"),
            asyncio.create_task(self._sweep_loop(), name="tracking-sweep"),
            asyncio.create_task(self._purge_loop(), name="tracking-purge"),
        ]
        logger.info(
            f"Engine runner started: poll={self.config.poll_interval}s "
            f"sweep={self.config.sweep_interval}s purge={self.config.purge_interval}s"
        )

    async def stop(self) -> None:
        """Stop emitting first, then cancel every task."""
        self.engine.stop()
        tasks = self._tasks + list(self._enrichment_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks = []
        self._enrichment_tasks.clear()
        logger.info("Engine runner stopped")
