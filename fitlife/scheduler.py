"""
Background Jobs

BATCH REFRESH (every 10 min):
=============================
Regenerates recommendations for users active in the last 7 days so
user-facing requests hit a warm cache instead of recomputing on demand.
Users are processed in bounded batches; a batch runs concurrently.

SEGMENT REFRESH (every 30 min):
===============================
Reclassifies users with activity in the last 30 days and writes changed
segments back to their profile. This job is the only writer of the
segment field. A changed segment changes scores, so the user's cached
set is invalidated.

Both jobs share the same loop: startup delay, run, sleep interval,
back off after a failed run, stop promptly when the stop event is set.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from loguru import logger

from fitlife.config import Settings, get_settings
from fitlife.interfaces import ClassCatalog, InteractionStore, UserRepository
from fitlife.models import EventKind
from fitlife.orchestrator import RecommendationOrchestrator
from fitlife.segments import SegmentClassifier


async def _wait_for_stop(stop_event: asyncio.Event, seconds: float) -> bool:
    """Sleep up to `seconds`; True when the stop event fired first"""
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
        return True
    except asyncio.TimeoutError:
        return False


def _chunks(items: List[str], size: int) -> List[List[str]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


@dataclass
class BatchResult:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0


@dataclass
class SegmentRefreshResult:
    processed: int = 0
    changed: int = 0
    failed: int = 0


class PeriodicJob:
    """Run `run_once` on a fixed cadence until stopped"""

    name = "periodic job"

    def __init__(self, interval_seconds: float, startup_delay_seconds: float, error_backoff_seconds: float):
        self.interval_seconds = interval_seconds
        self.startup_delay_seconds = startup_delay_seconds
        self.error_backoff_seconds = error_backoff_seconds

    async def run_once(self):
        raise NotImplementedError

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        logger.info(f"{self.name} started - running every {self.interval_seconds:.0f}s")

        if await _wait_for_stop(stop_event, self.startup_delay_seconds):
            logger.info(f"{self.name} cancelled during startup delay")
            return

        while not stop_event.is_set():
            start_time = time.time()
            try:
                result = await self.run_once()
            except Exception:
                logger.exception(f"Error in {self.name} run")
                delay = self.error_backoff_seconds
            else:
                logger.info(f"{self.name} run finished in {time.time() - start_time:.1f}s: {result}")
                delay = self.interval_seconds

            if await _wait_for_stop(stop_event, delay):
                break

        logger.info(f"{self.name} stopped")


class BatchRefreshScheduler(PeriodicJob):
    """Keeps recommendation caches warm for recently active users"""

    name = "Batch refresh"

    def __init__(
        self,
        orchestrator: RecommendationOrchestrator,
        interactions: InteractionStore,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        super().__init__(
            interval_seconds=self.settings.batch_refresh_interval_seconds,
            startup_delay_seconds=self.settings.batch_refresh_startup_delay_seconds,
            error_backoff_seconds=self.settings.batch_refresh_error_backoff_seconds,
        )
        self.orchestrator = orchestrator
        self.interactions = interactions

    async def run_once(self) -> BatchResult:
        user_ids = await self.interactions.fetch_active_user_ids(
            since_days=self.settings.batch_refresh_active_window_days
        )
        result = BatchResult()
        if not user_ids:
            logger.info("No active users to refresh")
            return result

        logger.info(f"Refreshing recommendations for {len(user_ids)} active users")

        for batch in _chunks(user_ids, self.settings.batch_refresh_batch_size):
            outcomes = await asyncio.gather(
                *(
                    self.orchestrator.generate_recommendations(user_id, limit=self.settings.default_limit)
                    for user_id in batch
                ),
                return_exceptions=True,
            )
            for user_id, outcome in zip(batch, outcomes):
                result.processed += 1
                if isinstance(outcome, Exception):
                    result.failed += 1
                    logger.error(f"Failed to refresh recommendations for user {user_id}: {outcome}")
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    result.succeeded += 1

            logger.debug(f"Refreshed {result.processed}/{len(user_ids)} users so far")

        logger.info(
            f"Batch complete: {result.succeeded} successful, {result.failed} failed "
            f"out of {result.processed} users"
        )
        return result


class SegmentRefreshJob(PeriodicJob):
    """Recomputes behavioral segments from recent interactions"""

    name = "Segment refresh"

    def __init__(
        self,
        users: UserRepository,
        interactions: InteractionStore,
        catalog: ClassCatalog,
        orchestrator: RecommendationOrchestrator,
        classifier: Optional[SegmentClassifier] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        super().__init__(
            interval_seconds=self.settings.segment_refresh_interval_seconds,
            startup_delay_seconds=self.settings.segment_refresh_startup_delay_seconds,
            error_backoff_seconds=self.settings.segment_refresh_error_backoff_seconds,
        )
        self.users = users
        self.interactions = interactions
        self.catalog = catalog
        self.orchestrator = orchestrator
        self.classifier = classifier or SegmentClassifier()

    async def run_once(self) -> SegmentRefreshResult:
        lookback = self.settings.segment_lookback_days
        user_ids = await self.interactions.fetch_active_user_ids(since_days=lookback)
        result = SegmentRefreshResult()

        for user_id in user_ids:
            try:
                changed = await self.refresh_user(user_id, lookback)
            except Exception:
                result.failed += 1
                logger.exception(f"Error profiling user {user_id}")
                continue

            result.processed += 1
            if changed:
                result.changed += 1

        logger.info(
            f"Profiling complete: {result.processed} users processed, {result.changed} segment changes"
        )
        return result

    async def refresh_user(self, user_id: str, lookback_days: int) -> bool:
        """Reclassify one user; True when the stored segment changed"""
        user = await self.users.get(user_id)
        if user is None:
            logger.debug(f"Skipping unknown user {user_id}")
            return False

        events = await self.interactions.fetch_interactions(user_id, since_days=lookback_days)
        completed_ids = sorted({event.item_id for event in events if event.kind == EventKind.COMPLETE})
        offerings = await self.catalog.get_by_ids(completed_ids) if completed_ids else {}
        class_types: Dict[str, str] = {item_id: offering.type for item_id, offering in offerings.items()}

        segment = self.classifier.classify(events, class_types)
        if segment == user.segment:
            return False

        await self.users.update_segment(user_id, segment)
        await self.orchestrator.invalidate_cache(user_id)
        logger.info(
            f"User {user_id} segment changed: "
            f"{user.segment.value if user.segment else None} -> {segment.value}"
        )
        return True
