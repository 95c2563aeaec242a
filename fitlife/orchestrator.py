"""
Recommendation Orchestrator (cache-aside)

REQUEST PATH:
=============
1. Cache lookup (rec:{user_id})          -> hit: return immediately
2. Durable store, generated < 10 min ago -> repopulate cache, return
3. Regenerate: candidates -> score -> rank -> explain
   -> atomic swap in the durable store -> cache write -> return

LATENCY:
========
- Cache hit: one key lookup
- Durable hit: one indexed query + one catalog lookup
- Regeneration: bounded by generation_timeout_seconds

STAMPEDE PROTECTION:
====================
- The durable fallback absorbs cache evictions/restarts without
  recomputing for every user at once
- Single flight: at most one regeneration per user is in flight;
  concurrent callers await the same task instead of recomputing and
  racing on the delete-then-insert swap
- A caller that invalidated after the in-flight task started, or needs
  more items than it is producing, queues one follow-up generation
  behind it instead of reusing its result

INVALIDATION ACROSS PROCESSES:
==============================
- The invalidation time is kept locally and written to the cache as
  rec:{user_id}:invalidated, so an API process sharing the cache
  (Redis) with the worker also refuses stored sets that predate it

FAILURE MODES:
==============
- Cache read failure  -> treated as a miss
- Cache write failure -> logged, swallowed (durable copy is authoritative)
- Store swap failure  -> RecommendationStoreError, previous set intact
- Unknown user        -> UserNotFoundError, nothing written
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from cachetools import TTLCache
from loguru import logger
from pydantic import TypeAdapter, ValidationError

from fitlife.config import Settings, get_settings
from fitlife.errors import (
    CacheUnavailableError,
    GenerationTimeoutError,
    RecommendationStoreError,
    UserNotFoundError,
)
from fitlife.interfaces import (
    CandidateSource,
    ClassCatalog,
    InteractionStore,
    RecommendationCache,
    RecommendationStore,
    UserRepository,
)
from fitlife.models import ClassOffering, InteractionEvent, Recommendation, Segment, UserProfile, ensure_utc, utcnow
from fitlife.scoring import (
    FAVORITE_INSTRUCTOR_MIN_COMPLETIONS,
    ScoringEngine,
    booked_hours,
    completions_with_instructor,
)

HIGH_RATING_THRESHOLD = 4.7
TRENDING_WEEKLY_BOOKINGS = 50
FALLBACK_REASON = "Recommended based on your activity"

_recommendation_list = TypeAdapter(List[Recommendation])


def cache_key(user_id: str) -> str:
    return f"rec:{user_id}"


def invalidation_key(user_id: str) -> str:
    return f"rec:{user_id}:invalidated"


@dataclass
class _Generation:
    """An in-flight regeneration and what it was started for"""
    task: asyncio.Future
    started_at: datetime
    limit: int


def explain(
    user: UserProfile,
    offering: ClassOffering,
    interactions: Sequence[InteractionEvent],
    max_reasons: int = 3,
) -> str:
    """
    Human-readable reason for a recommendation

    Reasons are collected in a fixed priority order and truncated to
    `max_reasons`, so identical inputs always give the identical sentence.
    """
    reasons = []

    if offering.type in user.preferred_class_types:
        reasons.append(f"you love {offering.type} classes")

    if completions_with_instructor(offering.instructor_id, interactions) >= FAVORITE_INSTRUCTOR_MIN_COMPLETIONS:
        reasons.append(f"you enjoy classes with {offering.instructor_name or 'this instructor'}")

    if offering.average_rating >= HIGH_RATING_THRESHOLD:
        reasons.append("this class has excellent reviews")

    if user.segment is not None and user.segment != Segment.GENERAL:
        reasons.append(f"popular among {user.segment.value} members like you")

    if offering.weekly_bookings > TRENDING_WEEKLY_BOOKINGS:
        reasons.append("trending this week")

    if offering.start_time.hour in booked_hours(interactions):
        reasons.append("at your preferred time")

    if not reasons:
        return FALLBACK_REASON
    return "Because " + " and ".join(reasons[:max_reasons])


class RecommendationOrchestrator:
    """
    Serves, regenerates and invalidates per-user recommendation sets.

    Collaborators are injected once per process; the orchestrator is the
    only component that writes to the cache or the durable store.
    """

    def __init__(
        self,
        users: UserRepository,
        candidates: CandidateSource,
        catalog: ClassCatalog,
        interactions: InteractionStore,
        cache: RecommendationCache,
        store: RecommendationStore,
        scoring_engine: Optional[ScoringEngine] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.users = users
        self.candidates = candidates
        self.catalog = catalog
        self.interactions = interactions
        self.cache = cache
        self.store = store
        self.scoring_engine = scoring_engine or ScoringEngine()
        self.settings = settings or get_settings()
        self._clock = clock

        self._inflight: Dict[str, _Generation] = {}

        # user_id -> time of last invalidation; durable sets generated
        # before it are not served. Older marks are irrelevant once they
        # fall outside the fallback window.
        self._invalidated_at = TTLCache(
            maxsize=self.settings.cache_max_entries,
            ttl=max(self.settings.fallback_window_minutes * 60, 1),
        )

        self.metrics = {
            "cache_hits": 0,
            "durable_hits": 0,
            "generations": 0,
            "coalesced": 0,
            "cache_errors": 0,
        }

    # ------------------------------------------------------------------
    # Exposed operations
    # ------------------------------------------------------------------

    async def get_recommendations(self, user_id: str, limit: int = 10) -> List[Recommendation]:
        """Cache -> recent durable set -> regeneration"""
        self._check_limit(limit)
        key = cache_key(user_id)

        cached = await self._read_cache(key)
        if cached:
            self.metrics["cache_hits"] += 1
            logger.debug(f"Cache HIT for user {user_id} ({len(cached)} recs)")
            return cached[:limit]

        logger.debug(f"Cache MISS for user {user_id}")

        durable = await self._read_durable(user_id, limit)
        if durable:
            self.metrics["durable_hits"] += 1
            logger.info(f"Serving {len(durable)} recent recommendations from store for user {user_id}")
            await self._write_cache(key, durable)
            return durable

        logger.info(f"Generating fresh recommendations for user {user_id}")
        return await self._generate_single_flight(user_id, limit)

    async def refresh_recommendations(self, user_id: str, limit: int = 10) -> List[Recommendation]:
        """Forced regeneration, bypassing cache and durable lookups"""
        self._check_limit(limit)
        logger.info(f"Force refreshing recommendations for user {user_id}")
        await self.invalidate_cache(user_id)
        return await self._generate_single_flight(user_id, limit)

    async def invalidate_cache(self, user_id: str) -> None:
        """Drop the cached set; the durable copy is kept"""
        invalidated_at = self._clock()
        self._invalidated_at[user_id] = invalidated_at
        try:
            await self.cache.delete(cache_key(user_id))
            await self.cache.set(
                invalidation_key(user_id),
                invalidated_at.isoformat(),
                ttl=self._invalidated_at.ttl,
            )
        except CacheUnavailableError as e:
            self.metrics["cache_errors"] += 1
            logger.warning(f"Cache invalidation failed for user {user_id}: {e}")
            return
        logger.debug(f"Invalidated cache for user {user_id}")

    async def generate_recommendations(self, user_id: str, limit: int = 10) -> List[Recommendation]:
        """Regeneration without any lookup (background refresh path)"""
        self._check_limit(limit)
        return await self._generate_single_flight(user_id, limit)

    async def health(self) -> Dict[str, object]:
        try:
            cache_ok = await self.cache.ping()
        except CacheUnavailableError:
            cache_ok = False
        return {
            "cache_connected": cache_ok,
            "inflight_generations": len(self._inflight),
            **self.metrics,
        }

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    def rank(
        self,
        user: UserProfile,
        candidates: Sequence[ClassOffering],
        interactions: Sequence[InteractionEvent],
        limit: int,
        now: datetime,
    ) -> List[Recommendation]:
        """
        Score, sort and explain

        ORDER: score desc, then earlier start time, then class id, so
        equal scores always rank the same way.
        """
        scored = [
            (self.scoring_engine.score(user, offering, interactions, now), offering)
            for offering in candidates
        ]
        scored.sort(key=lambda pair: (-pair[0], pair[1].start_time, pair[1].id))

        return [
            Recommendation(
                user_id=user.id,
                item_id=offering.id,
                rank=rank,
                score=round(score, 2),
                reason=explain(user, offering, interactions, self.settings.max_reasons),
                generated_at=now,
                offering=offering,
            )
            for rank, (score, offering) in enumerate(scored[:limit], start=1)
        ]

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def _generate_single_flight(self, user_id: str, limit: int) -> List[Recommendation]:
        current = self._inflight.get(user_id)
        if current is not None and self._can_join(user_id, current, limit):
            self.metrics["coalesced"] += 1
            logger.debug(f"Joining in-flight generation for user {user_id}")
        else:
            if current is not None:
                logger.debug(f"In-flight generation for user {user_id} is outdated, queueing another")
                limit = max(limit, current.limit)
            current = self._start_generation(user_id, limit, after=current)

        # shield: a cancelled caller must not cancel the shared task
        recommendations = await asyncio.shield(current.task)
        return recommendations[:limit]

    def _can_join(self, user_id: str, generation: _Generation, limit: int) -> bool:
        if limit > generation.limit:
            return False
        invalidated_at = self._invalidated_at.get(user_id)
        return invalidated_at is None or invalidated_at <= generation.started_at

    def _start_generation(
        self,
        user_id: str,
        limit: int,
        after: Optional[_Generation] = None,
    ) -> _Generation:
        previous = after.task if after is not None else None
        task = asyncio.ensure_future(self._generate_after(previous, user_id, limit))
        generation = _Generation(task=task, started_at=self._clock(), limit=limit)
        self._inflight[user_id] = generation
        task.add_done_callback(lambda done, uid=user_id: self._release(uid, done))
        return generation

    async def _generate_after(
        self,
        previous: Optional[asyncio.Future],
        user_id: str,
        limit: int,
    ) -> List[Recommendation]:
        if previous is not None:
            # one swap at a time per user; the earlier outcome is not ours
            await asyncio.wait([previous])
        return await self._generate_with_timeout(user_id, limit)

    def _release(self, user_id: str, task: asyncio.Future) -> None:
        current = self._inflight.get(user_id)
        if current is not None and current.task is task:
            del self._inflight[user_id]
        if not task.cancelled():
            # mark as retrieved even when every waiter went away
            task.exception()

    async def _generate_with_timeout(self, user_id: str, limit: int) -> List[Recommendation]:
        timeout = self.settings.generation_timeout_seconds
        try:
            return await asyncio.wait_for(self._regenerate(user_id, limit), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"Generation for user {user_id} timed out after {timeout:.2f}s")
            raise GenerationTimeoutError(user_id, timeout) from None

    async def _regenerate(self, user_id: str, limit: int) -> List[Recommendation]:
        start_time = time.time()
        started_at = self._clock()

        user = await self.users.get(user_id)
        if user is None:
            logger.warning(f"User {user_id} not found")
            raise UserNotFoundError(user_id)

        interactions = await self.interactions.fetch_interactions(
            user_id, since_days=self.settings.interaction_lookback_days
        )
        candidates = await self.candidates.fetch_upcoming_active_open_classes(
            limit=self.settings.candidate_limit
        )
        if not candidates:
            logger.warning("No candidate classes available for recommendations")

        logger.debug(f"Scoring {len(candidates)} candidate classes for user {user_id}")
        recommendations = self.rank(user, candidates, interactions, limit, now=started_at)

        await self.store.replace_all_for_user(user_id, recommendations)
        self.metrics["generations"] += 1

        invalidated_at = self._invalidated_at.get(user_id)
        if invalidated_at is None or invalidated_at <= started_at:
            self._invalidated_at.pop(user_id, None)
            await self._write_cache(cache_key(user_id), recommendations)
        else:
            logger.debug(f"User {user_id} invalidated during generation, not caching result")

        latency_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Generated {len(recommendations)} recommendations for user {user_id} in {latency_ms:.1f}ms"
        )
        return recommendations

    # ------------------------------------------------------------------
    # Cache / store access
    # ------------------------------------------------------------------

    async def _read_cache(self, key: str) -> Optional[List[Recommendation]]:
        try:
            payload = await self.cache.get(key)
        except CacheUnavailableError as e:
            self.metrics["cache_errors"] += 1
            logger.warning(f"Cache read failed for {key}, falling back: {e}")
            return None

        if payload is None:
            return None
        try:
            return _recommendation_list.validate_json(payload)
        except ValidationError:
            logger.warning(f"Discarding undecodable cache entry {key}")
            return None

    async def _write_cache(self, key: str, recommendations: List[Recommendation]) -> None:
        payload = _recommendation_list.dump_json(recommendations).decode()
        try:
            stored = await self.cache.set(key, payload, ttl=self.settings.cache_ttl_seconds)
        except CacheUnavailableError as e:
            self.metrics["cache_errors"] += 1
            logger.warning(f"Cache write failed for {key}: {e}")
            return
        if not stored:
            logger.warning(f"Cache refused write for {key}")

    async def _read_durable(self, user_id: str, limit: int) -> Optional[List[Recommendation]]:
        """Recent durable set with class snapshots, or None when unusable"""
        try:
            rows = await self.store.fetch_by_user(
                user_id, limit=limit, within_minutes=self.settings.fallback_window_minutes
            )
        except RecommendationStoreError as e:
            logger.warning(f"Durable lookup failed for user {user_id}, regenerating: {e}")
            return None

        if not rows:
            return None

        invalidated_at = await self._last_invalidation(user_id)
        if invalidated_at is not None and ensure_utc(rows[0].generated_at) <= invalidated_at:
            logger.debug(f"Stored set for user {user_id} predates invalidation")
            return None

        offerings = await self.catalog.get_by_ids([row.item_id for row in rows])
        if len(offerings) < len({row.item_id for row in rows}):
            logger.debug(f"Stored set for user {user_id} references removed classes")
            return None

        return [row.model_copy(update={"offering": offerings[row.item_id]}) for row in rows]

    async def _last_invalidation(self, user_id: str) -> Optional[datetime]:
        """Latest of the local mark and the one shared through the cache"""
        marks = []
        local = self._invalidated_at.get(user_id)
        if local is not None:
            marks.append(local)

        try:
            shared = await self.cache.get(invalidation_key(user_id))
        except CacheUnavailableError as e:
            self.metrics["cache_errors"] += 1
            logger.warning(f"Invalidation lookup failed for user {user_id}: {e}")
            shared = None
        if shared:
            try:
                marks.append(ensure_utc(datetime.fromisoformat(shared)))
            except ValueError:
                logger.warning(f"Discarding unreadable invalidation mark for user {user_id}")

        return max(marks) if marks else None

    def _check_limit(self, limit: int) -> None:
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
