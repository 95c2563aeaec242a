"""
Process wiring: storage adapters, cache backend, orchestrator and jobs.

Everything is constructed once per process and passed explicitly; there
are no module-level singletons.
"""

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from fitlife.config import Settings
from fitlife.infra.cache import InMemoryRecommendationCache, RedisRecommendationCache
from fitlife.infra.database import (
    DatabaseManager,
    SqlClassRepository,
    SqlInteractionStore,
    SqlRecommendationStore,
    SqlUserRepository,
    get_db_manager,
)
from fitlife.infra.redis_client import create_redis_client
from fitlife.interfaces import (
    CandidateSource,
    ClassCatalog,
    InteractionStore,
    RecommendationCache,
    RecommendationStore,
    UserRepository,
)
from fitlife.orchestrator import RecommendationOrchestrator
from fitlife.scheduler import BatchRefreshScheduler, SegmentRefreshJob


@dataclass
class EngineComponents:
    settings: Settings
    users: UserRepository
    classes: CandidateSource
    catalog: ClassCatalog
    interactions: InteractionStore
    store: RecommendationStore
    cache: RecommendationCache
    orchestrator: RecommendationOrchestrator
    batch_refresh: BatchRefreshScheduler
    segment_refresh: SegmentRefreshJob
    db: Optional[DatabaseManager] = None

    async def close(self) -> None:
        if isinstance(self.cache, RedisRecommendationCache):
            await self.cache.close()
        if self.db is not None:
            await self.db.close()
        logger.info("Engine components closed")


def assemble_components(
    settings: Settings,
    users: UserRepository,
    classes: CandidateSource,
    catalog: ClassCatalog,
    interactions: InteractionStore,
    store: RecommendationStore,
    cache: RecommendationCache,
    db: Optional[DatabaseManager] = None,
) -> EngineComponents:
    """Wire the engine around already-built collaborators"""
    orchestrator = RecommendationOrchestrator(
        users=users,
        candidates=classes,
        catalog=catalog,
        interactions=interactions,
        cache=cache,
        store=store,
        settings=settings,
    )
    return EngineComponents(
        settings=settings,
        users=users,
        classes=classes,
        catalog=catalog,
        interactions=interactions,
        store=store,
        cache=cache,
        orchestrator=orchestrator,
        batch_refresh=BatchRefreshScheduler(orchestrator, interactions, settings=settings),
        segment_refresh=SegmentRefreshJob(users, interactions, catalog, orchestrator, settings=settings),
        db=db,
    )


def build_cache(settings: Settings) -> RecommendationCache:
    if settings.redis_url:
        logger.info("Using Redis recommendation cache")
        return RedisRecommendationCache(create_redis_client(settings.redis_url))
    logger.info("FITLIFE_REDIS_URL not set, using in-memory recommendation cache")
    return InMemoryRecommendationCache(max_entries=settings.cache_max_entries)


async def build_components(settings: Settings) -> EngineComponents:
    """Connect to the configured database and cache"""
    db = await get_db_manager(settings.database_url)
    classes = SqlClassRepository(db)
    return assemble_components(
        settings=settings,
        users=SqlUserRepository(db),
        classes=classes,
        catalog=classes,
        interactions=SqlInteractionStore(db),
        store=SqlRecommendationStore(db),
        cache=build_cache(settings),
        db=db,
    )
