"""
FastAPI Application for FitLife Class Recommendations

SYSTEM DESIGN: API Architecture
================================

ENDPOINTS:
==========
1. GET    /recommendations/{user_id}          - Cache-aside recommendations
2. POST   /recommendations/{user_id}/refresh  - Forced regeneration
3. DELETE /recommendations/{user_id}/cache    - Cache invalidation
4. POST   /events                             - Record an interaction
5. GET    /health                             - Health check
6. GET    /metrics                            - Prometheus-style counters

PERFORMANCE TARGETS:
====================
- Cache hit: < 200ms end to end
- Regeneration: bounded by FITLIFE_GENERATION_TIMEOUT_SECONDS

Authentication and authorization live in front of this service.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from loguru import logger
from pydantic import BaseModel, Field, field_validator

from fitlife.bootstrap import EngineComponents, build_components
from fitlife.config import Settings, get_settings
from fitlife.errors import GenerationTimeoutError, RecommendationStoreError, UserNotFoundError
from fitlife.infra.cache import InMemoryRecommendationCache
from fitlife.logging_config import setup_logging
from fitlife.models import ClassOffering, EventKind, InteractionEvent, Recommendation
from fitlife.orchestrator import RecommendationOrchestrator

SLOW_REQUEST_SECONDS = 0.2

# Booking state changes what the user should see next
INVALIDATING_EVENTS = {EventKind.BOOK, EventKind.CANCEL}


# ============================================================================
# PYDANTIC MODELS
# ============================================================================

class RecommendationResponse(BaseModel):
    """One ranked recommendation"""
    rank: int
    score: float
    reason: str
    generated_at: datetime
    class_: Optional[ClassOffering] = Field(None, alias="class")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_recommendation(cls, rec: Recommendation) -> "RecommendationResponse":
        return cls(
            rank=rec.rank,
            score=rec.score,
            reason=rec.reason,
            generated_at=rec.generated_at,
            class_=rec.offering,
        )


class RecommendationListResponse(BaseModel):
    success: bool = True
    data: List[RecommendationResponse]
    count: int
    message: Optional[str] = None


class EventRequest(BaseModel):
    """Interaction event as submitted by clients"""
    user_id: str = Field(..., min_length=1)
    item_id: str = Field(..., min_length=1)
    item_type: str = "Class"
    event_type: EventKind
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("event_type", mode="before")
    @classmethod
    def _parse_event_type(cls, value: Any) -> EventKind:
        return EventKind.parse(value)


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    cache_connected: bool
    database_connected: bool
    orchestrator: Dict[str, Any]


# ============================================================================
# FASTAPI APP
# ============================================================================

def create_app(
    components: Optional[EngineComponents] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the API

    When `components` is given (tests, embedding) it is used as-is and
    neither closed nor driven by background loops; otherwise the engine
    is built from settings on startup and torn down on shutdown.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = components is None
        if owned:
            setup_logging(settings.log_level, settings.log_serialize)
        logger.info("Starting FitLife Recommendation API...")

        engine = components or await build_components(settings)
        app.state.components = engine

        stop_event = asyncio.Event()
        tasks = []
        if owned and settings.api_background_jobs:
            if settings.batch_refresh_enabled:
                tasks.append(asyncio.create_task(engine.batch_refresh.run_forever(stop_event)))
            if settings.segment_refresh_enabled:
                tasks.append(asyncio.create_task(engine.segment_refresh.run_forever(stop_event)))

        logger.info("API ready")
        try:
            yield
        finally:
            stop_event.set()
            await asyncio.gather(*tasks, return_exceptions=True)
            if owned:
                await engine.close()
            logger.info("API shutdown complete")

    app = FastAPI(
        title="FitLife Recommendation API",
        description="Personalized fitness class recommendations",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_slow_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time
        if duration > SLOW_REQUEST_SECONDS:
            logger.warning(f"Slow request: {request.url.path} took {duration:.2f}s")
        return response

    def get_components(request: Request) -> EngineComponents:
        return request.app.state.components

    def get_orchestrator(engine: EngineComponents = Depends(get_components)) -> RecommendationOrchestrator:
        return engine.orchestrator

    max_limit = settings.max_limit
    default_limit = settings.default_limit

    async def _serve(call, user_id: str) -> List[RecommendationResponse]:
        try:
            recommendations = await call
        except UserNotFoundError:
            raise HTTPException(status_code=404, detail=f"User {user_id} not found")
        except (RecommendationStoreError, GenerationTimeoutError) as e:
            logger.error(f"Recommendation request failed for user {user_id}: {e}")
            raise HTTPException(status_code=503, detail="Recommendations temporarily unavailable")
        return [RecommendationResponse.from_recommendation(rec) for rec in recommendations]

    # ------------------------------------------------------------------
    # ENDPOINTS
    # ------------------------------------------------------------------

    @app.get("/recommendations/{user_id}", response_model=RecommendationListResponse, response_model_by_alias=True)
    async def get_recommendations(
        user_id: str,
        limit: int = Query(default_limit, ge=1, le=max_limit),
        orchestrator: RecommendationOrchestrator = Depends(get_orchestrator),
    ):
        """
        Personalized recommendations (cache-aside)

        LATENCY BREAKDOWN:
        ==================
        1. Cache lookup (most requests end here)
        2. Recent durable set (cache evicted / restarted)
        3. Regeneration (score up to 100 candidates)
        """
        data = await _serve(orchestrator.get_recommendations(user_id, limit), user_id)
        return RecommendationListResponse(data=data, count=len(data))

    @app.post(
        "/recommendations/{user_id}/refresh",
        response_model=RecommendationListResponse,
        response_model_by_alias=True,
    )
    async def refresh_recommendations(
        user_id: str,
        limit: int = Query(default_limit, ge=1, le=max_limit),
        orchestrator: RecommendationOrchestrator = Depends(get_orchestrator),
    ):
        """Forced regeneration after high-value events"""
        logger.info(f"User {user_id} requested recommendation refresh")
        data = await _serve(orchestrator.refresh_recommendations(user_id, limit), user_id)
        return RecommendationListResponse(
            data=data, count=len(data), message="Recommendations refreshed successfully"
        )

    @app.delete("/recommendations/{user_id}/cache")
    async def invalidate_cache(
        user_id: str,
        orchestrator: RecommendationOrchestrator = Depends(get_orchestrator),
    ):
        await orchestrator.invalidate_cache(user_id)
        return {"success": True}

    @app.post("/events", status_code=202)
    async def track_event(event: EventRequest, engine: EngineComponents = Depends(get_components)):
        """
        Record one interaction

        Kinds outside View/Click/Book/Complete/Cancel/Rate are rejected
        with 422 before anything is stored.
        """
        interaction = InteractionEvent(
            user_id=event.user_id,
            item_id=event.item_id,
            item_type=event.item_type,
            kind=event.event_type,
            metadata=event.metadata or {},
        )
        await engine.interactions.append(interaction)

        if interaction.kind in INVALIDATING_EVENTS:
            await engine.orchestrator.invalidate_cache(interaction.user_id)

        logger.info(
            f"Event tracked: user {interaction.user_id} performed {interaction.kind.value} "
            f"on {interaction.item_type} {interaction.item_id}"
        )
        return {"success": True, "id": interaction.id}

    @app.get("/health", response_model=HealthResponse)
    async def health_check(engine: EngineComponents = Depends(get_components)):
        """
        Health check endpoint

        - Cache reachability (capability check)
        - Database configured
        - Orchestrator counters (hits, generations, coalesced requests)
        """
        orchestrator_health = await engine.orchestrator.health()
        cache_connected = bool(orchestrator_health.pop("cache_connected"))
        return HealthResponse(
            status="healthy" if cache_connected else "degraded",
            cache_connected=cache_connected,
            database_connected=engine.db is not None,
            orchestrator=orchestrator_health,
        )

    @app.get("/metrics", response_class=PlainTextResponse)
    async def get_metrics(engine: EngineComponents = Depends(get_components)):
        """
        Prometheus-style counters

        EXAMPLE OUTPUT:
        ===============
        recommendations_cache_hits_total 920
        recommendations_generations_total 80
        cache_hit_rate 0.9200
        """
        lines = [
            f"recommendations_{name}_total {value}"
            for name, value in engine.orchestrator.metrics.items()
        ]
        if isinstance(engine.cache, InMemoryRecommendationCache):
            cache_stats = engine.cache.get_metrics()
            lines += [
                f"cache_hit_rate {cache_stats['hit_rate']:.4f}",
                f"cache_entries {cache_stats['size']}",
            ]
        return "\n".join(lines) + "\n"

    return app


app = create_app()


# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=False,  # Set True for development
        log_level="info",
    )
