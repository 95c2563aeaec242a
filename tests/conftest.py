"""
Shared fixtures and in-memory collaborators

The fakes implement the fitlife.interfaces protocols over plain lists and
dicts so orchestrator, scheduler and API tests run without a database.
"""

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

# Make main.py / worker.py importable without an install
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from fitlife.config import Settings
from fitlife.errors import CacheUnavailableError, RecommendationStoreError
from fitlife.infra.cache import InMemoryRecommendationCache
from fitlife.models import (
    ClassOffering,
    EventKind,
    InteractionEvent,
    Recommendation,
    Segment,
    UserProfile,
)
from fitlife.orchestrator import RecommendationOrchestrator

# Wednesday, 09:00 UTC
NOW = datetime(2025, 3, 5, 9, 0, tzinfo=timezone.utc)


# ============ builders ============


def make_user(user_id: str = "u1", **overrides) -> UserProfile:
    data = dict(
        id=user_id,
        email=f"{user_id}@fitlife.test",
        fitness_level="Intermediate",
        preferred_class_types=["Yoga"],
        segment="YogaEnthusiast",
    )
    data.update(overrides)
    return UserProfile(**data)


def make_class(class_id: str = "c1", **overrides) -> ClassOffering:
    data = dict(
        id=class_id,
        name=f"Class {class_id}",
        type="Yoga",
        level="Intermediate",
        instructor_id="i1",
        instructor_name="Alex",
        start_time=NOW + timedelta(hours=12),
        capacity=30,
        current_enrollment=5,
        average_rating=4.8,
        weekly_bookings=10,
    )
    data.update(overrides)
    return ClassOffering(**data)


def make_event(
    user_id: str = "u1",
    item_id: str = "c1",
    kind: str = "Complete",
    timestamp: Optional[datetime] = None,
    metadata=None,
) -> InteractionEvent:
    return InteractionEvent(
        user_id=user_id,
        item_id=item_id,
        kind=kind,
        timestamp=timestamp or NOW - timedelta(days=1),
        metadata=metadata if metadata is not None else {},
    )


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


# ============ fakes ============


class FakeUserRepository:
    def __init__(self, users: Sequence[UserProfile] = ()):
        self.users: Dict[str, UserProfile] = {user.id: user for user in users}
        self.segment_updates: List[tuple] = []

    async def get(self, user_id: str) -> Optional[UserProfile]:
        return self.users.get(user_id)

    async def update_segment(self, user_id: str, segment: Segment) -> None:
        self.segment_updates.append((user_id, segment))
        self.users[user_id] = self.users[user_id].model_copy(update={"segment": segment})


class FakeClassCatalog:
    """CandidateSource + ClassCatalog; `gate` holds candidate fetches until set"""

    def __init__(self, offerings: Sequence[ClassOffering] = (), now: datetime = NOW):
        self.offerings: Dict[str, ClassOffering] = {offering.id: offering for offering in offerings}
        self.now = now
        self.gate: Optional[asyncio.Event] = None
        self.fetch_calls = 0

    async def fetch_upcoming_active_open_classes(self, limit: int) -> List[ClassOffering]:
        self.fetch_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        candidates = [
            offering
            for offering in self.offerings.values()
            if offering.is_active
            and offering.start_time > self.now
            and offering.current_enrollment < offering.capacity
        ]
        candidates.sort(key=lambda offering: (offering.start_time, offering.id))
        return candidates[:limit]

    async def get_by_ids(self, ids: Sequence[str]) -> Dict[str, ClassOffering]:
        return {item_id: self.offerings[item_id] for item_id in ids if item_id in self.offerings}


class FakeInteractionStore:
    def __init__(self, events: Sequence[InteractionEvent] = (), now: datetime = NOW):
        self.events: List[InteractionEvent] = list(events)
        self.now = now

    async def fetch_interactions(
        self,
        user_id: str,
        since_days: int,
        event_kind: Optional[EventKind] = None,
    ) -> List[InteractionEvent]:
        cutoff = self.now - timedelta(days=since_days)
        return [
            event
            for event in self.events
            if event.user_id == user_id
            and event.timestamp >= cutoff
            and (event_kind is None or event.kind == event_kind)
        ]

    async def fetch_active_user_ids(self, since_days: int, limit: Optional[int] = None) -> List[str]:
        cutoff = self.now - timedelta(days=since_days)
        user_ids = sorted({event.user_id for event in self.events if event.timestamp >= cutoff})
        return user_ids[:limit] if limit is not None else user_ids

    async def append(self, event: InteractionEvent) -> None:
        self.events.append(event)


class FakeRecommendationStore:
    """Keeps rows without class snapshots, like the SQL table does"""

    def __init__(self, now: datetime = NOW):
        self.rows: Dict[str, List[Recommendation]] = {}
        self.now = now
        self.fail_writes = False
        self.fail_reads = False
        self.replace_calls = 0

    async def fetch_by_user(
        self,
        user_id: str,
        limit: int,
        within_minutes: Optional[int] = None,
    ) -> List[Recommendation]:
        if self.fail_reads:
            raise RecommendationStoreError("read failed")
        rows = self.rows.get(user_id, [])
        if within_minutes is not None:
            cutoff = self.now - timedelta(minutes=within_minutes)
            rows = [row for row in rows if row.generated_at >= cutoff]
        return sorted(rows, key=lambda row: row.rank)[:limit]

    async def replace_all_for_user(self, user_id: str, recommendations: Sequence[Recommendation]) -> None:
        self.replace_calls += 1
        if self.fail_writes:
            raise RecommendationStoreError("swap failed")
        self.rows[user_id] = [rec.model_copy(update={"offering": None}) for rec in recommendations]


class BrokenCache:
    """Cache backend that is down"""

    async def get(self, key: str) -> Optional[str]:
        raise CacheUnavailableError("down")

    async def set(self, key: str, value: str, ttl: int) -> bool:
        raise CacheUnavailableError("down")

    async def delete(self, key: str) -> bool:
        raise CacheUnavailableError("down")

    async def ping(self) -> bool:
        return False


# ============ fixtures ============


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def users() -> FakeUserRepository:
    return FakeUserRepository([make_user("u1")])


@pytest.fixture
def catalog() -> FakeClassCatalog:
    return FakeClassCatalog([make_class("c1")])


@pytest.fixture
def interactions() -> FakeInteractionStore:
    return FakeInteractionStore()


@pytest.fixture
def store() -> FakeRecommendationStore:
    return FakeRecommendationStore()


@pytest.fixture
def cache() -> InMemoryRecommendationCache:
    return InMemoryRecommendationCache(max_entries=100)


@pytest.fixture
def orchestrator(users, catalog, interactions, cache, store, settings) -> RecommendationOrchestrator:
    return RecommendationOrchestrator(
        users=users,
        candidates=catalog,
        catalog=catalog,
        interactions=interactions,
        cache=cache,
        store=store,
        settings=settings,
        clock=lambda: NOW,
    )
