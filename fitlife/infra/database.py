"""
Database Layer using SQLAlchemy (async)

SYSTEM DESIGN DECISION: Why SQLite by default?
==============================================

DEVELOPMENT:
- Zero configuration, file-based (sqlite+aiosqlite)
- Same async SQLAlchemy code path as PostgreSQL

PRODUCTION UPGRADE PATH:
- Point FITLIFE_DATABASE_URL at postgresql+asyncpg://...
- Connection pooling settings apply only to server databases

TABLES:
=======
- users            profile + current segment
- classes          schedule, capacity, rating, weekly bookings
- interactions     append-only event store; item_id/item_type is a weak
                   reference (no foreign key to classes)

user_id columns carry no foreign key: events and sets may arrive before
the account subsystem writes the profile, and account deletion is that
subsystem's job.
- recommendations  one row per (user_id, item_id); a user's set is
                   replaced wholesale inside one transaction
"""

import json
import os
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from loguru import logger
from pydantic import ValidationError
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    delete,
    select,
    update,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base

from fitlife.errors import RecommendationStoreError, UnreadableRecordError
from fitlife.models import (
    ClassOffering,
    EventKind,
    InteractionEvent,
    Recommendation,
    Segment,
    UserProfile,
    ensure_utc,
    utcnow,
)

Base = declarative_base()


def _naive_utc(value: datetime) -> datetime:
    """Columns hold naive UTC timestamps"""
    return ensure_utc(value).replace(tzinfo=None)


def _utcnow_naive() -> datetime:
    return _naive_utc(utcnow())


# ============================================================================
# DATA MODELS
# ============================================================================

class UserRow(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    email = Column(String(255), nullable=False, default="")
    first_name = Column(String(100), nullable=False, default="")
    last_name = Column(String(100), nullable=False, default="")
    fitness_level = Column(String(20), nullable=False, default="Beginner")

    # JSON arrays as text; malformed values are recovered when read
    goals = Column(Text, nullable=False, default="[]")
    preferred_class_types = Column(Text, nullable=False, default="[]")

    segment = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=_utcnow_naive)
    updated_at = Column(DateTime, default=_utcnow_naive)


class ClassRow(Base):
    __tablename__ = "classes"

    id = Column(String(36), primary_key=True)
    name = Column(String(200), nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    type = Column(String(50), nullable=False)
    level = Column(String(20), nullable=False, default="Beginner")
    instructor_id = Column(String(36), nullable=False, default="")
    instructor_name = Column(String(200), nullable=False, default="")
    start_time = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=60)
    capacity = Column(Integer, nullable=False, default=30)
    current_enrollment = Column(Integer, nullable=False, default=0)
    average_rating = Column(Float, nullable=False, default=0.0)
    total_ratings = Column(Integer, nullable=False, default=0)
    weekly_bookings = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=_utcnow_naive)
    updated_at = Column(DateTime, default=_utcnow_naive)

    # INDEX STRATEGY: candidate query filters active + upcoming, orders by start
    __table_args__ = (
        Index('idx_classes_active_start', 'is_active', 'start_time'),
        Index('idx_classes_type', 'type'),
        Index('idx_classes_instructor', 'instructor_id'),
    )


class InteractionRow(Base):
    __tablename__ = "interactions"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False)
    item_id = Column(String(36), nullable=False)
    item_type = Column(String(20), nullable=False, default="Class")
    event_type = Column(String(20), nullable=False)
    timestamp = Column(DateTime, nullable=False, default=_utcnow_naive)
    event_metadata = Column("metadata", Text, nullable=False, default="{}")

    # INDEX STRATEGY: per-user history, per-user by kind, active-user scans
    __table_args__ = (
        Index('idx_interactions_user_time', 'user_id', 'timestamp'),
        Index('idx_interactions_user_type_time', 'user_id', 'event_type', 'timestamp'),
        Index('idx_interactions_time', 'timestamp'),
    )


class RecommendationRow(Base):
    __tablename__ = "recommendations"

    user_id = Column(String(36), primary_key=True)
    item_id = Column(String(36), primary_key=True)
    rank = Column(Integer, nullable=False)
    score = Column(Float, nullable=False)
    reason = Column(String(500), nullable=False, default="")
    generated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index('idx_recommendations_user_rank', 'user_id', 'rank'),
        Index('idx_recommendations_user_generated', 'user_id', 'generated_at'),
    )


# ============================================================================
# DATABASE MANAGER
# ============================================================================

class DatabaseManager:
    """
    Database connection manager

    - Async engine, one per process
    - Session factory shared by the repositories below
    - Pool sizing only for server databases (SQLite manages its own)
    """

    def __init__(self, database_url: str = "sqlite+aiosqlite:///data/fitlife.db"):
        self.database_url = database_url
        url = make_url(database_url)

        engine_kwargs = {"echo": False}  # Set True for SQL debugging
        if url.get_backend_name() == "sqlite":
            if url.database and url.database != ":memory:":
                directory = os.path.dirname(url.database)
                if directory:
                    os.makedirs(directory, exist_ok=True)
        else:
            engine_kwargs.update(pool_size=5, max_overflow=10, pool_pre_ping=True)

        self.engine = create_async_engine(database_url, **engine_kwargs)

        # Session factory
        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

    async def init_db(self):
        """Create tables if they do not exist"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Database ready: {make_url(self.database_url).render_as_string(hide_password=True)}")

    async def close(self):
        """Close database connections"""
        await self.engine.dispose()


async def get_db_manager(database_url: str) -> DatabaseManager:
    """Create and initialize a database manager"""
    manager = DatabaseManager(database_url)
    await manager.init_db()
    return manager


# ============================================================================
# REPOSITORIES
# ============================================================================

def _to_profile(row: UserRow) -> UserProfile:
    return UserProfile(
        id=row.id,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        fitness_level=row.fitness_level,
        goals=row.goals,
        preferred_class_types=row.preferred_class_types,
        segment=row.segment,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_offering(row: ClassRow) -> ClassOffering:
    return ClassOffering(
        id=row.id,
        name=row.name,
        description=row.description,
        type=row.type,
        level=row.level,
        instructor_id=row.instructor_id,
        instructor_name=row.instructor_name,
        start_time=row.start_time,
        duration_minutes=row.duration_minutes,
        capacity=row.capacity,
        current_enrollment=row.current_enrollment,
        average_rating=row.average_rating,
        total_ratings=row.total_ratings,
        weekly_bookings=row.weekly_bookings,
        is_active=row.is_active,
    )


def _readable_offerings(rows) -> List[ClassOffering]:
    """Rows that still validate; the rest are logged and left out"""
    offerings = []
    for row in rows:
        try:
            offerings.append(_to_offering(row))
        except ValidationError as e:
            logger.warning(f"Skipping unreadable class {row.id}: {e.error_count()} invalid field(s)")
    return offerings


class SqlUserRepository:
    def __init__(self, db: DatabaseManager):
        self.db = db

    async def get(self, user_id: str) -> Optional[UserProfile]:
        async with self.db.async_session() as session:
            row = await session.get(UserRow, user_id)
        if row is None:
            return None
        try:
            return _to_profile(row)
        except ValidationError as e:
            logger.error(f"Stored profile for user {user_id} is unreadable: {e}")
            raise UnreadableRecordError(f"Profile for user {user_id} failed validation") from e

    async def add(self, user: UserProfile) -> None:
        async with self.db.async_session() as session:
            async with session.begin():
                session.add(UserRow(
                    id=user.id,
                    email=user.email,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    fitness_level=user.fitness_level.value,
                    goals=json.dumps(user.goals),
                    preferred_class_types=json.dumps(sorted(user.preferred_class_types)),
                    segment=user.segment.value if user.segment else None,
                    created_at=_naive_utc(user.created_at),
                    updated_at=_naive_utc(user.updated_at),
                ))

    async def update_segment(self, user_id: str, segment: Segment) -> None:
        async with self.db.async_session() as session:
            async with session.begin():
                await session.execute(
                    update(UserRow)
                    .where(UserRow.id == user_id)
                    .values(segment=segment.value, updated_at=_utcnow_naive())
                )


class SqlClassRepository:
    """CandidateSource + ClassCatalog over the classes table"""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def fetch_upcoming_active_open_classes(self, limit: int) -> List[ClassOffering]:
        async with self.db.async_session() as session:
            result = await session.execute(
                select(ClassRow)
                .where(
                    ClassRow.is_active.is_(True),
                    ClassRow.start_time > _utcnow_naive(),
                    ClassRow.current_enrollment < ClassRow.capacity,
                )
                .order_by(ClassRow.start_time, ClassRow.id)
                .limit(limit)
            )
            return _readable_offerings(result.scalars())

    async def get_by_ids(self, ids: Sequence[str]) -> Dict[str, ClassOffering]:
        if not ids:
            return {}
        async with self.db.async_session() as session:
            result = await session.execute(select(ClassRow).where(ClassRow.id.in_(list(ids))))
            return {offering.id: offering for offering in _readable_offerings(result.scalars())}

    async def add(self, offering: ClassOffering) -> None:
        async with self.db.async_session() as session:
            async with session.begin():
                data = offering.model_dump()
                data["level"] = offering.level.value
                data["start_time"] = _naive_utc(offering.start_time)
                session.add(ClassRow(**data))


class SqlInteractionStore:
    def __init__(self, db: DatabaseManager):
        self.db = db

    async def fetch_interactions(
        self,
        user_id: str,
        since_days: int,
        event_kind: Optional[EventKind] = None,
    ) -> List[InteractionEvent]:
        cutoff = _utcnow_naive() - timedelta(days=since_days)
        query = select(InteractionRow).where(
            InteractionRow.user_id == user_id,
            InteractionRow.timestamp >= cutoff,
        )
        if event_kind is not None:
            query = query.where(InteractionRow.event_type == event_kind.value)

        async with self.db.async_session() as session:
            result = await session.execute(query.order_by(InteractionRow.timestamp.desc()))
            rows = result.scalars().all()

        events = []
        for row in rows:
            try:
                events.append(InteractionEvent(
                    id=row.id,
                    user_id=row.user_id,
                    item_id=row.item_id,
                    item_type=row.item_type,
                    kind=row.event_type,
                    timestamp=row.timestamp,
                    metadata=row.event_metadata,
                ))
            except ValidationError:
                logger.warning(f"Skipping unreadable interaction {row.id} ({row.event_type!r})")
        return events

    async def fetch_active_user_ids(self, since_days: int, limit: Optional[int] = None) -> List[str]:
        cutoff = _utcnow_naive() - timedelta(days=since_days)
        query = (
            select(InteractionRow.user_id)
            .where(InteractionRow.timestamp >= cutoff)
            .distinct()
            .order_by(InteractionRow.user_id)
        )
        if limit is not None:
            query = query.limit(limit)

        async with self.db.async_session() as session:
            result = await session.execute(query)
            return list(result.scalars())

    async def append(self, event: InteractionEvent) -> None:
        metadata = event.metadata if isinstance(event.metadata, str) else json.dumps(event.metadata or {})
        async with self.db.async_session() as session:
            async with session.begin():
                session.add(InteractionRow(
                    id=event.id,
                    user_id=event.user_id,
                    item_id=event.item_id,
                    item_type=event.item_type,
                    event_type=event.kind.value,
                    timestamp=_naive_utc(event.timestamp),
                    event_metadata=metadata,
                ))


class SqlRecommendationStore:
    """Durable copy of each user's last generated set"""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def fetch_by_user(
        self,
        user_id: str,
        limit: int,
        within_minutes: Optional[int] = None,
    ) -> List[Recommendation]:
        query = select(RecommendationRow).where(RecommendationRow.user_id == user_id)
        if within_minutes is not None:
            cutoff = _utcnow_naive() - timedelta(minutes=within_minutes)
            query = query.where(RecommendationRow.generated_at >= cutoff)

        try:
            async with self.db.async_session() as session:
                result = await session.execute(query.order_by(RecommendationRow.rank).limit(limit))
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise RecommendationStoreError(f"Reading recommendations for user {user_id} failed: {e}") from e

        return [
            Recommendation(
                user_id=row.user_id,
                item_id=row.item_id,
                rank=row.rank,
                score=row.score,
                reason=row.reason,
                generated_at=row.generated_at,
            )
            for row in rows
        ]

    async def replace_all_for_user(self, user_id: str, recommendations: Sequence[Recommendation]) -> None:
        """
        Swap the user's whole set in one transaction

        Delete and insert commit together; any failure rolls back and the
        previous set stays exactly as it was.
        """
        try:
            async with self.db.async_session() as session:
                async with session.begin():
                    await session.execute(
                        delete(RecommendationRow).where(RecommendationRow.user_id == user_id)
                    )
                    session.add_all([
                        RecommendationRow(
                            user_id=user_id,
                            item_id=rec.item_id,
                            rank=rec.rank,
                            score=rec.score,
                            reason=rec.reason,
                            generated_at=_naive_utc(rec.generated_at),
                        )
                        for rec in recommendations
                    ])
        except SQLAlchemyError as e:
            logger.error(f"Recommendation swap failed for user {user_id}, previous set kept: {e}")
            raise RecommendationStoreError(f"Saving recommendations for user {user_id} failed") from e

        logger.debug(f"Saved {len(recommendations)} recommendations to database for user {user_id}")
