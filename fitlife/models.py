"""
Domain Models

Pydantic models shared by the scoring engine, the segment classifier,
the orchestrator and the storage adapters.

DATA OWNERSHIP:
===============
- UserProfile: owned by the account subsystem, read-only here except
  for the segment label (written by the segment refresh job only)
- ClassOffering: owned by booking/review subsystems, read-only here
- InteractionEvent: append-only event store, the source of truth for
  instructor loyalty, time preference and segmentation
- Recommendation: one row per (user, item); a user's whole set is
  replaced atomically on every regeneration

All datetimes are timezone-aware UTC. Naive values coming back from
storage are interpreted as UTC.
"""

import json
import math
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, FrozenSet, List, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator, model_validator

from fitlife.errors import InvalidEventKindError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones to UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_weekend(value: datetime) -> bool:
    """Saturday or Sunday in UTC"""
    return ensure_utc(value).weekday() >= 5


# ============================================================================
# ENUMS
# ============================================================================

class FitnessLevel(str, Enum):
    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"


class ClassLevel(str, Enum):
    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"
    ALL_LEVELS = "All Levels"


class Segment(str, Enum):
    """Behavioral cohort derived from interaction history"""
    BEGINNER = "Beginner"
    HIGHLY_ACTIVE = "HighlyActive"
    YOGA_ENTHUSIAST = "YogaEnthusiast"
    STRENGTH_TRAINER = "StrengthTrainer"
    CARDIO_LOVER = "CardioLover"
    WEEKEND_WARRIOR = "WeekendWarrior"
    GENERAL = "General"


class EventKind(str, Enum):
    VIEW = "View"
    CLICK = "Click"
    BOOK = "Book"
    COMPLETE = "Complete"
    CANCEL = "Cancel"
    RATE = "Rate"

    @classmethod
    def parse(cls, value: Any) -> "EventKind":
        """Case-insensitive match against the closed set of kinds"""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            lowered = value.lower()
            for kind in cls:
                if kind.value.lower() == lowered:
                    return kind
        raise InvalidEventKindError(value)


class MetadataStatus(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    INVALID = "invalid"


# ============================================================================
# EVENT METADATA
# ============================================================================

class EventMetadata(BaseModel):
    """
    Parsed view over free-form interaction metadata

    Raw metadata is whatever the producer sent: a dict, JSON text, or
    nothing at all. Parsing never raises; callers branch on `status`
    and only see `instructor_id` / `rating` when their shape is valid.
    """

    model_config = ConfigDict(frozen=True)

    status: MetadataStatus
    instructor_id: Optional[str] = None
    rating: Optional[float] = None

    @classmethod
    def parse(cls, raw: Any) -> "EventMetadata":
        if raw is None:
            return cls(status=MetadataStatus.ABSENT)

        data = raw
        if isinstance(raw, (str, bytes)):
            if not raw.strip():
                return cls(status=MetadataStatus.ABSENT)
            try:
                data = json.loads(raw)
            except ValueError:
                return cls(status=MetadataStatus.INVALID)

        if not isinstance(data, dict):
            return cls(status=MetadataStatus.INVALID)
        if not data:
            return cls(status=MetadataStatus.ABSENT)

        instructor = data.get("instructorId", data.get("instructor_id"))
        instructor_id = instructor if isinstance(instructor, str) and instructor else None

        return cls(
            status=MetadataStatus.PRESENT,
            instructor_id=instructor_id,
            rating=_parse_rating(data.get("rating")),
        )


def _parse_rating(value: Any) -> Optional[float]:
    """Finite number or None; huge JSON integers do not fit a float"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        rating = float(value)
    except (OverflowError, ValueError):
        return None
    return rating if math.isfinite(rating) else None


def _parse_string_list(value: Any, field_name: str) -> List[str]:
    """
    Accept a JSON array of strings (persisted form) or a sequence of strings.
    Anything else is malformed and recovered as an empty list.
    """
    if value is None:
        return []

    data = value
    if isinstance(value, (str, bytes)):
        try:
            data = json.loads(value)
        except ValueError:
            logger.debug(f"Malformed {field_name} JSON, treating as empty")
            return []

    if isinstance(data, (list, tuple, set, frozenset)) and all(isinstance(item, str) for item in data):
        return list(data)

    logger.debug(f"Unexpected {field_name} shape {type(data).__name__}, treating as empty")
    return []


# ============================================================================
# ENTITIES
# ============================================================================

class UserProfile(BaseModel):
    """Member profile as read by the personalization engine"""

    id: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    fitness_level: FitnessLevel = FitnessLevel.BEGINNER
    goals: List[str] = Field(default_factory=list)
    preferred_class_types: FrozenSet[str] = Field(default_factory=frozenset)
    segment: Optional[Segment] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("goals", mode="before")
    @classmethod
    def _parse_goals(cls, value: Any) -> List[str]:
        return _parse_string_list(value, "goals")

    @field_validator("preferred_class_types", mode="before")
    @classmethod
    def _parse_preferred_types(cls, value: Any) -> FrozenSet[str]:
        return frozenset(_parse_string_list(value, "preferred_class_types"))

    @field_validator("segment", mode="before")
    @classmethod
    def _parse_segment(cls, value: Any) -> Optional[Segment]:
        if value is None or value == "":
            return None
        try:
            return Segment(value)
        except ValueError:
            logger.warning(f"Unknown segment label {value!r}, treating as unsegmented")
            return None

    @field_validator("created_at", "updated_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class ClassOffering(BaseModel):
    """A scheduled fitness class"""

    id: str
    name: str = ""
    description: str = ""
    type: str
    level: ClassLevel = ClassLevel.BEGINNER
    instructor_id: str = ""
    instructor_name: str = ""
    start_time: datetime
    duration_minutes: int = Field(60, ge=0)
    capacity: int = Field(30, ge=0)
    current_enrollment: int = Field(0, ge=0)
    average_rating: float = Field(0.0, ge=0.0, le=5.0)
    total_ratings: int = Field(0, ge=0)
    weekly_bookings: int = Field(0, ge=0)
    is_active: bool = True

    @field_validator("start_time")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_enrollment(self) -> "ClassOffering":
        if self.current_enrollment > self.capacity:
            raise ValueError(
                f"current_enrollment ({self.current_enrollment}) exceeds capacity ({self.capacity})"
            )
        return self


class InteractionEvent(BaseModel):
    """
    One user action against an item

    `item_id` + `item_type` form a weak reference: the item may have been
    deleted since, so consumers resolve it on demand and skip misses.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    item_id: str
    item_type: str = "Class"
    kind: EventKind
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: Any = Field(default_factory=dict)

    _details: EventMetadata = PrivateAttr()

    @field_validator("kind", mode="before")
    @classmethod
    def _parse_kind(cls, value: Any) -> EventKind:
        return EventKind.parse(value)

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    def model_post_init(self, __context: Any) -> None:
        self._details = EventMetadata.parse(self.metadata)

    @property
    def details(self) -> EventMetadata:
        return self._details


class Recommendation(BaseModel):
    """One ranked entry of a user's recommendation set"""

    user_id: str
    item_id: str
    rank: int = Field(ge=1)
    score: float = Field(ge=0.0)
    reason: str
    generated_at: datetime
    offering: Optional[ClassOffering] = None

    @field_validator("generated_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)
