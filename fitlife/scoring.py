"""
Nine-Factor Scoring Engine

Ranks a candidate class for a user as a plain sum of independently
computed, human-readable factors. No model, no training, no randomness:
identical inputs always produce the identical score.

FACTORS:
========
1. Fitness level match     0 .. 10
2. Preferred class type    0 | 15
3. Favorite instructor     0 | 20
4. Time preference         0 | 4 | 8
5. Rating                  0 .. 10  (average rating x 2)
6. Availability           -5 | 0 | +3
7. Segment boost           0 .. 12
8. Recency                 0 | 3 | 5
9. Popularity              0 | 4 | 8

Score = max(0, sum of factors). No ceiling (theoretical max ~150).
"""

from dataclasses import astuple, dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence, Set

from fitlife.models import (
    ClassLevel,
    ClassOffering,
    EventKind,
    FitnessLevel,
    InteractionEvent,
    Segment,
    UserProfile,
    ensure_utc,
    is_weekend,
    utcnow,
)

FAVORITE_INSTRUCTOR_MIN_COMPLETIONS = 2

STRENGTH_TYPES = frozenset({"HIIT", "Strength"})
CARDIO_TYPES = frozenset({"Spin", "Running", "Cardio"})

# (user level, class level) -> points; exact matches and "All Levels" are 10
_FITNESS_PARTIAL_SCORES = {
    (FitnessLevel.INTERMEDIATE, ClassLevel.BEGINNER): 5.0,
    (FitnessLevel.ADVANCED, ClassLevel.BEGINNER): 3.0,
    (FitnessLevel.ADVANCED, ClassLevel.INTERMEDIATE): 5.0,
    (FitnessLevel.BEGINNER, ClassLevel.ADVANCED): 0.0,
}
_FITNESS_DEFAULT_SCORE = 3.0


@dataclass(frozen=True)
class ScoreBreakdown:
    """Per-factor contributions, kept for auditing and explanations"""
    fitness_level: float
    preferred_type: float
    favorite_instructor: float
    time_preference: float
    rating: float
    availability: float
    segment_boost: float
    recency: float
    popularity: float

    @property
    def total(self) -> float:
        return max(0.0, sum(astuple(self)))


# ============================================================================
# FACTORS
# ============================================================================

def fitness_level_score(user_level: FitnessLevel, class_level: ClassLevel) -> float:
    if class_level == ClassLevel.ALL_LEVELS:
        return 10.0
    if user_level.value == class_level.value:
        return 10.0
    return _FITNESS_PARTIAL_SCORES.get((user_level, class_level), _FITNESS_DEFAULT_SCORE)


def preferred_type_score(preferred_types: Iterable[str], class_type: str) -> float:
    return 15.0 if class_type in preferred_types else 0.0


def completions_with_instructor(instructor_id: str, interactions: Iterable[InteractionEvent]) -> int:
    """Count Complete events whose metadata names this instructor"""
    if not instructor_id:
        return 0
    return sum(
        1
        for event in interactions
        if event.kind == EventKind.COMPLETE and event.details.instructor_id == instructor_id
    )


def favorite_instructor_score(instructor_id: str, interactions: Iterable[InteractionEvent]) -> float:
    count = completions_with_instructor(instructor_id, interactions)
    return 20.0 if count >= FAVORITE_INSTRUCTOR_MIN_COMPLETIONS else 0.0


def booked_hours(interactions: Iterable[InteractionEvent]) -> Set[int]:
    """Distinct UTC hours of day at which the user booked"""
    return {ensure_utc(event.timestamp).hour for event in interactions if event.kind == EventKind.BOOK}


def time_preference_score(start_time: datetime, interactions: Iterable[InteractionEvent]) -> float:
    hours = booked_hours(interactions)
    if not hours:
        return 0.0

    class_hour = ensure_utc(start_time).hour
    if class_hour in hours:
        return 8.0
    # no wraparound: 23h and 0h are 23 hours apart
    if any(abs(hour - class_hour) <= 1 for hour in hours):
        return 4.0
    return 0.0


def rating_score(average_rating: float) -> float:
    return average_rating * 2


def availability_score(capacity: int, current_enrollment: int) -> float:
    if capacity == 0:
        return 0.0

    available_ratio = (capacity - current_enrollment) / capacity
    if available_ratio < 0.2:
        return -5.0
    if available_ratio > 0.8:
        return 3.0
    return 0.0


def segment_boost(segment: Optional[Segment], class_type: str, start_time: datetime) -> float:
    if segment is None:
        return 0.0

    if segment == Segment.YOGA_ENTHUSIAST and class_type == "Yoga":
        return 12.0
    if segment == Segment.STRENGTH_TRAINER and class_type in STRENGTH_TYPES:
        return 12.0
    if segment == Segment.CARDIO_LOVER and class_type in CARDIO_TYPES:
        return 12.0
    if segment == Segment.HIGHLY_ACTIVE:
        return 5.0
    if segment == Segment.WEEKEND_WARRIOR and is_weekend(start_time):
        return 10.0
    return 0.0


def recency_score(start_time: datetime, now: datetime) -> float:
    days_until = (ensure_utc(start_time) - ensure_utc(now)).total_seconds() / 86400
    if days_until < 0:
        # already started
        return 0.0
    if days_until <= 1:
        return 5.0
    if days_until <= 3:
        return 3.0
    return 0.0


def popularity_score(weekly_bookings: int) -> float:
    if weekly_bookings > 50:
        return 8.0
    if weekly_bookings > 20:
        return 4.0
    return 0.0


# ============================================================================
# ENGINE
# ============================================================================

class ScoringEngine:
    """
    Stateless scorer; safe to share across concurrent requests.

    `now` is injectable so a whole regeneration scores every candidate
    against the same instant (and so tests are reproducible).
    """

    def breakdown(
        self,
        user: UserProfile,
        offering: ClassOffering,
        interactions: Sequence[InteractionEvent],
        now: Optional[datetime] = None,
    ) -> ScoreBreakdown:
        now = now or utcnow()
        return ScoreBreakdown(
            fitness_level=fitness_level_score(user.fitness_level, offering.level),
            preferred_type=preferred_type_score(user.preferred_class_types, offering.type),
            favorite_instructor=favorite_instructor_score(offering.instructor_id, interactions),
            time_preference=time_preference_score(offering.start_time, interactions),
            rating=rating_score(offering.average_rating),
            availability=availability_score(offering.capacity, offering.current_enrollment),
            segment_boost=segment_boost(user.segment, offering.type, offering.start_time),
            recency=recency_score(offering.start_time, now),
            popularity=popularity_score(offering.weekly_bookings),
        )

    def score(
        self,
        user: UserProfile,
        offering: ClassOffering,
        interactions: Sequence[InteractionEvent],
        now: Optional[datetime] = None,
    ) -> float:
        return self.breakdown(user, offering, interactions, now).total
