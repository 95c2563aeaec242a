"""
Behavioral Segment Classifier

Maps the last 30 days of a user's interactions onto one segment label.
Rules are evaluated in priority order and the first match wins:

1. < 5 completed classes                      -> Beginner
2. completions / 4 weeks >= 5                 -> HighlyActive
3. one class type > 60% of completions        -> YogaEnthusiast |
                                                 StrengthTrainer |
                                                 CardioLover | General
4. > 80% of completions on Saturday/Sunday    -> WeekendWarrior
5. otherwise                                  -> General

The classifier is a pure function of its inputs: the order of the
interaction list never changes the outcome.
"""

from collections import Counter
from typing import Iterable, Mapping

from fitlife.models import EventKind, InteractionEvent, Segment, is_weekend
from fitlife.scoring import CARDIO_TYPES, STRENGTH_TYPES

MIN_COMPLETIONS = 5
LOOKBACK_WEEKS = 4
HIGHLY_ACTIVE_PER_WEEK = 5
SPECIALIST_SHARE = 0.6
WEEKEND_SHARE = 0.8


def segment_for_class_type(class_type: str) -> Segment:
    if class_type == "Yoga":
        return Segment.YOGA_ENTHUSIAST
    if class_type in STRENGTH_TYPES:
        return Segment.STRENGTH_TRAINER
    if class_type in CARDIO_TYPES:
        return Segment.CARDIO_LOVER
    return Segment.GENERAL


class SegmentClassifier:
    """Pure classifier; `class_types` resolves completed item ids to class types"""

    def classify(
        self,
        interactions: Iterable[InteractionEvent],
        class_types: Mapping[str, str],
    ) -> Segment:
        completed = [event for event in interactions if event.kind == EventKind.COMPLETE]
        total = len(completed)

        if total < MIN_COMPLETIONS:
            return Segment.BEGINNER

        if total / LOOKBACK_WEEKS >= HIGHLY_ACTIVE_PER_WEEK:
            return Segment.HIGHLY_ACTIVE

        # Items that no longer resolve are skipped but still count in the total
        type_counts = Counter(
            class_types[event.item_id] for event in completed if event.item_id in class_types
        )
        for class_type, count in sorted(type_counts.items()):
            if count / total > SPECIALIST_SHARE:
                return segment_for_class_type(class_type)

        weekend = sum(1 for event in completed if is_weekend(event.timestamp))
        if weekend > total * WEEKEND_SHARE:
            return Segment.WEEKEND_WARRIOR

        return Segment.GENERAL
