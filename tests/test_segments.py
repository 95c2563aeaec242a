"""Behavioral segment classification"""

from datetime import timedelta

import pytest

from fitlife.models import Segment
from fitlife.segments import SegmentClassifier, segment_for_class_type

from conftest import NOW, make_event

# NOW is a Wednesday; these offsets land on weekdays / weekend days
WEEKDAYS = [NOW - timedelta(days=d) for d in (1, 2, 7, 8, 9, 14, 15, 16, 21, 22)]
WEEKEND_DAYS = [NOW - timedelta(days=d) for d in (3, 4, 10, 11, 17, 18)]


@pytest.fixture
def classifier():
    return SegmentClassifier()


def completions(types, timestamps=WEEKDAYS):
    return [
        make_event(item_id=f"c{i}", kind="Complete", timestamp=timestamps[i % len(timestamps)])
        for i in range(len(types))
    ]


def type_map(types):
    return {f"c{i}": class_type for i, class_type in enumerate(types)}


def test_fewer_than_five_completions_is_beginner(classifier):
    types = ["Yoga"] * 4
    events = completions(types) + [make_event(kind="View") for _ in range(30)]
    assert classifier.classify(events, type_map(types)) == Segment.BEGINNER


def test_twenty_completions_is_highly_active(classifier):
    types = ["Yoga"] * 20
    assert classifier.classify(completions(types), type_map(types)) == Segment.HIGHLY_ACTIVE


@pytest.mark.parametrize(
    "dominant, expected",
    [
        ("Yoga", Segment.YOGA_ENTHUSIAST),
        ("HIIT", Segment.STRENGTH_TRAINER),
        ("Strength", Segment.STRENGTH_TRAINER),
        ("Spin", Segment.CARDIO_LOVER),
        ("Running", Segment.CARDIO_LOVER),
        ("Cardio", Segment.CARDIO_LOVER),
        ("Pilates", Segment.GENERAL),
    ],
)
def test_dominant_type(classifier, dominant, expected):
    types = [dominant] * 4 + ["Boxing"]
    assert classifier.classify(completions(types), type_map(types)) == expected


def test_sixty_percent_is_not_dominant(classifier):
    types = ["Yoga", "Yoga", "Yoga", "Spin", "HIIT"]
    assert classifier.classify(completions(types), type_map(types)) == Segment.GENERAL


def test_unresolved_classes_still_count_toward_total(classifier):
    types = ["Yoga"] * 4 + ["Spin"] * 2
    mapping = type_map(types)
    # c0 and c1 were deleted since the user took them
    del mapping["c0"], mapping["c1"]
    assert classifier.classify(completions(types), mapping) == Segment.GENERAL


def test_weekend_warrior(classifier):
    types = ["Yoga", "Spin", "HIIT", "Yoga", "Spin"]
    events = completions(types, timestamps=WEEKEND_DAYS)
    assert classifier.classify(events, type_map(types)) == Segment.WEEKEND_WARRIOR


def test_mixed_schedule_is_general(classifier):
    types = ["Yoga", "Spin", "HIIT", "Yoga", "Spin"]
    events = completions(types, timestamps=WEEKEND_DAYS[:3] + WEEKDAYS[:2])
    assert classifier.classify(events, type_map(types)) == Segment.GENERAL


def test_order_independent(classifier):
    types = ["Yoga", "Spin", "HIIT", "Yoga", "Spin", "Yoga"]
    events = completions(types, timestamps=WEEKEND_DAYS) + [make_event(kind="Book")]
    mapping = type_map(types)

    forward = classifier.classify(events, mapping)
    backward = classifier.classify(list(reversed(events)), mapping)

    assert forward == backward == Segment.WEEKEND_WARRIOR


def test_segment_for_class_type():
    assert segment_for_class_type("Yoga") == Segment.YOGA_ENTHUSIAST
    assert segment_for_class_type("Zumba") == Segment.GENERAL
