"""Domain model parsing and validation"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from fitlife.errors import InvalidEventKindError
from fitlife.models import EventKind, EventMetadata, MetadataStatus, Segment, UserProfile, is_weekend

from conftest import make_class, make_event


class TestEventKind:
    @pytest.mark.parametrize("raw", ["book", "BOOK", "Book", "bOoK"])
    def test_parse_is_case_insensitive(self, raw):
        assert EventKind.parse(raw) is EventKind.BOOK

    @pytest.mark.parametrize("raw", ["Like", "", None, 3, "Booked"])
    def test_parse_rejects_values_outside_closed_set(self, raw):
        with pytest.raises(InvalidEventKindError):
            EventKind.parse(raw)

    def test_invalid_kind_is_a_value_error(self):
        with pytest.raises(ValueError):
            EventKind.parse("Share")

    def test_interaction_event_rejects_unknown_kind(self):
        with pytest.raises(ValidationError):
            make_event(kind="Share")


class TestEventMetadata:
    def test_dict_with_instructor_and_rating(self):
        details = EventMetadata.parse({"instructorId": "i1", "rating": 5})
        assert details.status == MetadataStatus.PRESENT
        assert details.instructor_id == "i1"
        assert details.rating == 5.0

    def test_json_text_and_snake_case_key(self):
        details = EventMetadata.parse('{"instructor_id": "i2"}')
        assert details.status == MetadataStatus.PRESENT
        assert details.instructor_id == "i2"
        assert details.rating is None

    @pytest.mark.parametrize("raw", [None, "", "   ", {}])
    def test_absent(self, raw):
        assert EventMetadata.parse(raw).status == MetadataStatus.ABSENT

    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]", 42, ["i1"]])
    def test_invalid_shapes(self, raw):
        details = EventMetadata.parse(raw)
        assert details.status == MetadataStatus.INVALID
        assert details.instructor_id is None

    def test_wrongly_typed_fields_are_dropped(self):
        details = EventMetadata.parse({"instructorId": 17, "rating": "great"})
        assert details.status == MetadataStatus.PRESENT
        assert details.instructor_id is None
        assert details.rating is None

    @pytest.mark.parametrize("raw", [
        {"instructorId": "i1", "rating": 10**400},
        '{"instructorId": "i1", "rating": 1' + "0" * 400 + "}",
        '{"instructorId": "i1", "rating": 1e999}',
    ])
    def test_out_of_range_rating_is_dropped(self, raw):
        details = EventMetadata.parse(raw)
        assert details.status == MetadataStatus.PRESENT
        assert details.instructor_id == "i1"
        assert details.rating is None

    def test_event_with_huge_rating_still_builds(self):
        event = make_event(metadata={"rating": 10**400})
        assert event.details.rating is None

    def test_event_exposes_parsed_details(self):
        event = make_event(metadata='{"instructorId": "i9"}')
        assert event.details.instructor_id == "i9"


class TestUserProfile:
    def test_preferences_from_json_text(self):
        user = UserProfile(id="u1", preferred_class_types='["Yoga", "Spin"]', goals='["lose weight"]')
        assert user.preferred_class_types == frozenset({"Yoga", "Spin"})
        assert user.goals == ["lose weight"]

    @pytest.mark.parametrize("raw", ["not json", '{"a": 1}', "[1, 2]", 7])
    def test_malformed_preferences_become_empty(self, raw):
        user = UserProfile(id="u1", preferred_class_types=raw, goals=raw)
        assert user.preferred_class_types == frozenset()
        assert user.goals == []

    def test_unknown_segment_label_is_unsegmented(self):
        assert UserProfile(id="u1", segment="Marathoner").segment is None

    def test_known_segment_label(self):
        assert UserProfile(id="u1", segment="CardioLover").segment is Segment.CARDIO_LOVER


class TestClassOffering:
    def test_enrollment_cannot_exceed_capacity(self):
        with pytest.raises(ValidationError):
            make_class(capacity=10, current_enrollment=11)

    @pytest.mark.parametrize("rating", [-0.1, 5.1])
    def test_rating_must_be_within_range(self, rating):
        with pytest.raises(ValidationError):
            make_class(average_rating=rating)

    def test_naive_start_time_is_utc(self):
        offering = make_class(start_time=datetime(2025, 3, 8, 10, 0))
        assert offering.start_time.tzinfo == timezone.utc
        assert is_weekend(offering.start_time)
