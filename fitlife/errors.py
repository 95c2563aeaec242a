"""Error taxonomy for the personalization engine."""


class PersonalizationError(Exception):
    """Base class for all engine errors"""


class UserNotFoundError(PersonalizationError):
    """Requested user does not exist; generation aborted, nothing written"""

    def __init__(self, user_id: str):
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class InvalidEventKindError(PersonalizationError, ValueError):
    """Event kind outside the closed View/Click/Book/Complete/Cancel/Rate set"""

    def __init__(self, value: object):
        super().__init__(
            f"Invalid event kind {value!r}; expected one of "
            "View, Click, Book, Complete, Cancel, Rate"
        )
        self.value = value


class CacheUnavailableError(PersonalizationError):
    """Cache backend could not serve a read or write"""


class RecommendationStoreError(PersonalizationError):
    """Durable store failed; an interrupted swap leaves the previous set intact"""


class GenerationTimeoutError(PersonalizationError):
    """Regeneration exceeded its latency budget"""

    def __init__(self, user_id: str, timeout: float):
        super().__init__(
            f"Generating recommendations for user {user_id} exceeded {timeout:.2f}s"
        )
        self.user_id = user_id
        self.timeout = timeout


class UnreadableRecordError(RecommendationStoreError):
    """A stored row no longer passes model validation"""
