"""
Collaborator contracts consumed by the orchestrator and background jobs.

Concrete adapters live in fitlife.infra (SQLAlchemy, cachetools, Redis);
tests substitute in-memory fakes.
"""

from typing import Dict, List, Optional, Protocol, Sequence

from fitlife.models import ClassOffering, EventKind, InteractionEvent, Recommendation, Segment, UserProfile


class CandidateSource(Protocol):
    async def fetch_upcoming_active_open_classes(self, limit: int) -> List[ClassOffering]:
        """Active, not-yet-started, not-full classes ordered by start time"""
        ...


class ClassCatalog(Protocol):
    async def get_by_ids(self, ids: Sequence[str]) -> Dict[str, ClassOffering]:
        """Resolve class ids; ids that no longer exist are simply absent"""
        ...


class InteractionStore(Protocol):
    async def fetch_interactions(
        self,
        user_id: str,
        since_days: int,
        event_kind: Optional[EventKind] = None,
    ) -> List[InteractionEvent]:
        ...

    async def fetch_active_user_ids(self, since_days: int, limit: Optional[int] = None) -> List[str]:
        ...

    async def append(self, event: InteractionEvent) -> None:
        ...


class RecommendationCache(Protocol):
    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, ttl: int) -> bool:
        ...

    async def delete(self, key: str) -> bool:
        ...

    async def ping(self) -> bool:
        ...


class RecommendationStore(Protocol):
    async def fetch_by_user(
        self,
        user_id: str,
        limit: int,
        within_minutes: Optional[int] = None,
    ) -> List[Recommendation]:
        """Ranked rows for a user, optionally only those generated recently"""
        ...

    async def replace_all_for_user(self, user_id: str, recommendations: Sequence[Recommendation]) -> None:
        """Delete-then-insert in one transaction; raises RecommendationStoreError"""
        ...


class UserRepository(Protocol):
    async def get(self, user_id: str) -> Optional[UserProfile]:
        ...

    async def update_segment(self, user_id: str, segment: Segment) -> None:
        ...
