"""Read contract the engine expects from the storage collaborator."""

from __future__ import annotations

from typing import Iterable, List, Optional, Protocol

from .models import CheckIn, Exemption, Review, ScheduleConfig, User, UserFilter, Vacation


class ComplianceStore(Protocol):
    """Source of raw records. The engine only ever reads through this."""

    def list_organization_ids(self) -> List[str]: ...

    def get_organization_schedule(self, org_id: str) -> ScheduleConfig: ...

    def list_users(self, org_id: str, user_filter: Optional[UserFilter] = None) -> List[User]: ...

    def list_checkins(
        self, org_id: str, user_id: Optional[str] = None, week_id: Optional[str] = None
    ) -> List[CheckIn]: ...

    def list_reviews(self, checkin_ids: Iterable[str]) -> List[Review]: ...

    def list_vacations(
        self, org_id: str, user_id: Optional[str] = None, week_id: Optional[str] = None
    ) -> List[Vacation]: ...

    def list_exemptions(
        self, org_id: str, user_id: Optional[str] = None, week_id: Optional[str] = None
    ) -> List[Exemption]: ...


__all__ = ["ComplianceStore"]
