"""
Request context passed explicitly into every feature operation.

Bundles the database session, organization settings, permission checks,
the acting user and the downstream collaborators (payload cache,
third-party sync client, safe-rollout scheduler). Core operations read
nothing from module-level state.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Optional, Protocol

from sqlalchemy.orm import Session

from featurerev.schemas.organization import EventUser, OrganizationSettings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Permissions(Protocol):
    def can_read_single_project_resource(self, project: Optional[str]) -> bool:
        ...


class AllowAllPermissions:
    """Used by background jobs and superusers."""

    def can_read_single_project_resource(self, project: Optional[str]) -> bool:
        return True


class ProjectPermissions:
    """Read access limited to a set of projects.

    Resources without a project are readable by everyone in the organization.
    """

    def __init__(self, allowed_projects: Iterable[str]):
        self.allowed_projects = set(allowed_projects)

    def can_read_single_project_resource(self, project: Optional[str]) -> bool:
        if not project:
            return True
        return project in self.allowed_projects


@dataclass
class ReqContext:
    db: Session
    org: OrganizationSettings
    audit_user: EventUser
    permissions: Permissions = field(default_factory=AllowAllPermissions)
    payload_cache: Optional[Any] = None          # featurerev.services.payload_cache.PayloadCache
    sync_client: Optional[Any] = None            # featurerev.services.third_party_sync.ExperimentationSyncClient
    schedule_safe_rollout: Optional[Callable] = None
    clock: Callable[[], datetime] = utcnow

    def environment_ids(self) -> List[str]:
        return [env.id for env in self.org.environments]

    def now(self) -> datetime:
        return self.clock()
