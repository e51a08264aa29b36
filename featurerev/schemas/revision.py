"""Feature revision schemas."""
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from featurerev.schemas.feature import FeatureRule, as_utc
from featurerev.schemas.organization import EventUser

RevisionStatus = Literal[
    "draft",
    "pending-review",
    "approved",
    "changes-requested",
    "published",
    "discarded",
]

CLOSED_STATUSES = ("published", "discarded")
REVIEW_RESET_STATUSES = ("approved", "changes-requested")


class FeatureRevision(BaseModel):
    model_config = ConfigDict(frozen=True)

    organization: str
    feature_id: str
    version: int
    base_version: int = 0
    status: RevisionStatus = "draft"
    default_value: str = ""
    rules: Dict[str, List[FeatureRule]] = Field(default_factory=dict)
    comment: str = ""
    created_by: Optional[EventUser] = None
    published_by: Optional[EventUser] = None
    date_created: Optional[datetime] = None
    date_updated: Optional[datetime] = None
    date_published: Optional[datetime] = None

    @field_validator("date_created", "date_updated", "date_published")
    @classmethod
    def normalize_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)

    @property
    def is_open(self) -> bool:
        return self.status not in CLOSED_STATUSES


class RevisionChanges(BaseModel):
    """Partial patch for a revision."""

    status: Optional[RevisionStatus] = None
    default_value: Optional[str] = None
    rules: Optional[Dict[str, List[FeatureRule]]] = None
    comment: Optional[str] = None

    def changes(self) -> dict:
        return {name: getattr(self, name) for name in self.model_fields_set}


class RevisionLogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: Optional[EventUser] = None
    action: str
    subject: str = ""
    value: str = ""
    timestamp: Optional[datetime] = None


class MergeResultChanges(BaseModel):
    """Outcome of merging a revision onto the live feature.

    ``rules`` holds, per environment, the final rule list to install. An
    environment missing from ``rules`` is left untouched on publish.
    """
    default_value: Optional[str] = None
    rules: Dict[str, List[FeatureRule]] = Field(default_factory=dict)
