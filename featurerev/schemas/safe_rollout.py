from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from featurerev.schemas.feature import SafeRolloutStatus, as_utc


class RampUpSchedule(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    step: int = 0
    steps: List[float] = Field(default_factory=list)   # coverage per step, 0-1
    next_update: Optional[datetime] = None


class SafeRollout(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    organization: str
    feature_id: str
    environment: str
    status: SafeRolloutStatus = "running"
    started_at: Optional[datetime] = None
    next_snapshot_attempt: Optional[datetime] = None
    ramp_up_schedule: RampUpSchedule = Field(default_factory=RampUpSchedule)

    @field_validator("started_at", "next_snapshot_attempt")
    @classmethod
    def normalize_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


class SafeRolloutUpdate(BaseModel):
    status: Optional[SafeRolloutStatus] = None
    started_at: Optional[datetime] = None
    next_snapshot_attempt: Optional[datetime] = None
    ramp_up_schedule: Optional[RampUpSchedule] = None

    def changes(self) -> dict:
        return {name: getattr(self, name) for name in self.model_fields_set}
