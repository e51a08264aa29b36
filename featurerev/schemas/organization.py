"""Organization settings consumed by the feature core."""
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class Environment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    description: str = ""
    parent: Optional[str] = None   # inherit feature settings from this environment


class SafeRolloutSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    snapshot_interval_hours: float = 6.0
    ramp_up_interval_hours: float = 1.0


class OrganizationSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    environments: List[Environment] = Field(default_factory=list)
    third_party_sync_enabled: bool = False
    safe_rollout: SafeRolloutSettings = Field(default_factory=SafeRolloutSettings)


class EventUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str = "dashboard"   # dashboard, api_key, system
    id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None


SYSTEM_USER = EventUser(type="system", name="scheduler")
