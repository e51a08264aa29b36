"""Feature schemas: rule variants, environment settings and the feature snapshot."""
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ScheduleRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: Optional[datetime] = None
    enabled: bool = True

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


class SavedGroupTargeting(BaseModel):
    model_config = ConfigDict(frozen=True)

    ids: List[str] = Field(default_factory=list)
    match: Literal["all", "any", "none"] = "all"


# ═══════════════════════════════════════════
#  Rule variants
# ═══════════════════════════════════════════

class BaseRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = ""
    description: str = ""
    condition: str = ""
    enabled: bool = True
    schedule_rules: List[ScheduleRule] = Field(default_factory=list)
    saved_groups: List[SavedGroupTargeting] = Field(default_factory=list)


class ForceRule(BaseRule):
    type: Literal["force"] = "force"
    value: str = ""


class RolloutRule(BaseRule):
    type: Literal["rollout"] = "rollout"
    value: str = ""
    coverage: float = Field(default=1.0, ge=0, le=1)
    hash_attribute: str = "id"


class ExperimentValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: str
    weight: float = Field(ge=0, le=1)
    name: str = ""


class NamespaceValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    name: str = ""
    range: List[float] = Field(default_factory=lambda: [0.0, 1.0])


class ExperimentRule(BaseRule):
    """Legacy inline experiment; newer features reference experiments instead."""
    type: Literal["experiment"] = "experiment"
    tracking_key: str = ""
    hash_attribute: str = "id"
    fallback_attribute: str = ""
    coverage: float = Field(default=1.0, ge=0, le=1)
    values: List[ExperimentValue] = Field(default_factory=list)
    namespace: Optional[NamespaceValue] = None
    disable_sticky_bucketing: bool = False
    bucket_version: Optional[int] = None
    min_bucket_version: Optional[int] = None


class ExperimentRefVariation(BaseModel):
    model_config = ConfigDict(frozen=True)

    variation_id: str
    value: str


class ExperimentRefRule(BaseRule):
    type: Literal["experiment-ref"] = "experiment-ref"
    experiment_id: str
    variations: List[ExperimentRefVariation] = Field(default_factory=list)


SafeRolloutStatus = Literal["running", "rolled-back", "released", "stopped"]


class SafeRolloutRule(BaseRule):
    type: Literal["safe-rollout"] = "safe-rollout"
    safe_rollout_id: str
    status: SafeRolloutStatus = "running"
    control_value: str = ""
    variation_value: str = ""
    hash_attribute: str = "id"
    seed: str = ""


FeatureRule = Annotated[
    Union[ForceRule, RolloutRule, ExperimentRule, ExperimentRefRule, SafeRolloutRule],
    Field(discriminator="type"),
]

RULE_ADAPTER = TypeAdapter(FeatureRule)
RULE_LIST_ADAPTER = TypeAdapter(List[FeatureRule])
RULES_BY_ENV_ADAPTER = TypeAdapter(Dict[str, List[FeatureRule]])


def parse_rule(data: Any) -> BaseRule:
    return RULE_ADAPTER.validate_python(data)


# ═══════════════════════════════════════════
#  Environment settings
# ═══════════════════════════════════════════

class FeatureEnvironment(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    rules: List[FeatureRule] = Field(default_factory=list)


EnvironmentSettings = Dict[str, FeatureEnvironment]

ENV_SETTINGS_ADAPTER = TypeAdapter(EnvironmentSettings)


class FeaturePrerequisite(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    condition: str = ""


class JSONSchemaDef(BaseModel):
    model_config = ConfigDict(frozen=True)

    schema_type: Literal["schema", "simple"] = "schema"
    definition: str = ""                       # raw JSON schema when schema_type == "schema"
    simple: Optional[Dict[str, Any]] = None     # {"type": ..., "fields": [...]} when "simple"
    enabled: bool = False
    date: Optional[datetime] = None


class LegacyDraft(BaseModel):
    """Single pending draft stored on the feature before revisions existed."""
    model_config = ConfigDict(frozen=True)

    active: bool = False
    default_value: Optional[str] = None
    rules: Dict[str, List[FeatureRule]] = Field(default_factory=dict)
    comment: str = ""
    date_created: Optional[datetime] = None
    date_updated: Optional[datetime] = None


ValueType = Literal["boolean", "string", "number", "json"]


# ═══════════════════════════════════════════
#  Feature snapshot + patch
# ═══════════════════════════════════════════

class FeatureSnapshot(BaseModel):
    """Immutable view of a feature. Mutations produce a new snapshot."""
    model_config = ConfigDict(frozen=True)

    id: str
    organization: str
    owner: str = ""
    description: str = ""
    project: str = ""
    archived: bool = False
    never_stale: bool = False
    value_type: ValueType = "boolean"
    default_value: str = ""
    environment_settings: EnvironmentSettings = Field(default_factory=dict)
    prerequisites: List[FeaturePrerequisite] = Field(default_factory=list)
    json_schema: Optional[JSONSchemaDef] = None
    tags: List[str] = Field(default_factory=list)
    custom_fields: Dict[str, Any] = Field(default_factory=dict)

    version: int = 1
    date_created: Optional[datetime] = None
    date_updated: Optional[datetime] = None

    # Derived / cached
    linked_experiments: List[str] = Field(default_factory=list)
    next_scheduled_update: Optional[datetime] = None
    has_drafts: bool = False

    # Legacy single-draft model
    legacy_draft: Optional[LegacyDraft] = None
    legacy_draft_migrated: bool = False

    @field_validator("date_created", "date_updated", "next_scheduled_update")
    @classmethod
    def normalize_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


class FeatureUpdate(BaseModel):
    """Partial patch for a feature. Only explicitly set fields are applied."""

    owner: Optional[str] = None
    description: Optional[str] = None
    project: Optional[str] = None
    archived: Optional[bool] = None
    never_stale: Optional[bool] = None
    value_type: Optional[ValueType] = None
    default_value: Optional[str] = None
    environment_settings: Optional[EnvironmentSettings] = None
    prerequisites: Optional[List[FeaturePrerequisite]] = None
    json_schema: Optional[JSONSchemaDef] = None
    tags: Optional[List[str]] = None
    custom_fields: Optional[Dict[str, Any]] = None
    version: Optional[int] = None
    date_updated: Optional[datetime] = None
    linked_experiments: Optional[List[str]] = None
    next_scheduled_update: Optional[datetime] = None
    has_drafts: Optional[bool] = None
    legacy_draft_migrated: Optional[bool] = None

    def changes(self) -> Dict[str, Any]:
        """Set fields only, as model instances (not dumped)."""
        return {name: getattr(self, name) for name in self.model_fields_set}

    def merge(self, other: "FeatureUpdate") -> "FeatureUpdate":
        return FeatureUpdate(**{**self.changes(), **other.changes()})


def apply_feature_update(feature: FeatureSnapshot, patch: FeatureUpdate) -> FeatureSnapshot:
    return feature.model_copy(update=patch.changes())
