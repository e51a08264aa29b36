"""
Post-commit effects.

Mutations do not notify anyone themselves. They return the effects that
should follow the commit, and the caller runs them inline or hands them
to Celery. Effects are JSON-serializable so they survive the broker.
"""
from typing import Annotated, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from featurerev.schemas.feature import FeatureSnapshot


class FeatureChangeEffect(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["feature_change"] = "feature_change"
    event: Literal["created", "updated", "deleted"]
    organization: str
    feature: FeatureSnapshot
    previous: Optional[FeatureSnapshot] = None
    skip_refresh_for_project: Optional[str] = None


class ThirdPartySyncEffect(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["third_party_sync"] = "third_party_sync"
    action: Literal["create", "update", "delete"]
    organization: str
    feature: FeatureSnapshot


Effect = Annotated[
    Union[FeatureChangeEffect, ThirdPartySyncEffect],
    Field(discriminator="kind"),
]

EFFECT_ADAPTER = TypeAdapter(Effect)


class MutationResult(BaseModel):
    """New feature snapshot (None after a delete) and the effects to run."""
    model_config = ConfigDict(frozen=True)

    feature: Optional[FeatureSnapshot] = None
    effects: Tuple[Effect, ...] = ()


def collect_effects(results: List[MutationResult]) -> List[Effect]:
    return [effect for result in results for effect in result.effects]
