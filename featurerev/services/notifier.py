"""
Change notifier
===============

Runs after a feature mutation has been committed:

1. work out which SDK payload partitions the change touches
2. invalidate them in the payload cache
3. record an audit event with the before/after state

Each committed mutation produces exactly one notification per affected
feature. This module never decides whether to notify; that is the
mutation's job, expressed through the effects it returns.
"""

import logging
from typing import Iterable, List, Optional, Sequence

from featurerev.core.context import ReqContext
from featurerev.crud import crud_event
from featurerev.schemas.effects import FeatureChangeEffect
from featurerev.schemas.feature import FeatureSnapshot
from featurerev.services.payload_cache import PayloadKey

logger = logging.getLogger(__name__)

# Fields that appear in every environment's SDK payload
GLOBAL_PAYLOAD_FIELDS = ("default_value", "value_type", "archived", "project", "prerequisites")


def _projects(*features: Optional[FeatureSnapshot]) -> List[str]:
    """Payload partitions for the features' projects. "" is always included."""
    projects = [""]
    for feature in features:
        if feature is not None and feature.project and feature.project not in projects:
            projects.append(feature.project)
    return projects


def _keys(organization: str, environments: Iterable[str], projects: Sequence[str]) -> List[PayloadKey]:
    return [
        PayloadKey(organization=organization, environment=env, project=project)
        for env in environments
        for project in projects
    ]


def get_affected_payload_keys(
    features: Sequence[FeatureSnapshot],
    environment_ids: Sequence[str],
) -> List[PayloadKey]:
    keys: List[PayloadKey] = []
    for feature in features:
        for key in _keys(feature.organization, environment_ids, _projects(feature)):
            if key not in keys:
                keys.append(key)
    return keys


def get_enabled_environments(feature: FeatureSnapshot, environment_ids: Sequence[str]) -> List[str]:
    return [
        env for env in environment_ids
        if env in feature.environment_settings and feature.environment_settings[env].enabled
    ]


def get_changed_environments(
    previous: FeatureSnapshot,
    current: FeatureSnapshot,
    environment_ids: Sequence[str],
) -> List[str]:
    if any(getattr(previous, f) != getattr(current, f) for f in GLOBAL_PAYLOAD_FIELDS):
        return list(environment_ids)
    return [
        env for env in environment_ids
        if previous.environment_settings.get(env) != current.environment_settings.get(env)
    ]


def get_payload_keys_by_diff(
    previous: FeatureSnapshot,
    current: FeatureSnapshot,
    environment_ids: Sequence[str],
) -> List[PayloadKey]:
    environments = get_changed_environments(previous, current, environment_ids)
    return _keys(current.organization, environments, _projects(previous, current))


def _event_environments(effect: FeatureChangeEffect, environment_ids: Sequence[str]) -> List[str]:
    if effect.event == "updated" and effect.previous is not None:
        return get_changed_environments(effect.previous, effect.feature, environment_ids)
    return get_enabled_environments(effect.feature, environment_ids)


def _event_data(effect: FeatureChangeEffect) -> dict:
    if effect.event in ("created", "deleted"):
        return {"object": effect.feature.model_dump(mode="json")}
    return {
        "object": effect.feature.model_dump(mode="json"),
        "previous": effect.previous.model_dump(mode="json") if effect.previous else None,
    }


def notify_feature_change(ctx: ReqContext, effect: FeatureChangeEffect) -> List[PayloadKey]:
    """Refresh affected payload partitions and record the audit event.

    Returns the partitions that were refreshed. Errors propagate to the
    effect boundary.
    """
    environment_ids = ctx.environment_ids()

    if effect.event == "updated" and effect.previous is not None:
        keys = get_payload_keys_by_diff(effect.previous, effect.feature, environment_ids)
    else:
        keys = get_affected_payload_keys([effect.feature], environment_ids)

    if effect.skip_refresh_for_project:
        keys = [k for k in keys if k.project != effect.skip_refresh_for_project]

    if keys and ctx.payload_cache is not None:
        ctx.payload_cache.refresh(keys)

    feature = effect.feature
    previous = effect.previous
    tags = list(dict.fromkeys(list(previous.tags if previous else []) + list(feature.tags)))
    projects = [p for p in _projects(previous, feature) if p]

    crud_event.create_event(
        ctx.db,
        organization=effect.organization,
        event=f"feature.{effect.event}",
        object_id=feature.id,
        data=_event_data(effect),
        projects=projects,
        tags=tags,
        environments=_event_environments(effect, environment_ids),
        user=ctx.audit_user,
    )
    logger.info(
        "feature.%s %s (org=%s, partitions=%d)",
        effect.event, feature.id, effect.organization, len(keys),
    )
    return keys
