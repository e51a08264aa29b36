"""
Effect boundary.

``dispatch_effects`` runs effects inline, ``enqueue_effects`` hands them to
the Celery worker. Either way a failing effect is logged and counted and
never reaches the caller: the mutation it follows is already committed.
"""

import logging
from typing import Iterable, List, Optional

from featurerev.core.context import ReqContext
from featurerev.metrics import EFFECT_FAILURES
from featurerev.schemas.effects import (
    EFFECT_ADAPTER,
    Effect,
    FeatureChangeEffect,
    ThirdPartySyncEffect,
)
from featurerev.schemas.feature import FeatureSnapshot
from featurerev.services.notifier import notify_feature_change

logger = logging.getLogger(__name__)

_SYNC_ACTIONS = {"created": "create", "updated": "update", "deleted": "delete"}


def change_effects(
    ctx: ReqContext,
    event: str,
    feature: FeatureSnapshot,
    previous: Optional[FeatureSnapshot] = None,
    skip_refresh_for_project: Optional[str] = None,
) -> List[Effect]:
    effects: List[Effect] = [FeatureChangeEffect(
        event=event,
        organization=feature.organization,
        feature=feature,
        previous=previous,
        skip_refresh_for_project=skip_refresh_for_project,
    )]
    if ctx.org.third_party_sync_enabled:
        effects.append(ThirdPartySyncEffect(
            action=_SYNC_ACTIONS[event],
            organization=feature.organization,
            feature=feature,
        ))
    return effects


def run_effect(ctx: ReqContext, effect: Effect) -> None:
    if isinstance(effect, FeatureChangeEffect):
        notify_feature_change(ctx, effect)
    elif isinstance(effect, ThirdPartySyncEffect):
        client = ctx.sync_client
        if client is None:
            logger.debug("No sync client configured, skipping %s of %s", effect.action, effect.feature.id)
            return
        if effect.action == "create":
            client.create_item(effect.feature)
        elif effect.action == "update":
            client.update_item(effect.feature)
        else:
            client.delete_item(effect.feature)
    else:
        raise TypeError(f"Unknown effect: {effect!r}")


def dispatch_effects(ctx: ReqContext, effects: Iterable[Effect]) -> int:
    """Run effects in order. Returns the number that failed."""
    failures = 0
    for effect in effects:
        try:
            run_effect(ctx, effect)
        except Exception:
            failures += 1
            EFFECT_FAILURES.labels(kind=effect.kind).inc()
            logger.exception(
                "Effect %s failed for feature %s (org=%s)",
                effect.kind, effect.feature.id, effect.organization,
            )
            # Keep the session usable for the remaining effects
            ctx.db.rollback()
    return failures


def effect_to_payload(effect: Effect) -> dict:
    return effect.model_dump(mode="json")


def effect_from_payload(payload: dict) -> Effect:
    return EFFECT_ADAPTER.validate_python(payload)


def enqueue_effects(effects: Iterable[Effect]) -> int:
    """Queue effects for the worker. Returns the number queued."""
    from featurerev.tasks.feature_tasks import process_feature_effect

    queued = 0
    for effect in effects:
        try:
            process_feature_effect.delay(effect.organization, effect_to_payload(effect))
            queued += 1
        except Exception:
            EFFECT_FAILURES.labels(kind=effect.kind).inc()
            logger.exception(
                "Failed to enqueue %s for feature %s (org=%s)",
                effect.kind, effect.feature.id, effect.organization,
            )
    return queued
