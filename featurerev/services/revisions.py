"""
Revision publisher and draft editing
====================================

Publishing installs a revision's merge result on the live feature:

1. refuse revisions that are already published or discarded
2. build the feature patch (default value, per-environment rule lists)
3. refuse an empty patch
4. sync safe-rollout statuses
5. write the feature, guarded by its current ``version``
6. mark the revision published

Steps 4-6 share one database transaction. Experiments newly referenced by
the published rules are linked after the commit, and the returned effects
carry the cache refresh, audit event and third-party sync.
"""

import json
import logging
from typing import Any, Dict, List, Mapping, Optional
from uuid import uuid4

from featurerev.core.context import ReqContext
from featurerev.core.exceptions import InvalidEnvironment, InvalidRevisionState, NoChanges, UnknownRule
from featurerev.crud import crud_feature, crud_revision
from featurerev.metrics import REVISIONS_PUBLISHED
from featurerev.schemas.effects import MutationResult
from featurerev.schemas.feature import (
    BaseRule,
    FeatureEnvironment,
    FeatureSnapshot,
    FeatureUpdate,
    parse_rule,
)
from featurerev.schemas.revision import (
    FeatureRevision,
    MergeResultChanges,
    RevisionChanges,
    RevisionLogEntry,
)
from featurerev.services.effects import change_effects
from featurerev.services.features import link_experiments, write_feature_update
from featurerev.services.safe_rollouts import sync_safe_rollout_statuses
from featurerev.services.scheduling import get_next_scheduled_update

logger = logging.getLogger(__name__)


def generate_rule_id() -> str:
    return f"fr_{uuid4().hex[:16]}"


# ═══════════════════════════════════════════
#  Publish
# ═══════════════════════════════════════════

def apply_revision_changes(
    ctx: ReqContext,
    feature: FeatureSnapshot,
    revision: FeatureRevision,
    result: MergeResultChanges,
) -> FeatureUpdate:
    """Feature patch for publishing ``revision``. Raises NoChanges when empty.

    An environment listed in ``result.rules`` gets that exact rule list and
    keeps its enabled flag. Environments not listed, and environments the
    organization does not know, are left alone.
    """
    changes: Dict[str, Any] = {}
    if result.default_value is not None:
        changes["default_value"] = result.default_value

    environment_ids = ctx.environment_ids()
    settings = None
    for env in environment_ids:
        rules = result.rules.get(env)
        if rules is None:
            continue
        if settings is None:
            settings = dict(feature.environment_settings)
        current = settings.get(env)
        settings[env] = FeatureEnvironment(
            enabled=current.enabled if current else False,
            rules=list(rules),
        )
    if settings is not None:
        changes["environment_settings"] = settings

    if not changes:
        raise NoChanges()

    if settings is not None:
        changes["next_scheduled_update"] = get_next_scheduled_update(settings, environment_ids, ctx.now())

    changes["version"] = revision.version
    changes["has_drafts"] = crud_revision.has_draft(
        ctx.db, feature.organization, feature.id, exclude_versions=[revision.version],
    )
    return FeatureUpdate(**changes)


def publish_revision(
    ctx: ReqContext,
    feature: FeatureSnapshot,
    revision: FeatureRevision,
    result: MergeResultChanges,
    comment: Optional[str] = None,
) -> MutationResult:
    if not revision.is_open:
        raise InvalidRevisionState(revision.version, revision.status)

    patch = apply_revision_changes(ctx, feature, revision, result)

    try:
        sync_safe_rollout_statuses(ctx, feature, revision, result, commit=False)
        updated, added = write_feature_update(
            ctx, feature, patch, expected_version=feature.version, commit=False,
        )
        crud_revision.mark_revision_as_published(
            ctx.db,
            revision=revision,
            user=ctx.audit_user,
            comment=comment,
            now=ctx.now(),
            commit=False,
        )
        ctx.db.commit()
    except Exception:
        ctx.db.rollback()
        raise

    link_experiments(ctx, feature.id, added)
    REVISIONS_PUBLISHED.inc()
    logger.info(
        "Published revision %d of %s (org=%s, previous version %d)",
        revision.version, feature.id, feature.organization, feature.version,
    )
    return MutationResult(
        feature=updated,
        effects=change_effects(ctx, "updated", updated, previous=feature),
    )


# ═══════════════════════════════════════════
#  Drafts
# ═══════════════════════════════════════════

def _require_environment(ctx: ReqContext, environment: str) -> None:
    if environment not in ctx.environment_ids():
        raise InvalidEnvironment(environment)


def _copy_rules(revision: FeatureRevision) -> Dict[str, List[BaseRule]]:
    return {env: list(rules) for env, rules in revision.rules.items()}


def _log(ctx: ReqContext, action: str, subject: str = "", value: str = "") -> RevisionLogEntry:
    return RevisionLogEntry(user=ctx.audit_user, action=action, subject=subject, value=value, timestamp=ctx.now())


def create_revision(ctx: ReqContext, feature: FeatureSnapshot, comment: Optional[str] = None) -> FeatureRevision:
    """New draft starting from the live feature."""
    now = ctx.now()
    rules = {
        env: list(feature.environment_settings[env].rules)
        for env in ctx.environment_ids()
        if env in feature.environment_settings
    }
    try:
        revision = crud_revision.create(ctx.db, revision=FeatureRevision(
            organization=feature.organization,
            feature_id=feature.id,
            version=crud_revision.get_max_version(ctx.db, feature.organization, feature.id) + 1,
            base_version=feature.version,
            status="draft",
            default_value=feature.default_value,
            rules=rules,
            comment=comment or "",
            created_by=ctx.audit_user,
            date_created=now,
            date_updated=now,
        ), commit=False)
        crud_feature.update(
            ctx.db,
            organization=feature.organization,
            feature_id=feature.id,
            changes={"has_drafts": True},
            commit=False,
        )
        ctx.db.commit()
    except Exception:
        ctx.db.rollback()
        raise
    return revision


def add_feature_rule(
    ctx: ReqContext,
    revision: FeatureRevision,
    environment: str,
    rule: BaseRule,
    reset_review: bool = False,
) -> FeatureRevision:
    _require_environment(ctx, environment)
    if not rule.id:
        rule = rule.model_copy(update={"id": generate_rule_id()})

    rules = _copy_rules(revision)
    rules.setdefault(environment, []).append(rule)
    return crud_revision.update_revision(
        ctx.db,
        revision=revision,
        changes=RevisionChanges(rules=rules),
        log=_log(ctx, "add rule", f"to {environment}", rule.model_dump_json()),
        reset_review=reset_review,
        now=ctx.now(),
    )


def edit_feature_rule(
    ctx: ReqContext,
    revision: FeatureRevision,
    environment: str,
    index: int,
    updates: Mapping[str, Any],
    reset_review: bool = False,
) -> FeatureRevision:
    """Merge ``updates`` into one rule. The rule's type is kept as is."""
    rules = _copy_rules(revision)
    env_rules = rules.get(environment, [])
    if index < 0 or index >= len(env_rules):
        raise UnknownRule(environment, index)

    current = env_rules[index]
    merged = {**current.model_dump(), **dict(updates), "type": current.type}
    env_rules[index] = parse_rule(merged)
    rules[environment] = env_rules

    return crud_revision.update_revision(
        ctx.db,
        revision=revision,
        changes=RevisionChanges(rules=rules),
        log=_log(ctx, "edit rule", f"in {environment} (position {index + 1})", json.dumps(dict(updates), default=str)),
        reset_review=reset_review,
        now=ctx.now(),
    )


def copy_feature_environment_rules(
    ctx: ReqContext,
    revision: FeatureRevision,
    source_env: str,
    target_env: str,
    reset_review: bool = False,
) -> FeatureRevision:
    _require_environment(ctx, source_env)
    _require_environment(ctx, target_env)

    rules = _copy_rules(revision)
    rules[target_env] = list(rules.get(source_env, []))
    return crud_revision.update_revision(
        ctx.db,
        revision=revision,
        changes=RevisionChanges(rules=rules),
        log=_log(
            ctx,
            "copy rules",
            f"from {source_env} to {target_env}",
            json.dumps([r.model_dump(mode="json") for r in rules[target_env]]),
        ),
        reset_review=reset_review,
        now=ctx.now(),
    )


def set_default_value(
    ctx: ReqContext,
    revision: FeatureRevision,
    default_value: str,
    reset_review: bool = False,
) -> FeatureRevision:
    return crud_revision.update_revision(
        ctx.db,
        revision=revision,
        changes=RevisionChanges(default_value=default_value),
        log=_log(ctx, "edit default value", value=json.dumps({"default_value": default_value})),
        reset_review=reset_review,
        now=ctx.now(),
    )


def discard_revision(ctx: ReqContext, feature: FeatureSnapshot, revision: FeatureRevision) -> FeatureRevision:
    if not revision.is_open:
        raise InvalidRevisionState(revision.version, revision.status, action="discard")

    try:
        discarded = crud_revision.discard(
            ctx.db, revision=revision, user=ctx.audit_user, now=ctx.now(), commit=False,
        )
        crud_feature.update(
            ctx.db,
            organization=feature.organization,
            feature_id=feature.id,
            changes={"has_drafts": crud_revision.has_draft(
                ctx.db, feature.organization, feature.id, exclude_versions=[revision.version],
            )},
            commit=False,
        )
        ctx.db.commit()
    except Exception:
        ctx.db.rollback()
        raise
    return discarded
