"""
Feature lifecycle
=================

Reads return immutable ``FeatureSnapshot`` objects with legacy documents
upgraded and environment inheritance applied. Writes take the snapshot
the caller read, persist a patch and return ``MutationResult`` with the
new snapshot and the effects (cache refresh, audit event, third-party
sync) the caller must run after the commit.
"""

import json
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from featurerev.core.context import ReqContext
from featurerev.core.exceptions import FeatureNotFound, InvalidJsonSchema
from featurerev.crud import crud_experiment, crud_feature, crud_organization, crud_revision
from featurerev.metrics import SCHEDULED_UPDATES
from featurerev.models.feature import Feature
from featurerev.schemas.effects import Effect, MutationResult
from featurerev.schemas.experiment import Experiment
from featurerev.schemas.feature import (
    FeatureSnapshot,
    FeatureUpdate,
    JSONSchemaDef,
    apply_feature_update,
)
from featurerev.schemas.organization import OrganizationSettings
from featurerev.schemas.revision import FeatureRevision
from featurerev.services.effects import change_effects, enqueue_effects
from featurerev.services.environments import (
    apply_environment_inheritance,
    compute_environment_toggles,
    get_environment_ids,
)
from featurerev.services.linked_experiments import experiments_added, resolve_linked_experiments
from featurerev.services.migrations import upgrade_feature
from featurerev.services.organizations import get_context_for_job
from featurerev.services.scheduling import apply_due_schedules, get_next_scheduled_update

logger = logging.getLogger(__name__)

SIMPLE_SCHEMA_TYPES = ("object", "object[]", "primitive", "primitive[]")
SIMPLE_FIELD_TYPES = ("string", "integer", "float", "boolean")


def to_snapshot(org: OrganizationSettings, db_obj: Feature) -> FeatureSnapshot:
    doc = upgrade_feature(crud_feature.to_document(db_obj), get_environment_ids(org))
    feature = FeatureSnapshot.model_validate(doc)
    return feature.model_copy(update={
        "environment_settings": apply_environment_inheritance(
            org.environments, feature.environment_settings
        ),
    })


def _readable(ctx: ReqContext, rows: Iterable[Feature]) -> List[FeatureSnapshot]:
    return [
        to_snapshot(ctx.org, row)
        for row in rows
        if ctx.permissions.can_read_single_project_resource(row.project)
    ]


# ═══════════════════════════════════════════
#  Reads
# ═══════════════════════════════════════════

def get_all_features(
    ctx: ReqContext,
    *,
    project: Optional[str] = None,
    include_archived: bool = False,
) -> List[FeatureSnapshot]:
    rows = crud_feature.get_multi(
        ctx.db, ctx.org.id, project=project, include_archived=include_archived,
    )
    return _readable(ctx, rows)


def has_archived_features(ctx: ReqContext, project: Optional[str] = None) -> bool:
    return crud_feature.has_archived(ctx.db, ctx.org.id, project)


def get_all_features_with_linked_experiments(
    ctx: ReqContext,
    *,
    project: Optional[str] = None,
    include_archived: bool = False,
) -> Tuple[List[FeatureSnapshot], List[Experiment]]:
    features = get_all_features(ctx, project=project, include_archived=include_archived)
    experiment_ids = list(dict.fromkeys(
        exp_id for feature in features for exp_id in feature.linked_experiments
    ))
    experiments = [
        exp for exp in crud_experiment.get_by_ids(ctx.db, ctx.org.id, experiment_ids)
        if ctx.permissions.can_read_single_project_resource(exp.project)
    ]
    return features, experiments


def get_feature(ctx: ReqContext, feature_id: str) -> Optional[FeatureSnapshot]:
    row = crud_feature.get(ctx.db, ctx.org.id, feature_id)
    if not row or not ctx.permissions.can_read_single_project_resource(row.project):
        return None
    return to_snapshot(ctx.org, row)


def require_feature(ctx: ReqContext, feature_id: str) -> FeatureSnapshot:
    feature = get_feature(ctx, feature_id)
    if feature is None:
        raise FeatureNotFound(feature_id)
    return feature


def get_features_by_ids(ctx: ReqContext, ids: Sequence[str]) -> List[FeatureSnapshot]:
    return _readable(ctx, crud_feature.get_by_ids(ctx.db, ctx.org.id, ids))


# ═══════════════════════════════════════════
#  Writes
# ═══════════════════════════════════════════

def link_experiments(ctx: ReqContext, feature_id: str, experiment_ids: Iterable[str]) -> None:
    for exp_id in experiment_ids:
        if not crud_experiment.add_linked_feature(ctx.db, ctx.org.id, exp_id, feature_id):
            logger.debug("Experiment %s not linked to %s (missing or already linked)", exp_id, feature_id)


def write_feature_update(
    ctx: ReqContext,
    feature: FeatureSnapshot,
    updates: FeatureUpdate,
    *,
    expected_version: Optional[int] = None,
    commit: bool = True,
) -> Tuple[FeatureSnapshot, List[str]]:
    """Persist ``updates`` and return (new snapshot, newly linked experiment ids).

    Stamps ``date_updated`` and extends ``linked_experiments`` with any
    experiment the new rules reference. Linking the experiments themselves
    is left to the caller, after the commit.
    """
    patch = FeatureUpdate(date_updated=ctx.now()).merge(updates)
    updated = apply_feature_update(feature, patch)

    linked = resolve_linked_experiments(updated, ctx.environment_ids())
    added = experiments_added(feature.linked_experiments, linked)
    if linked != list(updated.linked_experiments):
        patch = patch.merge(FeatureUpdate(linked_experiments=linked))
        updated = updated.model_copy(update={"linked_experiments": linked})

    crud_feature.update(
        ctx.db,
        organization=feature.organization,
        feature_id=feature.id,
        changes=patch.changes(),
        expected_version=expected_version,
        commit=commit,
    )
    return updated, added


def update_feature(ctx: ReqContext, feature: FeatureSnapshot, updates: FeatureUpdate) -> MutationResult:
    updated, added = write_feature_update(ctx, feature, updates)
    link_experiments(ctx, feature.id, added)
    return MutationResult(
        feature=updated,
        effects=change_effects(ctx, "updated", updated, previous=feature),
    )


def create_feature(ctx: ReqContext, data: FeatureSnapshot) -> MutationResult:
    now = ctx.now()
    environment_ids = ctx.environment_ids()
    linked = resolve_linked_experiments(data, environment_ids)
    feature = data.model_copy(update={
        "organization": ctx.org.id,
        "linked_experiments": linked,
        "date_created": data.date_created or now,
        "date_updated": now,
        "next_scheduled_update": get_next_scheduled_update(data.environment_settings, environment_ids, now),
    })

    try:
        crud_feature.create(ctx.db, feature=feature, commit=False)
        # Revisions left over from a deleted feature with the same id
        crud_revision.delete_all_revisions_for_feature(ctx.db, ctx.org.id, feature.id, commit=False)
        crud_revision.create_initial_revision(
            ctx.db,
            feature=feature,
            user=ctx.audit_user,
            environment_ids=environment_ids,
            now=now,
            commit=False,
        )
        ctx.db.commit()
    except Exception:
        ctx.db.rollback()
        raise

    link_experiments(ctx, feature.id, linked)
    logger.info("Created feature %s (org=%s)", feature.id, ctx.org.id)

    feature = feature.model_copy(update={
        "environment_settings": apply_environment_inheritance(
            ctx.org.environments, feature.environment_settings
        ),
    })
    return MutationResult(feature=feature, effects=change_effects(ctx, "created", feature))


def delete_feature(ctx: ReqContext, feature: FeatureSnapshot) -> MutationResult:
    crud_feature.delete(ctx.db, organization=feature.organization, feature_id=feature.id)
    crud_revision.delete_all_revisions_for_feature(ctx.db, feature.organization, feature.id)
    crud_revision.delete_logs_for_feature(ctx.db, feature.organization, feature.id)
    for exp_id in feature.linked_experiments:
        crud_experiment.remove_linked_feature(ctx.db, feature.organization, exp_id, feature.id)

    logger.info("Deleted feature %s (org=%s)", feature.id, feature.organization)
    return MutationResult(feature=None, effects=change_effects(ctx, "deleted", feature))


def delete_all_features_for_project(ctx: ReqContext, project: str) -> List[MutationResult]:
    features = [to_snapshot(ctx.org, row) for row in crud_feature.get_by_project(ctx.db, ctx.org.id, project)]
    return [delete_feature(ctx, feature) for feature in features]


def add_linked_experiment(ctx: ReqContext, feature: FeatureSnapshot, experiment_id: str) -> bool:
    if experiment_id in feature.linked_experiments:
        return False
    return crud_feature.add_linked_experiment(ctx.db, feature.organization, feature.id, experiment_id)


def toggle_environments(
    ctx: ReqContext,
    feature: FeatureSnapshot,
    toggles: Dict[str, bool],
) -> MutationResult:
    settings = compute_environment_toggles(ctx.environment_ids(), feature, toggles)
    if settings is None:
        return MutationResult(feature=feature)
    return update_feature(ctx, feature, FeatureUpdate(environment_settings=settings))


def toggle_feature_environment(
    ctx: ReqContext,
    feature: FeatureSnapshot,
    environment: str,
    state: bool,
) -> MutationResult:
    return toggle_environments(ctx, feature, {environment: state})


def archive_feature(ctx: ReqContext, feature: FeatureSnapshot, archived: bool) -> MutationResult:
    return update_feature(ctx, feature, FeatureUpdate(archived=archived))


def toggle_never_stale(ctx: ReqContext, feature: FeatureSnapshot, never_stale: bool) -> MutationResult:
    return update_feature(ctx, feature, FeatureUpdate(never_stale=never_stale))


def validate_json_schema(schema: JSONSchemaDef) -> None:
    if schema.schema_type == "schema":
        if schema.definition:
            try:
                json.loads(schema.definition)
            except ValueError as e:
                raise InvalidJsonSchema(f"definition is not valid JSON ({e})") from e
        return

    simple = schema.simple or {}
    simple_type = simple.get("type")
    if simple_type not in SIMPLE_SCHEMA_TYPES:
        raise InvalidJsonSchema(f"unknown simple schema type {simple_type!r}")

    fields = simple.get("fields") or []
    if not fields:
        raise InvalidJsonSchema("at least one field is required")
    if simple_type.startswith("primitive") and len(fields) > 1:
        raise InvalidJsonSchema("primitive schemas take exactly one field")

    keys = set()
    for field in fields:
        key = field.get("key") or ""
        if simple_type.startswith("object"):
            if not key:
                raise InvalidJsonSchema("every field needs a key")
            if key in keys:
                raise InvalidJsonSchema(f"duplicate field {key!r}")
            keys.add(key)
        if field.get("type") not in SIMPLE_FIELD_TYPES:
            raise InvalidJsonSchema(f"field {key!r} has unknown type {field.get('type')!r}")


def set_json_schema(ctx: ReqContext, feature: FeatureSnapshot, schema: JSONSchemaDef) -> MutationResult:
    validate_json_schema(schema)
    return update_feature(ctx, feature, FeatureUpdate(
        json_schema=schema.model_copy(update={"date": ctx.now()}),
    ))


def remove_tag_in_feature(ctx: ReqContext, tag: str) -> List[MutationResult]:
    features = [to_snapshot(ctx.org, row) for row in crud_feature.get_by_tag(ctx.db, ctx.org.id, tag)]
    if not features:
        return []
    crud_feature.remove_tag(ctx.db, ctx.org.id, tag)

    results = []
    for feature in features:
        updated = feature.model_copy(update={"tags": [t for t in feature.tags if t != tag]})
        results.append(MutationResult(
            feature=updated,
            effects=change_effects(ctx, "updated", updated, previous=feature),
        ))
    return results


def remove_project_from_features(ctx: ReqContext, project: str) -> List[MutationResult]:
    """Detach every feature from a deleted project.

    The project's own payload partitions are not refreshed; the project is
    gone and nothing reads them anymore.
    """
    features = [to_snapshot(ctx.org, row) for row in crud_feature.get_by_project(ctx.db, ctx.org.id, project)]
    if not features:
        return []
    crud_feature.clear_project(ctx.db, ctx.org.id, project)

    results = []
    for feature in features:
        updated = feature.model_copy(update={"project": ""})
        results.append(MutationResult(
            feature=updated,
            effects=change_effects(
                ctx, "updated", updated, previous=feature, skip_refresh_for_project=project,
            ),
        ))
    return results


def migrate_draft(ctx: ReqContext, feature: FeatureSnapshot) -> Optional[FeatureRevision]:
    """Turn the pre-revision single draft into a draft revision, once."""
    if feature.legacy_draft is None or feature.legacy_draft_migrated:
        return None

    try:
        revision = crud_revision.create_revision_from_legacy_draft(
            ctx.db,
            feature=feature,
            user=ctx.audit_user,
            environment_ids=ctx.environment_ids(),
            now=ctx.now(),
            commit=False,
        )
        crud_feature.update(
            ctx.db,
            organization=feature.organization,
            feature_id=feature.id,
            changes={"legacy_draft_migrated": True, "has_drafts": True},
            commit=False,
        )
        ctx.db.commit()
    except Exception:
        ctx.db.rollback()
        logger.exception("Error migrating old feature draft for %s", feature.id)
        return None
    return revision


# ═══════════════════════════════════════════
#  Scheduled updates
# ═══════════════════════════════════════════

def find_due_features(db: Session, now: datetime) -> List[FeatureSnapshot]:
    """Features in any organization with a scheduled update strictly before ``now``."""
    rows = crud_feature.get_due_for_scheduled_update(db, now)
    orgs: Dict[str, Optional[OrganizationSettings]] = {}
    features = []
    for row in rows:
        if row.organization not in orgs:
            orgs[row.organization] = crud_organization.get_settings(db, row.organization)
        org = orgs[row.organization]
        if org is None:
            logger.warning("Skipping scheduled update of %s: organization %s not found", row.id, row.organization)
            continue
        features.append(to_snapshot(org, row))
    return features


def process_scheduled_feature(
    ctx: ReqContext,
    feature: FeatureSnapshot,
    now: Optional[datetime] = None,
) -> MutationResult:
    """Apply rule schedules elapsed at ``now`` and move ``next_scheduled_update`` forward.

    Always writes, so the SDK payload is rebuilt even when no rule flips.
    """
    now = now or ctx.now()
    settings = apply_due_schedules(feature.environment_settings, now)
    patch = FeatureUpdate(next_scheduled_update=get_next_scheduled_update(
        settings or feature.environment_settings, ctx.environment_ids(), now,
    ))
    if settings is not None:
        patch = patch.merge(FeatureUpdate(environment_settings=settings))
    return update_feature(ctx, feature, patch)


def _enqueue(ctx: ReqContext, effects: Sequence[Effect]) -> None:
    enqueue_effects(effects)


def run_scheduled_updates(
    db: Session,
    now: datetime,
    *,
    context_for: Callable[[Session, str], ReqContext] = get_context_for_job,
    on_effects: Callable[[ReqContext, Sequence[Effect]], None] = _enqueue,
) -> Dict[str, int]:
    """Process every due feature independently; one failure does not stop the batch."""
    processed = failed = 0
    contexts: Dict[str, ReqContext] = {}

    due = [(row.organization, row.id) for row in crud_feature.get_due_for_scheduled_update(db, now)]
    for organization, feature_id in due:
        try:
            ctx = contexts.get(organization)
            if ctx is None:
                ctx = contexts[organization] = context_for(db, organization)
            row = crud_feature.get(db, organization, feature_id)
            if row is None:
                continue
            result = process_scheduled_feature(ctx, to_snapshot(ctx.org, row), now)
        except Exception:
            db.rollback()
            failed += 1
            SCHEDULED_UPDATES.labels(outcome="failed").inc()
            logger.exception("Scheduled update failed for %s (org=%s)", feature_id, organization)
            continue

        processed += 1
        SCHEDULED_UPDATES.labels(outcome="processed").inc()
        on_effects(ctx, result.effects)

    if processed or failed:
        logger.info("Scheduled updates: %d processed, %d failed", processed, failed)
    return {"processed": processed, "failed": failed}
