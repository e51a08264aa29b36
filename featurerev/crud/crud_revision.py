from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence
from sqlalchemy import func
from sqlalchemy.orm import Session
from pydantic_core import to_jsonable_python

from featurerev.core.exceptions import InvalidRevisionState
from featurerev.models.feature_revision import (
    FeatureRevision as FeatureRevisionModel,
    FeatureRevisionLog,
)
from featurerev.schemas.feature import FeatureSnapshot
from featurerev.schemas.organization import EventUser
from featurerev.schemas.revision import (
    CLOSED_STATUSES,
    REVIEW_RESET_STATUSES,
    FeatureRevision,
    RevisionChanges,
    RevisionLogEntry,
)


def to_revision(db_obj: FeatureRevisionModel) -> FeatureRevision:
    return FeatureRevision.model_validate({
        "organization": db_obj.organization,
        "feature_id": db_obj.feature_id,
        "version": db_obj.version,
        "base_version": db_obj.base_version or 0,
        "status": db_obj.status,
        "default_value": db_obj.default_value or "",
        "rules": db_obj.rules or {},
        "comment": db_obj.comment or "",
        "created_by": db_obj.created_by,
        "published_by": db_obj.published_by,
        "date_created": db_obj.date_created,
        "date_updated": db_obj.date_updated,
        "date_published": db_obj.date_published,
    })


def _finish(db: Session, commit: bool) -> None:
    if commit:
        db.commit()
    else:
        db.flush()


def get(db: Session, organization: str, feature_id: str, version: int) -> Optional[FeatureRevisionModel]:
    return db.query(FeatureRevisionModel).filter(
        FeatureRevisionModel.organization == organization,
        FeatureRevisionModel.feature_id == feature_id,
        FeatureRevisionModel.version == version,
    ).first()


def get_revision(db: Session, *, organization: str, feature_id: str, version: int) -> Optional[FeatureRevision]:
    db_obj = get(db, organization, feature_id, version)
    return to_revision(db_obj) if db_obj else None


def get_revisions(db: Session, organization: str, feature_id: str) -> List[FeatureRevision]:
    rows = db.query(FeatureRevisionModel).filter(
        FeatureRevisionModel.organization == organization,
        FeatureRevisionModel.feature_id == feature_id,
    ).order_by(FeatureRevisionModel.version.desc()).all()
    return [to_revision(r) for r in rows]


def get_max_version(db: Session, organization: str, feature_id: str) -> int:
    return db.query(func.max(FeatureRevisionModel.version)).filter(
        FeatureRevisionModel.organization == organization,
        FeatureRevisionModel.feature_id == feature_id,
    ).scalar() or 0


def has_draft(
    db: Session,
    organization: str,
    feature_id: str,
    exclude_versions: Sequence[int] = (),
) -> bool:
    """True if any open (not published, not discarded) revision exists."""
    query = db.query(FeatureRevisionModel.version).filter(
        FeatureRevisionModel.organization == organization,
        FeatureRevisionModel.feature_id == feature_id,
        FeatureRevisionModel.status.notin_(CLOSED_STATUSES),
    )
    if exclude_versions:
        query = query.filter(FeatureRevisionModel.version.notin_(list(exclude_versions)))
    return query.first() is not None


def create(db: Session, *, revision: FeatureRevision, commit: bool = True) -> FeatureRevision:
    db_obj = FeatureRevisionModel(**to_jsonable_python(revision.model_dump(
        exclude={"date_created", "date_updated", "date_published"}
    )))
    db_obj.date_created = revision.date_created
    db_obj.date_updated = revision.date_updated or revision.date_created
    db_obj.date_published = revision.date_published
    db.add(db_obj)
    _finish(db, commit)
    return to_revision(db_obj)


def create_initial_revision(
    db: Session,
    *,
    feature: FeatureSnapshot,
    user: Optional[EventUser],
    environment_ids: Iterable[str],
    now: datetime,
    commit: bool = True,
) -> FeatureRevision:
    """Version-1 style revision mirroring the feature as created, already published."""
    rules = {
        env: list(feature.environment_settings[env].rules)
        for env in environment_ids
        if env in feature.environment_settings
    }
    return create(db, revision=FeatureRevision(
        organization=feature.organization,
        feature_id=feature.id,
        version=feature.version,
        base_version=0,
        status="published",
        default_value=feature.default_value,
        rules=rules,
        comment="New feature",
        created_by=user,
        published_by=user,
        date_created=now,
        date_updated=now,
        date_published=now,
    ), commit=commit)


def create_revision_from_legacy_draft(
    db: Session,
    *,
    feature: FeatureSnapshot,
    user: Optional[EventUser],
    environment_ids: Iterable[str],
    now: datetime,
    commit: bool = True,
) -> FeatureRevision:
    draft = feature.legacy_draft
    rules: Dict[str, list] = {}
    for env in environment_ids:
        if draft is not None and env in draft.rules:
            rules[env] = list(draft.rules[env])
        elif env in feature.environment_settings:
            rules[env] = list(feature.environment_settings[env].rules)

    default_value = feature.default_value
    if draft is not None and draft.default_value is not None:
        default_value = draft.default_value

    return create(db, revision=FeatureRevision(
        organization=feature.organization,
        feature_id=feature.id,
        version=get_max_version(db, feature.organization, feature.id) + 1,
        base_version=feature.version,
        status="draft",
        default_value=default_value,
        rules=rules,
        comment=(draft.comment if draft else "") or "",
        created_by=user,
        date_created=(draft.date_created if draft else None) or now,
        date_updated=now,
    ), commit=commit)


def add_log(
    db: Session,
    *,
    revision: FeatureRevision,
    entry: RevisionLogEntry,
    commit: bool = True,
) -> None:
    db.add(FeatureRevisionLog(
        organization=revision.organization,
        feature_id=revision.feature_id,
        version=revision.version,
        user=to_jsonable_python(entry.user) if entry.user else None,
        action=entry.action,
        subject=entry.subject,
        value=entry.value,
        timestamp=entry.timestamp,
    ))
    _finish(db, commit)


def get_logs(
    db: Session,
    organization: str,
    feature_id: str,
    version: Optional[int] = None,
) -> List[RevisionLogEntry]:
    query = db.query(FeatureRevisionLog).filter(
        FeatureRevisionLog.organization == organization,
        FeatureRevisionLog.feature_id == feature_id,
    )
    if version is not None:
        query = query.filter(FeatureRevisionLog.version == version)
    rows = query.order_by(FeatureRevisionLog.id).all()
    return [
        RevisionLogEntry(
            user=r.user,
            action=r.action,
            subject=r.subject or "",
            value=r.value or "",
            timestamp=r.timestamp,
        )
        for r in rows
    ]


def update_revision(
    db: Session,
    *,
    revision: FeatureRevision,
    changes: RevisionChanges,
    log: RevisionLogEntry,
    reset_review: bool,
    now: datetime,
    commit: bool = True,
) -> FeatureRevision:
    db_obj = get(db, revision.organization, revision.feature_id, revision.version)
    if not db_obj:
        raise ValueError(f"Revision {revision.feature_id}@{revision.version} does not exist")
    if db_obj.status in CLOSED_STATUSES:
        raise InvalidRevisionState(revision.version, db_obj.status, action="edit")

    values = changes.changes()
    if reset_review and "status" not in values and db_obj.status in REVIEW_RESET_STATUSES:
        values["status"] = "pending-review"

    for field, value in values.items():
        setattr(db_obj, field, to_jsonable_python(value))
    db_obj.date_updated = now
    db.add(db_obj)

    add_log(db, revision=revision, entry=log.model_copy(update={"timestamp": log.timestamp or now}), commit=False)
    _finish(db, commit)
    return to_revision(db_obj)


def mark_revision_as_published(
    db: Session,
    *,
    revision: FeatureRevision,
    user: Optional[EventUser],
    comment: Optional[str],
    now: datetime,
    commit: bool = True,
) -> FeatureRevision:
    """Irreversible transition to ``published``; refuses closed revisions."""
    values = {
        "status": "published",
        "published_by": to_jsonable_python(user) if user else None,
        "date_published": now,
        "date_updated": now,
    }
    if comment is not None:
        values["comment"] = comment

    count = db.query(FeatureRevisionModel).filter(
        FeatureRevisionModel.organization == revision.organization,
        FeatureRevisionModel.feature_id == revision.feature_id,
        FeatureRevisionModel.version == revision.version,
        FeatureRevisionModel.status.notin_(CLOSED_STATUSES),
    ).update(values, synchronize_session="fetch")
    if count == 0:
        current = get(db, revision.organization, revision.feature_id, revision.version)
        raise InvalidRevisionState(revision.version, current.status if current else "missing")

    add_log(db, revision=revision, entry=RevisionLogEntry(
        user=user,
        action="publish",
        value=comment or "",
        timestamp=now,
    ), commit=False)
    _finish(db, commit)
    return to_revision(get(db, revision.organization, revision.feature_id, revision.version))


def discard(
    db: Session,
    *,
    revision: FeatureRevision,
    user: Optional[EventUser],
    now: datetime,
    commit: bool = True,
) -> FeatureRevision:
    count = db.query(FeatureRevisionModel).filter(
        FeatureRevisionModel.organization == revision.organization,
        FeatureRevisionModel.feature_id == revision.feature_id,
        FeatureRevisionModel.version == revision.version,
        FeatureRevisionModel.status.notin_(CLOSED_STATUSES),
    ).update({"status": "discarded", "date_updated": now}, synchronize_session="fetch")
    if count == 0:
        raise InvalidRevisionState(revision.version, revision.status, action="discard")

    add_log(db, revision=revision, entry=RevisionLogEntry(user=user, action="discard", timestamp=now), commit=False)
    _finish(db, commit)
    return to_revision(get(db, revision.organization, revision.feature_id, revision.version))


def delete_all_revisions_for_feature(db: Session, organization: str, feature_id: str, commit: bool = True) -> int:
    count = db.query(FeatureRevisionModel).filter(
        FeatureRevisionModel.organization == organization,
        FeatureRevisionModel.feature_id == feature_id,
    ).delete(synchronize_session="fetch")
    _finish(db, commit)
    return count


def delete_logs_for_feature(db: Session, organization: str, feature_id: str, commit: bool = True) -> int:
    count = db.query(FeatureRevisionLog).filter(
        FeatureRevisionLog.organization == organization,
        FeatureRevisionLog.feature_id == feature_id,
    ).delete(synchronize_session="fetch")
    _finish(db, commit)
    return count
