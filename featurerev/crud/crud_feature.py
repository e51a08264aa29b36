from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from sqlalchemy.orm import Session
from pydantic_core import to_jsonable_python

from featurerev.core.exceptions import FeatureNotFound, StaleFeatureVersion
from featurerev.models.feature import Feature
from featurerev.schemas.feature import FeatureSnapshot

# Columns persisted as JSON documents
JSON_COLUMNS = {
    "environment_settings",
    "prerequisites",
    "json_schema",
    "tags",
    "custom_fields",
    "linked_experiments",
    "legacy_draft",
}


def _to_columns(values: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: to_jsonable_python(value) if key in JSON_COLUMNS else value
        for key, value in values.items()
    }


def to_document(db_obj: Feature) -> Dict[str, Any]:
    """Raw column values, before legacy upgrade and environment inheritance."""
    return {
        "id": db_obj.id,
        "organization": db_obj.organization,
        "owner": db_obj.owner or "",
        "description": db_obj.description or "",
        "project": db_obj.project or "",
        "archived": bool(db_obj.archived),
        "never_stale": bool(db_obj.never_stale),
        "value_type": db_obj.value_type or "boolean",
        "default_value": db_obj.default_value or "",
        "environment_settings": db_obj.environment_settings or {},
        "prerequisites": db_obj.prerequisites or [],
        "json_schema": db_obj.json_schema,
        "tags": db_obj.tags or [],
        "custom_fields": db_obj.custom_fields or {},
        "version": db_obj.version or 1,
        "date_created": db_obj.date_created,
        "date_updated": db_obj.date_updated,
        "linked_experiments": db_obj.linked_experiments or [],
        "next_scheduled_update": db_obj.next_scheduled_update,
        "has_drafts": bool(db_obj.has_drafts),
        "legacy_draft": db_obj.legacy_draft,
        "legacy_draft_migrated": bool(db_obj.legacy_draft_migrated),
        "legacy_environments": db_obj.legacy_environments,
        "legacy_rules": db_obj.legacy_rules,
    }


def get(db: Session, organization: str, feature_id: str) -> Optional[Feature]:
    return db.query(Feature).filter(
        Feature.organization == organization,
        Feature.id == feature_id,
    ).first()


def get_multi(
    db: Session,
    organization: str,
    *,
    project: Optional[str] = None,
    include_archived: bool = False,
) -> List[Feature]:
    query = db.query(Feature).filter(Feature.organization == organization)
    if project:
        query = query.filter(Feature.project == project)
    if not include_archived:
        query = query.filter(Feature.archived.isnot(True))
    return query.order_by(Feature.id).all()


def get_by_ids(db: Session, organization: str, ids: Sequence[str]) -> List[Feature]:
    if not ids:
        return []
    return db.query(Feature).filter(
        Feature.organization == organization,
        Feature.id.in_(list(ids)),
    ).order_by(Feature.id).all()


def has_archived(db: Session, organization: str, project: Optional[str] = None) -> bool:
    query = db.query(Feature.id).filter(
        Feature.organization == organization,
        Feature.archived.is_(True),
    )
    if project:
        query = query.filter(Feature.project == project)
    return query.first() is not None


def get_by_project(db: Session, organization: str, project: str) -> List[Feature]:
    return db.query(Feature).filter(
        Feature.organization == organization,
        Feature.project == project,
    ).order_by(Feature.id).all()


def get_by_tag(db: Session, organization: str, tag: str) -> List[Feature]:
    # Tags live in a JSON array; filter in Python to stay dialect-neutral
    features = db.query(Feature).filter(Feature.organization == organization).all()
    return [f for f in features if tag in (f.tags or [])]


def get_due_for_scheduled_update(db: Session, now: datetime) -> List[Feature]:
    """Features in any organization whose next scheduled update is strictly before ``now``."""
    return db.query(Feature).filter(
        Feature.next_scheduled_update.isnot(None),
        Feature.next_scheduled_update < now,
    ).order_by(Feature.organization, Feature.id).all()


def create(db: Session, *, feature: FeatureSnapshot, commit: bool = True) -> Feature:
    db_obj = Feature(**_to_columns(feature.model_dump()))
    db.add(db_obj)
    if commit:
        db.commit()
        db.refresh(db_obj)
    else:
        db.flush()
    return db_obj


def update(
    db: Session,
    *,
    organization: str,
    feature_id: str,
    changes: Dict[str, Any],
    expected_version: Optional[int] = None,
    commit: bool = True,
) -> int:
    """Single-document update by (organization, id).

    With ``expected_version`` the write only applies while the stored
    version still matches (compare-and-swap).
    """
    query = db.query(Feature).filter(
        Feature.organization == organization,
        Feature.id == feature_id,
    )
    if expected_version is not None:
        query = query.filter(Feature.version == expected_version)

    count = query.update(_to_columns(changes), synchronize_session="fetch")
    if count == 0:
        if expected_version is None:
            raise FeatureNotFound(feature_id)
        current = get(db, organization, feature_id)
        if current is None:
            raise FeatureNotFound(feature_id)
        raise StaleFeatureVersion(feature_id, expected_version, current.version)

    if commit:
        db.commit()
    else:
        db.flush()
    return count


def add_linked_experiment(db: Session, organization: str, feature_id: str, experiment_id: str) -> bool:
    db_obj = get(db, organization, feature_id)
    if not db_obj:
        raise FeatureNotFound(feature_id)
    linked = list(db_obj.linked_experiments or [])
    if experiment_id in linked:
        return False
    db_obj.linked_experiments = linked + [experiment_id]
    db.add(db_obj)
    db.commit()
    return True


def remove_tag(db: Session, organization: str, tag: str) -> int:
    count = 0
    for db_obj in get_by_tag(db, organization, tag):
        db_obj.tags = [t for t in (db_obj.tags or []) if t != tag]
        db.add(db_obj)
        count += 1
    db.commit()
    return count


def clear_project(db: Session, organization: str, project: str) -> int:
    count = (
        db.query(Feature)
        .filter(Feature.organization == organization, Feature.project == project)
        .update({"project": ""}, synchronize_session="fetch")
    )
    db.commit()
    return count


def delete(db: Session, *, organization: str, feature_id: str) -> bool:
    db_obj = get(db, organization, feature_id)
    if db_obj:
        db.delete(db_obj)
        db.commit()
        return True
    return False
