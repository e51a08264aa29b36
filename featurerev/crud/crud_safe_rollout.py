from typing import List, Sequence
from sqlalchemy.orm import Session
from pydantic_core import to_jsonable_python

from featurerev.models.safe_rollout import SafeRollout as SafeRolloutModel
from featurerev.schemas.safe_rollout import SafeRollout, SafeRolloutUpdate


def to_schema(db_obj: SafeRolloutModel) -> SafeRollout:
    return SafeRollout.model_validate({
        "id": db_obj.id,
        "organization": db_obj.organization,
        "feature_id": db_obj.feature_id,
        "environment": db_obj.environment,
        "status": db_obj.status,
        "started_at": db_obj.started_at,
        "next_snapshot_attempt": db_obj.next_snapshot_attempt,
        "ramp_up_schedule": db_obj.ramp_up_schedule or {},
    })


def get_by_ids(db: Session, organization: str, ids: Sequence[str]) -> List[SafeRollout]:
    if not ids:
        return []
    rows = db.query(SafeRolloutModel).filter(
        SafeRolloutModel.organization == organization,
        SafeRolloutModel.id.in_(list(ids)),
    ).order_by(SafeRolloutModel.id).all()
    return [to_schema(r) for r in rows]


def create(db: Session, *, safe_rollout: SafeRollout, commit: bool = True) -> SafeRollout:
    values = safe_rollout.model_dump()
    values["ramp_up_schedule"] = to_jsonable_python(values["ramp_up_schedule"])
    db_obj = SafeRolloutModel(**values)
    db.add(db_obj)
    if commit:
        db.commit()
        db.refresh(db_obj)
    else:
        db.flush()
    return to_schema(db_obj)


def update(
    db: Session,
    *,
    safe_rollout: SafeRollout,
    obj_in: SafeRolloutUpdate,
    commit: bool = True,
) -> SafeRollout:
    db_obj = db.query(SafeRolloutModel).filter(
        SafeRolloutModel.organization == safe_rollout.organization,
        SafeRolloutModel.id == safe_rollout.id,
    ).first()
    if not db_obj:
        raise ValueError(f"Safe rollout {safe_rollout.id} does not exist")

    for field, value in obj_in.changes().items():
        if field == "ramp_up_schedule":
            value = to_jsonable_python(value)
        setattr(db_obj, field, value)
    db.add(db_obj)
    if commit:
        db.commit()
        db.refresh(db_obj)
    else:
        db.flush()
    return to_schema(db_obj)
