from typing import List, Optional, Sequence
from sqlalchemy.orm import Session

from featurerev.models.experiment import Experiment as ExperimentModel
from featurerev.schemas.experiment import Experiment


def get(db: Session, organization: str, experiment_id: str) -> Optional[ExperimentModel]:
    return db.query(ExperimentModel).filter(
        ExperimentModel.organization == organization,
        ExperimentModel.id == experiment_id,
    ).first()


def get_by_ids(db: Session, organization: str, ids: Sequence[str]) -> List[Experiment]:
    if not ids:
        return []
    rows = db.query(ExperimentModel).filter(
        ExperimentModel.organization == organization,
        ExperimentModel.id.in_(list(ids)),
    ).order_by(ExperimentModel.id).all()
    return [Experiment.model_validate(r) for r in rows]


def create(db: Session, *, experiment: Experiment) -> Experiment:
    db_obj = ExperimentModel(**experiment.model_dump())
    db.add(db_obj)
    db.commit()
    db.refresh(db_obj)
    return Experiment.model_validate(db_obj)


def add_linked_feature(db: Session, organization: str, experiment_id: str, feature_id: str) -> bool:
    """Returns False when the experiment is unknown or already linked."""
    db_obj = get(db, organization, experiment_id)
    if not db_obj:
        return False
    linked = list(db_obj.linked_features or [])
    if feature_id in linked:
        return False
    db_obj.linked_features = linked + [feature_id]
    db.add(db_obj)
    db.commit()
    return True


def remove_linked_feature(db: Session, organization: str, experiment_id: str, feature_id: str) -> bool:
    db_obj = get(db, organization, experiment_id)
    if not db_obj or feature_id not in (db_obj.linked_features or []):
        return False
    db_obj.linked_features = [f for f in db_obj.linked_features if f != feature_id]
    db.add(db_obj)
    db.commit()
    return True
