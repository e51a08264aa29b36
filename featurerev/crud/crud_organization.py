from typing import Optional
from sqlalchemy.orm import Session

from featurerev.models.organization import Organization
from featurerev.schemas.organization import OrganizationSettings


def get(db: Session, organization_id: str) -> Optional[Organization]:
    return db.query(Organization).filter(Organization.id == organization_id).first()


def to_settings(db_obj: Organization) -> OrganizationSettings:
    return OrganizationSettings.model_validate({
        "id": db_obj.id,
        "name": db_obj.name or "",
        "environments": db_obj.environments or [],
        "third_party_sync_enabled": bool(db_obj.third_party_sync_enabled),
        "safe_rollout": db_obj.safe_rollout_settings or {},
    })


def get_settings(db: Session, organization_id: str) -> Optional[OrganizationSettings]:
    db_obj = get(db, organization_id)
    return to_settings(db_obj) if db_obj else None


def create(db: Session, *, obj_in: OrganizationSettings) -> Organization:
    db_obj = Organization(
        id=obj_in.id,
        name=obj_in.name,
        environments=[env.model_dump() for env in obj_in.environments],
        third_party_sync_enabled=obj_in.third_party_sync_enabled,
        safe_rollout_settings=obj_in.safe_rollout.model_dump(),
    )
    db.add(db_obj)
    db.commit()
    db.refresh(db_obj)
    return db_obj
