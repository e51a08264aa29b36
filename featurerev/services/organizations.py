from typing import Any, Optional

from sqlalchemy.orm import Session

from featurerev.core.context import AllowAllPermissions, ReqContext
from featurerev.crud import crud_organization
from featurerev.logging_config import organization_id_ctx
from featurerev.schemas.organization import SYSTEM_USER
from featurerev.services.payload_cache import get_payload_cache
from featurerev.services.third_party_sync import get_sync_client


def get_context_for_job(
    db: Session,
    organization_id: str,
    *,
    payload_cache: Optional[Any] = None,
    sync_client: Optional[Any] = None,
) -> ReqContext:
    """System context for background jobs: every project readable, acting as the scheduler."""
    org = crud_organization.get_settings(db, organization_id)
    if org is None:
        raise ValueError(f"Organization {organization_id} does not exist")

    organization_id_ctx.set(organization_id)
    return ReqContext(
        db=db,
        org=org,
        audit_user=SYSTEM_USER,
        permissions=AllowAllPermissions(),
        payload_cache=payload_cache if payload_cache is not None else get_payload_cache(),
        sync_client=sync_client if sync_client is not None else get_sync_client(),
    )
