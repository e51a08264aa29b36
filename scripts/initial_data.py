import logging
import os

from featurerev.db.session import SessionLocal
from featurerev.crud import crud_organization
from featurerev.schemas.organization import Environment, OrganizationSettings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEMO_ORGANIZATION_ID = os.getenv("DEMO_ORGANIZATION_ID", "org_demo")


def init_db() -> None:
    db = SessionLocal()
    try:
        if crud_organization.get(db, DEMO_ORGANIZATION_ID):
            logger.info("Organization %s already exists", DEMO_ORGANIZATION_ID)
            return

        logger.info("Creating demo organization %s", DEMO_ORGANIZATION_ID)
        crud_organization.create(db, obj_in=OrganizationSettings(
            id=DEMO_ORGANIZATION_ID,
            name="Demo Organization",
            environments=[
                Environment(id="production", description="Production"),
                Environment(id="staging", description="Staging"),
                Environment(id="dev", description="Development", parent="staging"),
            ],
        ))
    finally:
        db.close()


if __name__ == "__main__":
    logger.info("Creating initial data")
    init_db()
    logger.info("Initial data created")
