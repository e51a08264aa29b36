import uuid
from sqlalchemy import Column, String, Boolean, DateTime, JSON, func
from featurerev.db.base_class import Base


class Event(Base):
    """Audit / webhook event emitted after a committed feature change."""
    id = Column(String, primary_key=True, default=lambda: f"event_{uuid.uuid4().hex}")
    organization = Column(String, nullable=False, index=True)
    event = Column(String, nullable=False, index=True)      # feature.created, feature.updated, feature.deleted
    object_id = Column(String, nullable=True, index=True)

    data = Column(JSON, default=dict)                       # {"object": ..., "previous": ...}
    projects = Column(JSON, default=list)
    tags = Column(JSON, default=list)
    environments = Column(JSON, default=list)
    contains_secrets = Column(Boolean, default=False)
    user = Column(JSON, nullable=True)

    date_created = Column(DateTime(timezone=True), server_default=func.now())
