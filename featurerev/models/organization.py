from sqlalchemy import Column, String, Boolean, JSON
from featurerev.db.base_class import Base


class Organization(Base):
    id = Column(String, primary_key=True)
    name = Column(String, default="")
    environments = Column(JSON, default=list)               # [{"id": ..., "parent": ...}]
    third_party_sync_enabled = Column(Boolean, default=False)
    safe_rollout_settings = Column(JSON, default=dict)
