from sqlalchemy import Column, String, DateTime, JSON, func
from featurerev.db.base_class import Base


class SafeRollout(Base):
    id = Column(String, primary_key=True)
    organization = Column(String, nullable=False, index=True)
    feature_id = Column(String, nullable=False, index=True)
    environment = Column(String, nullable=False)

    status = Column(String, default="running")          # running, rolled-back, released, stopped
    started_at = Column(DateTime(timezone=True), nullable=True)
    next_snapshot_attempt = Column(DateTime(timezone=True), nullable=True)
    ramp_up_schedule = Column(JSON, default=dict)

    date_created = Column(DateTime(timezone=True), server_default=func.now())
