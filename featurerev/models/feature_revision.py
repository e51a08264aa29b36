from sqlalchemy import Column, String, Integer, DateTime, Text, JSON, func
from featurerev.db.base_class import Base


class FeatureRevision(Base):
    """A draft, in-review or historical version of a feature's rules."""
    organization = Column(String, primary_key=True)
    feature_id = Column(String, primary_key=True)
    version = Column(Integer, primary_key=True)

    base_version = Column(Integer, default=0)
    status = Column(String, nullable=False, default="draft", index=True)   # draft, pending-review, approved, changes-requested, published, discarded
    default_value = Column(Text, default="")
    rules = Column(JSON, default=dict)                                    # {env: [rule, ...]}
    comment = Column(Text, default="")
    created_by = Column(JSON, nullable=True)
    published_by = Column(JSON, nullable=True)

    date_created = Column(DateTime(timezone=True), server_default=func.now())
    date_updated = Column(DateTime(timezone=True), server_default=func.now())
    date_published = Column(DateTime(timezone=True), nullable=True)


class FeatureRevisionLog(Base):
    """Append-only edit history of a revision."""
    id = Column(Integer, primary_key=True, autoincrement=True)
    organization = Column(String, nullable=False, index=True)
    feature_id = Column(String, nullable=False, index=True)
    version = Column(Integer, nullable=False)

    user = Column(JSON, nullable=True)
    action = Column(String, nullable=False)     # add rule, edit rule, copy rules, edit default value, publish, discard
    subject = Column(String, default="")
    value = Column(Text, default="")
    timestamp = Column(DateTime(timezone=True), server_default=func.now())
