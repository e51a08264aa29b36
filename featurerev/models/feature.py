"""Feature documents.

One row per (organization, id). Environment settings, rules and other
nested structures are stored as JSON and validated into
``featurerev.schemas.feature.FeatureSnapshot`` on read.
"""

from sqlalchemy import Column, String, Boolean, Integer, DateTime, Text, JSON, Index, func
from featurerev.db.base_class import Base


class Feature(Base):
    organization = Column(String, primary_key=True)
    id = Column(String, primary_key=True)                               # e.g. "new_checkout"

    owner = Column(String, default="")
    description = Column(Text, default="")
    project = Column(String, default="", index=True)
    archived = Column(Boolean, default=False)
    never_stale = Column(Boolean, default=False)
    value_type = Column(String, default="boolean")                      # boolean, string, number, json
    default_value = Column(Text, default="")
    environment_settings = Column(JSON, default=dict)                   # {env: {enabled, rules}}
    prerequisites = Column(JSON, default=list)
    json_schema = Column(JSON, nullable=True)
    tags = Column(JSON, default=list)
    custom_fields = Column(JSON, default=dict)

    version = Column(Integer, nullable=False, default=1)                # == published revision version
    date_created = Column(DateTime(timezone=True), server_default=func.now())
    date_updated = Column(DateTime(timezone=True), server_default=func.now())

    # ── Derived fields ──
    linked_experiments = Column(JSON, default=list)                     # append-only
    next_scheduled_update = Column(DateTime(timezone=True), nullable=True, index=True)
    has_drafts = Column(Boolean, default=False)

    # ── Legacy (pre-revision / pre-environment) fields ──
    legacy_draft = Column(JSON, nullable=True)
    legacy_draft_migrated = Column(Boolean, default=False)
    legacy_environments = Column(JSON, nullable=True)                   # enabled env ids
    legacy_rules = Column(JSON, nullable=True)                          # rules shared by all envs

    __table_args__ = (
        Index("ix_features_organization_project", "organization", "project"),
    )
