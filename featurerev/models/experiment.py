from sqlalchemy import Column, String, JSON
from featurerev.db.base_class import Base


class Experiment(Base):
    organization = Column(String, primary_key=True)
    id = Column(String, primary_key=True)
    name = Column(String, default="")
    project = Column(String, default="")
    linked_features = Column(JSON, default=list)        # feature ids referencing this experiment
