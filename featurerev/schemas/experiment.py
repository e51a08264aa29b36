from typing import List
from pydantic import BaseModel, ConfigDict, Field


class Experiment(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    organization: str
    name: str = ""
    project: str = ""
    linked_features: List[str] = Field(default_factory=list)
