from featurerev.db.base_class import Base
from featurerev.models.organization import Organization
from featurerev.models.feature import Feature
from featurerev.models.feature_revision import FeatureRevision, FeatureRevisionLog
from featurerev.models.safe_rollout import SafeRollout
from featurerev.models.experiment import Experiment
from featurerev.models.event import Event
