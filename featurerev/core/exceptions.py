"""
Feature core errors.

Validation errors are raised before any write is issued. Failures of
post-commit collaborators (cache refresh, events, third-party sync) never
surface here; they are logged at the effect boundary.
"""

from typing import Optional


class FeatureRevError(Exception):
    """Base class for feature core errors."""


class InvalidEnvironment(FeatureRevError):
    def __init__(self, environment: str):
        super().__init__(f"Invalid environment: {environment}")
        self.environment = environment


class InvalidRevisionState(FeatureRevError):
    def __init__(self, version: int, status: str, action: str = "publish"):
        super().__init__(
            f"Can only {action} a draft or in-review revision "
            f"(version={version}, status={status})"
        )
        self.version = version
        self.status = status
        self.action = action


class NoChanges(FeatureRevError):
    def __init__(self):
        super().__init__("No changes to publish")


class UnknownRule(FeatureRevError):
    def __init__(self, environment: str, index: int):
        super().__init__(f"Unknown rule: {environment} position {index + 1}")
        self.environment = environment
        self.index = index


class FeatureNotFound(FeatureRevError):
    def __init__(self, feature_id: str):
        super().__init__(f"Feature not found: {feature_id}")
        self.feature_id = feature_id


class StaleFeatureVersion(FeatureRevError):
    """The feature changed since the caller read it (concurrent publish)."""

    def __init__(self, feature_id: str, expected_version: int, actual_version: Optional[int] = None):
        msg = f"Feature {feature_id} is no longer at version {expected_version}"
        if actual_version is not None:
            msg += f" (now {actual_version})"
        super().__init__(msg)
        self.feature_id = feature_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class InvalidJsonSchema(FeatureRevError):
    def __init__(self, reason: str):
        super().__init__(f"Invalid JSON schema: {reason}")
        self.reason = reason
