"""
Environment settings merger.

Pure functions over ``EnvironmentSettings`` mappings. Nothing here touches
the database; callers persist the returned mapping through a feature
update.
"""

from typing import Dict, List, Mapping, Optional, Sequence

from featurerev.core.exceptions import InvalidEnvironment
from featurerev.schemas.feature import EnvironmentSettings, FeatureEnvironment, FeatureSnapshot
from featurerev.schemas.organization import Environment, OrganizationSettings


def get_environment_ids(org: OrganizationSettings) -> List[str]:
    return [env.id for env in org.environments]


def _nearest_ancestor_settings(
    env: Environment,
    env_map: Mapping[str, Environment],
    environment_settings: EnvironmentSettings,
) -> Optional[FeatureEnvironment]:
    seen = {env.id}
    parent_id = env.parent
    while parent_id and parent_id not in seen:
        if parent_id in environment_settings:
            return environment_settings[parent_id]
        seen.add(parent_id)
        parent = env_map.get(parent_id)
        parent_id = parent.parent if parent else None
    return None


def apply_environment_inheritance(
    environments: Sequence[Environment],
    environment_settings: EnvironmentSettings,
) -> EnvironmentSettings:
    """Fill in configured environments the feature has no settings for.

    A missing environment takes the settings of its nearest ancestor that
    has them, otherwise it starts disabled with no rules. Environments that
    already have settings are returned unchanged.
    """
    env_map = {env.id: env for env in environments}
    result: Dict[str, FeatureEnvironment] = dict(environment_settings)
    for env in environments:
        if env.id in result:
            continue
        inherited = _nearest_ancestor_settings(env, env_map, environment_settings)
        result[env.id] = inherited if inherited is not None else FeatureEnvironment()
    return result


def set_environment_settings(
    environment_settings: EnvironmentSettings,
    environment: str,
    **changes,
) -> EnvironmentSettings:
    """Copy of ``environment_settings`` with one environment's fields replaced."""
    current = environment_settings.get(environment) or FeatureEnvironment()
    result = dict(environment_settings)
    result[environment] = current.model_copy(update=changes)
    return result


def compute_environment_toggles(
    environment_ids: Sequence[str],
    feature: FeatureSnapshot,
    toggles: Mapping[str, bool],
) -> Optional[EnvironmentSettings]:
    """Apply per-environment enabled flags.

    Every requested environment is validated before anything is computed.
    Returns the new settings mapping, or None when no environment actually
    changes state. An environment without settings counts as disabled.
    """
    valid = set(environment_ids)
    for env in toggles:
        if env not in valid:
            raise InvalidEnvironment(env)

    settings = dict(feature.environment_settings)
    changed = False
    for env, state in toggles.items():
        current = feature.environment_settings.get(env)
        current_state = current.enabled if current else False
        if current_state == state:
            continue
        settings = set_environment_settings(settings, env, enabled=state)
        changed = True

    return settings if changed else None
