"""
Rule schedules.

A rule's ``schedule_rules`` is a list of (timestamp, enabled) pairs. Once a
timestamp has elapsed the rule takes that entry's enabled state; the latest
elapsed entry wins.
"""

from datetime import datetime
from typing import Iterable, List, Optional

from featurerev.schemas.feature import BaseRule, EnvironmentSettings


def get_next_scheduled_update(
    environment_settings: EnvironmentSettings,
    environment_ids: Iterable[str],
    now: datetime,
) -> Optional[datetime]:
    """Earliest schedule timestamp still in the future, across all known environments."""
    upcoming: List[datetime] = []
    for env in environment_ids:
        settings = environment_settings.get(env)
        if not settings:
            continue
        for rule in settings.rules:
            for schedule in rule.schedule_rules:
                if schedule.timestamp is not None and schedule.timestamp > now:
                    upcoming.append(schedule.timestamp)
    return min(upcoming) if upcoming else None


def scheduled_state(rule: BaseRule, now: datetime) -> Optional[bool]:
    """Enabled state dictated by the latest elapsed schedule entry, if any."""
    elapsed = [s for s in rule.schedule_rules if s.timestamp is not None and s.timestamp <= now]
    if not elapsed:
        return None
    # sorted() is stable: on equal timestamps the later list entry wins
    return sorted(elapsed, key=lambda s: s.timestamp)[-1].enabled


def apply_due_schedules(
    environment_settings: EnvironmentSettings,
    now: datetime,
) -> Optional[EnvironmentSettings]:
    """Flip rules whose schedule says otherwise. None when nothing changes."""
    result = {}
    changed = False
    for env, settings in environment_settings.items():
        rules = []
        env_changed = False
        for rule in settings.rules:
            state = scheduled_state(rule, now)
            if state is not None and state != rule.enabled:
                rule = rule.model_copy(update={"enabled": state})
                env_changed = True
            rules.append(rule)
        result[env] = settings.model_copy(update={"rules": rules}) if env_changed else settings
        changed = changed or env_changed
    return result if changed else None
