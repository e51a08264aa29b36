"""Upgrades for feature documents written before per-environment settings existed."""

from typing import Any, Dict, Iterable


def upgrade_feature(doc: Dict[str, Any], environment_ids: Iterable[str]) -> Dict[str, Any]:
    """Return a copy of ``doc`` in the current document shape.

    Old documents carry a flat ``legacy_environments`` list (ids of enabled
    environments) and a single ``legacy_rules`` list shared by all of them.
    Those are expanded into ``environment_settings`` for every environment
    that has no settings of its own yet.
    """
    doc = dict(doc)
    legacy_environments = doc.pop("legacy_environments", None)
    legacy_rules = doc.pop("legacy_rules", None)

    if legacy_environments is None and legacy_rules is None:
        return doc

    enabled = set(legacy_environments or [])
    settings = dict(doc.get("environment_settings") or {})
    for env in environment_ids:
        if env in settings:
            continue
        settings[env] = {
            "enabled": env in enabled,
            "rules": list(legacy_rules or []),
        }
    doc["environment_settings"] = settings
    return doc
