from typing import Iterable, List, Sequence

from featurerev.schemas.feature import ExperimentRefRule, FeatureSnapshot


def resolve_linked_experiments(feature: FeatureSnapshot, environment_ids: Iterable[str]) -> List[str]:
    """Existing links plus every experiment referenced by an experiment-ref rule.

    Order is preserved: existing links first, then new references in
    environment and rule order. Links are never dropped here.
    """
    experiment_ids = list(dict.fromkeys(feature.linked_experiments))
    seen = set(experiment_ids)
    for env in environment_ids:
        settings = feature.environment_settings.get(env)
        if not settings:
            continue
        for rule in settings.rules:
            if isinstance(rule, ExperimentRefRule) and rule.experiment_id not in seen:
                seen.add(rule.experiment_id)
                experiment_ids.append(rule.experiment_id)
    return experiment_ids


def experiments_added(previous: Sequence[str], resolved: Sequence[str]) -> List[str]:
    known = set(previous)
    return [exp_id for exp_id in resolved if exp_id not in known]
