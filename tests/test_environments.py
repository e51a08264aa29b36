"""Environment inheritance and per-environment toggles."""
import pytest

from featurerev.core.exceptions import InvalidEnvironment
from featurerev.crud import crud_feature
from featurerev.schemas.feature import FeatureEnvironment, ForceRule
from featurerev.schemas.organization import Environment
from featurerev.services.environments import (
    apply_environment_inheritance,
    compute_environment_toggles,
    set_environment_settings,
)
from featurerev.services.features import get_feature, toggle_environments, toggle_feature_environment

ENVIRONMENTS = [
    Environment(id="production"),
    Environment(id="staging"),
    Environment(id="dev", parent="staging"),
    Environment(id="qa", parent="dev"),
]


def test_inheritance_clones_nearest_ancestor():
    staging = FeatureEnvironment(enabled=True, rules=[ForceRule(id="r1", value="on")])
    settings = {"staging": staging}

    result = apply_environment_inheritance(ENVIRONMENTS, settings)

    assert result["dev"] == staging
    assert result["qa"] == staging
    assert result["production"] == FeatureEnvironment(enabled=False, rules=[])
    assert settings == {"staging": staging}


def test_inheritance_keeps_existing_settings():
    dev = FeatureEnvironment(enabled=False)
    settings = {"staging": FeatureEnvironment(enabled=True), "dev": dev}

    result = apply_environment_inheritance(ENVIRONMENTS, settings)

    assert result["dev"] is dev
    assert result["qa"] is dev


def test_inheritance_survives_parent_cycle():
    envs = [Environment(id="a", parent="b"), Environment(id="b", parent="a")]
    result = apply_environment_inheritance(envs, {})
    assert result == {"a": FeatureEnvironment(), "b": FeatureEnvironment()}


def test_set_environment_settings_is_copy_on_write():
    settings = {"production": FeatureEnvironment(enabled=False)}
    result = set_environment_settings(settings, "production", enabled=True)
    assert result["production"].enabled is True
    assert settings["production"].enabled is False


def test_compute_toggles_returns_none_when_nothing_changes(make_feature):
    feature = make_feature()
    assert compute_environment_toggles(["production", "staging"], feature, {"production": True}) is None


def test_compute_toggles_missing_environment_counts_as_disabled(make_feature):
    feature = make_feature(environment_settings={"production": FeatureEnvironment(enabled=True)})
    bare = feature.model_copy(update={"environment_settings": {"production": FeatureEnvironment(enabled=True)}})

    assert compute_environment_toggles(["production", "staging"], bare, {"staging": False}) is None
    result = compute_environment_toggles(["production", "staging"], bare, {"staging": True})
    assert result["staging"] == FeatureEnvironment(enabled=True, rules=[])


def test_toggle_noop_returns_same_object_without_write(ctx, make_feature, clock):
    feature = make_feature(environment_settings={
        "production": FeatureEnvironment(enabled=True),
        "staging": FeatureEnvironment(enabled=True),
    })
    before = crud_feature.get(ctx.db, ctx.org.id, feature.id).date_updated
    clock.advance(minutes=5)

    result = toggle_environments(ctx, feature, {"production": True, "staging": True})

    assert result.feature is feature
    assert result.effects == ()
    assert crud_feature.get(ctx.db, ctx.org.id, feature.id).date_updated == before


def test_toggle_unknown_environment_writes_nothing(ctx, make_feature):
    feature = make_feature()

    with pytest.raises(InvalidEnvironment) as exc:
        toggle_environments(ctx, feature, {"staging": True, "moon": True})

    assert exc.value.environment == "moon"
    assert get_feature(ctx, feature.id).environment_settings["staging"].enabled is False


def test_toggle_writes_and_returns_one_change_effect(ctx, make_feature):
    feature = make_feature()

    result = toggle_feature_environment(ctx, feature, "staging", True)

    assert result.feature.environment_settings["staging"].enabled is True
    assert result.feature.environment_settings["production"] == feature.environment_settings["production"]
    assert [e.kind for e in result.effects] == ["feature_change"]
    assert result.effects[0].previous == feature
    assert get_feature(ctx, feature.id).environment_settings["staging"].enabled is True
