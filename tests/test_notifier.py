"""Payload partitions, audit events and the effect boundary."""
import dataclasses

from prometheus_client import REGISTRY

from featurerev.crud import crud_event
from featurerev.schemas.feature import FeatureEnvironment, FeatureSnapshot, FeatureUpdate
from featurerev.services import effects as effects_module
from featurerev.services.effects import (
    dispatch_effects,
    effect_from_payload,
    effect_to_payload,
    enqueue_effects,
)
from featurerev.services.features import (
    delete_feature,
    remove_project_from_features,
    toggle_feature_environment,
    update_feature,
)
from featurerev.services.notifier import (
    get_affected_payload_keys,
    get_changed_environments,
    get_payload_keys_by_diff,
)
from featurerev.services.payload_cache import PayloadCache, PayloadKey

ENVS = ["production", "staging"]


def _failures(kind):
    return REGISTRY.get_sample_value("featurerev_effect_failures_total", {"kind": kind}) or 0.0


def _snapshot(project="", **settings):
    return FeatureSnapshot(id="f", organization="org_1", project=project, environment_settings=settings)


def test_affected_keys_always_include_the_shared_partition():
    keys = get_affected_payload_keys([_snapshot(project="web")], ENVS)
    assert keys == [
        PayloadKey("org_1", "production", ""),
        PayloadKey("org_1", "production", "web"),
        PayloadKey("org_1", "staging", ""),
        PayloadKey("org_1", "staging", "web"),
    ]


def test_diff_keys_only_cover_changed_environments():
    before = _snapshot(production=FeatureEnvironment(enabled=True), staging=FeatureEnvironment())
    after = _snapshot(production=FeatureEnvironment(enabled=True), staging=FeatureEnvironment(enabled=True))

    assert get_changed_environments(before, after, ENVS) == ["staging"]
    assert get_payload_keys_by_diff(before, after, ENVS) == [PayloadKey("org_1", "staging", "")]


def test_project_move_touches_both_projects_everywhere():
    before = _snapshot(project="web")
    after = _snapshot(project="mobile")

    keys = get_payload_keys_by_diff(before, after, ENVS)
    assert {k.project for k in keys} == {"", "web", "mobile"}
    assert {k.environment for k in keys} == set(ENVS)


def test_dispatch_refreshes_cache_and_records_event(ctx, make_feature, fake_redis, user):
    feature = make_feature(tags=["checkout"])
    result = toggle_feature_environment(ctx, feature, "staging", True)

    assert dispatch_effects(ctx, result.effects) == 0

    assert "sdk-payload:org_1:staging:" in fake_redis.deleted
    assert "sdk-payload:org_1:production:" not in fake_redis.deleted
    [event] = crud_event.get_events(ctx.db, organization=ctx.org.id, event="feature.updated")
    assert event.object_id == feature.id
    assert event.tags == ["checkout"]
    assert event.environments == ["staging"]
    assert event.user["email"] == user.email
    assert event.data["previous"]["environment_settings"]["staging"]["enabled"] is False
    assert event.data["object"]["environment_settings"]["staging"]["enabled"] is True


def test_deleted_feature_event(ctx, make_feature):
    feature = make_feature(project="web")
    result = delete_feature(ctx, feature)

    dispatch_effects(ctx, result.effects)

    [event] = crud_event.get_events(ctx.db, organization=ctx.org.id, event="feature.deleted")
    assert event.projects == ["web"]
    assert event.data["object"]["id"] == feature.id
    assert "previous" not in event.data


def test_project_removal_skips_the_removed_project(ctx, make_feature, fake_redis):
    make_feature("a", project="web")
    make_feature("b", project="web")

    results = remove_project_from_features(ctx, "web")
    for result in results:
        dispatch_effects(ctx, result.effects)

    assert len(results) == 2
    assert all(r.feature.project == "" for r in results)
    assert fake_redis.deleted
    assert not [k for k in fake_redis.deleted if k.endswith(":web")]


def test_failed_refresh_is_logged_and_counted(ctx, make_feature, broken_redis, caplog):
    feature = make_feature()
    result = toggle_feature_environment(ctx, feature, "staging", True)
    broken = dataclasses.replace(ctx, payload_cache=PayloadCache(broken_redis))
    before = _failures("feature_change")

    assert dispatch_effects(broken, result.effects) == 1

    assert _failures("feature_change") == before + 1
    assert "Effect feature_change failed for feature checkout" in caplog.text


def test_third_party_sync_only_when_enabled(ctx, make_feature, sync_client):
    feature = make_feature()
    result = update_feature(ctx, feature, FeatureUpdate(description="new"))
    assert [e.kind for e in result.effects] == ["feature_change"]

    synced = dataclasses.replace(ctx, org=ctx.org.model_copy(update={"third_party_sync_enabled": True}))
    result = update_feature(synced, result.feature, FeatureUpdate(description="newer"))
    assert [e.kind for e in result.effects] == ["feature_change", "third_party_sync"]

    dispatch_effects(synced, result.effects)
    assert sync_client.calls == [("update", feature.id)]


def test_sync_failure_does_not_stop_remaining_effects(ctx, make_feature, fake_redis, failing_sync_client):
    synced = dataclasses.replace(
        ctx,
        org=ctx.org.model_copy(update={"third_party_sync_enabled": True}),
        sync_client=failing_sync_client,
    )
    feature = make_feature()
    first = toggle_feature_environment(synced, feature, "staging", True)
    second = toggle_feature_environment(synced, first.feature, "production", False)
    before = _failures("third_party_sync")

    failures = dispatch_effects(synced, list(first.effects) + list(second.effects))

    assert failures == 2
    assert _failures("third_party_sync") == before + 2
    assert "sdk-payload:org_1:production:" in fake_redis.deleted
    assert len(crud_event.get_events(ctx.db, organization=ctx.org.id, event="feature.updated")) == 2


def test_effects_survive_the_broker(ctx, make_feature):
    feature = make_feature(tags=["a"])
    result = toggle_feature_environment(ctx, feature, "staging", True)
    [effect] = result.effects

    assert effect_from_payload(effect_to_payload(effect)) == effect


def test_enqueue_hands_effects_to_the_worker(ctx, make_feature, monkeypatch):
    from featurerev.tasks import feature_tasks

    sent = []

    class _Task:
        def delay(self, *args):
            sent.append(args)

    monkeypatch.setattr(feature_tasks, "process_feature_effect", _Task())
    feature = make_feature()
    result = toggle_feature_environment(ctx, feature, "staging", True)

    assert enqueue_effects(result.effects) == 1
    [(organization_id, payload)] = sent
    assert organization_id == ctx.org.id
    assert payload["kind"] == "feature_change"
    assert effects_module.effect_from_payload(payload).feature.id == feature.id
