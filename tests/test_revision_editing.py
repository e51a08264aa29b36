"""Draft revisions: rule edits, review reset, discard."""
import json

import pytest

from featurerev.core.exceptions import InvalidEnvironment, InvalidRevisionState, UnknownRule
from featurerev.crud import crud_revision
from featurerev.schemas.feature import FeatureEnvironment, ForceRule, RolloutRule
from featurerev.schemas.revision import MergeResultChanges, RevisionChanges, RevisionLogEntry
from featurerev.services.features import get_feature
from featurerev.services.revisions import (
    add_feature_rule,
    copy_feature_environment_rules,
    create_revision,
    discard_revision,
    edit_feature_rule,
    publish_revision,
    set_default_value,
)


def _logs(ctx, revision):
    return crud_revision.get_logs(ctx.db, revision.organization, revision.feature_id, revision.version)


def _approve(ctx, revision):
    return crud_revision.update_revision(
        ctx.db,
        revision=revision,
        changes=RevisionChanges(status="approved"),
        log=RevisionLogEntry(action="approve"),
        reset_review=False,
        now=ctx.now(),
    )


@pytest.fixture()
def feature(make_feature):
    return make_feature(environment_settings={
        "production": FeatureEnvironment(enabled=True, rules=[
            ForceRule(id="fr_1", value="true"),
            RolloutRule(id="fr_2", value="true", coverage=0.5),
        ]),
        "staging": FeatureEnvironment(enabled=False),
    })


def test_create_revision_copies_live_state(ctx, feature):
    revision = create_revision(ctx, feature, comment="try rollout")

    assert revision.version == 2
    assert revision.base_version == 1
    assert revision.status == "draft"
    assert revision.rules["production"] == feature.environment_settings["production"].rules
    assert revision.comment == "try rollout"
    assert get_feature(ctx, feature.id).has_drafts is True


def test_add_rule_generates_an_id_and_logs(ctx, feature):
    revision = create_revision(ctx, feature)

    updated = add_feature_rule(ctx, revision, "staging", ForceRule(value="on"))

    [rule] = updated.rules["staging"]
    assert rule.id.startswith("fr_")
    [log] = _logs(ctx, updated)
    assert log.action == "add rule"
    assert log.subject == "to staging"
    assert json.loads(log.value)["value"] == "on"


def test_add_rule_to_unknown_environment(ctx, feature):
    revision = create_revision(ctx, feature)
    with pytest.raises(InvalidEnvironment):
        add_feature_rule(ctx, revision, "moon", ForceRule(value="on"))


def test_edit_rule_merges_fields_and_keeps_type(ctx, feature):
    revision = create_revision(ctx, feature)

    updated = edit_feature_rule(ctx, revision, "production", 1, {"coverage": 0.9, "type": "force"})

    rule = updated.rules["production"][1]
    assert isinstance(rule, RolloutRule)
    assert rule.coverage == 0.9
    assert rule.id == "fr_2"
    assert updated.rules["production"][0] == revision.rules["production"][0]
    assert _logs(ctx, updated)[-1].subject == "in production (position 2)"


@pytest.mark.parametrize("index", [2, -1])
def test_edit_unknown_rule_writes_nothing(ctx, feature, index):
    revision = create_revision(ctx, feature)

    with pytest.raises(UnknownRule) as exc:
        edit_feature_rule(ctx, revision, "production", index, {"enabled": False})

    assert exc.value.environment == "production"
    stored = crud_revision.get_revision(ctx.db, organization=ctx.org.id, feature_id=feature.id, version=2)
    assert stored.rules == revision.rules
    assert _logs(ctx, revision) == []


def test_edit_rule_in_empty_environment(ctx, feature):
    revision = create_revision(ctx, feature)
    with pytest.raises(UnknownRule):
        edit_feature_rule(ctx, revision, "staging", 0, {"enabled": False})


def test_copy_environment_rules(ctx, feature):
    revision = create_revision(ctx, feature)

    updated = copy_feature_environment_rules(ctx, revision, "production", "staging")

    assert updated.rules["staging"] == updated.rules["production"]
    assert _logs(ctx, updated)[-1].action == "copy rules"


def test_reset_review_moves_approved_back_to_pending(ctx, feature):
    revision = _approve(ctx, create_revision(ctx, feature))
    assert revision.status == "approved"

    kept = set_default_value(ctx, revision, "maybe")
    assert kept.status == "approved"

    reset = set_default_value(ctx, kept, "no", reset_review=True)
    assert reset.status == "pending-review"
    assert reset.default_value == "no"


def test_reset_review_leaves_drafts_alone(ctx, feature):
    revision = create_revision(ctx, feature)
    assert set_default_value(ctx, revision, "x", reset_review=True).status == "draft"


def test_editing_published_revision_fails(ctx, feature):
    revision = create_revision(ctx, feature)
    publish_revision(ctx, feature, revision, MergeResultChanges(default_value="on"))

    with pytest.raises(InvalidRevisionState):
        set_default_value(ctx, revision, "off")


def test_discard_revision(ctx, feature):
    revision = create_revision(ctx, feature)

    discarded = discard_revision(ctx, feature, revision)

    assert discarded.status == "discarded"
    assert get_feature(ctx, feature.id).has_drafts is False
    assert _logs(ctx, revision)[-1].action == "discard"

    with pytest.raises(InvalidRevisionState):
        discard_revision(ctx, feature, discarded)


def test_discard_keeps_has_drafts_while_other_drafts_exist(ctx, feature):
    first = create_revision(ctx, feature)
    create_revision(ctx, feature)

    discard_revision(ctx, feature, first)

    assert get_feature(ctx, feature.id).has_drafts is True
