"""
Safe-rollout status sync on publish.

Safe-rollout rules carry a status (running, rolled-back, released,
stopped) that is mirrored onto the separately stored SafeRollout record
when a revision is published. A rollout whose rule disappears from the
published revision is stopped.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from featurerev.core.context import ReqContext
from featurerev.crud import crud_safe_rollout
from featurerev.schemas.feature import FeatureSnapshot, SafeRolloutRule, SafeRolloutStatus
from featurerev.schemas.organization import OrganizationSettings
from featurerev.schemas.revision import FeatureRevision, MergeResultChanges
from featurerev.schemas.safe_rollout import SafeRollout, SafeRolloutUpdate

logger = logging.getLogger(__name__)


def collect_safe_rollout_statuses(
    feature: FeatureSnapshot,
    revision: FeatureRevision,
    result: Optional[MergeResultChanges] = None,
) -> Dict[str, SafeRolloutStatus]:
    """Status per safe rollout once the revision is installed.

    Environments in the merge result take its rule lists; the rest keep the
    revision's.
    """
    installed = dict(revision.rules)
    if result is not None:
        installed.update(result.rules)

    statuses: Dict[str, SafeRolloutStatus] = {}
    for rules in installed.values():
        for rule in rules:
            if isinstance(rule, SafeRolloutRule):
                statuses[rule.safe_rollout_id] = rule.status

    # Live rules that the new revision no longer has
    for settings in feature.environment_settings.values():
        for rule in settings.rules:
            if isinstance(rule, SafeRolloutRule) and rule.safe_rollout_id not in statuses:
                statuses[rule.safe_rollout_id] = "stopped"
    return statuses


def determine_next_safe_rollout_snapshot_attempt(
    safe_rollout: SafeRollout,
    org: OrganizationSettings,
    now: datetime,
) -> Tuple[datetime, Optional[datetime]]:
    """(next snapshot attempt, next ramp-up step or None)."""
    next_snapshot = now + timedelta(hours=org.safe_rollout.snapshot_interval_hours)
    schedule = safe_rollout.ramp_up_schedule
    next_ramp_up = None
    if schedule.enabled and schedule.step < len(schedule.steps) - 1:
        next_ramp_up = now + timedelta(hours=org.safe_rollout.ramp_up_interval_hours)
    return next_snapshot, next_ramp_up


def sync_safe_rollout_statuses(
    ctx: ReqContext,
    feature: FeatureSnapshot,
    revision: FeatureRevision,
    result: Optional[MergeResultChanges] = None,
    commit: bool = True,
) -> List[SafeRollout]:
    statuses = collect_safe_rollout_statuses(feature, revision, result)
    if not statuses:
        return []

    scheduler = ctx.schedule_safe_rollout or determine_next_safe_rollout_snapshot_attempt
    updated = []
    for safe_rollout in crud_safe_rollout.get_by_ids(ctx.db, ctx.org.id, list(statuses)):
        status = statuses[safe_rollout.id]
        changes = SafeRolloutUpdate(status=status)

        if safe_rollout.started_at is None and status == "running":
            now = ctx.now()
            changes = SafeRolloutUpdate(status=status, started_at=now)
            try:
                next_snapshot, next_ramp_up = scheduler(safe_rollout, ctx.org, now)
            except Exception:
                logger.exception("Failed to schedule safe rollout %s", safe_rollout.id)
            else:
                changes = SafeRolloutUpdate(
                    status=status,
                    started_at=now,
                    next_snapshot_attempt=next_snapshot,
                    ramp_up_schedule=safe_rollout.ramp_up_schedule.model_copy(
                        update={"next_update": next_ramp_up}
                    ),
                )

        updated.append(crud_safe_rollout.update(
            ctx.db, safe_rollout=safe_rollout, obj_in=changes, commit=commit,
        ))
    return updated
