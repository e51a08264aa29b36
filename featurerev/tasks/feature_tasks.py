import logging

from featurerev.celery_app import celery_app
from featurerev.core.context import utcnow
from featurerev.db.session import SessionLocal
from featurerev.metrics import EFFECT_FAILURES
from featurerev.services.effects import effect_from_payload, run_effect
from featurerev.services.features import run_scheduled_updates
from featurerev.services.organizations import get_context_for_job

logger = logging.getLogger(__name__)


@celery_app.task(name="featurerev.tasks.process_feature_effect", bind=True, max_retries=3, default_retry_delay=30)
def process_feature_effect(self, organization_id: str, payload: dict):
    """
    Run one post-commit effect (payload cache refresh + audit event, or
    third-party sync). Retried with the worker's policy; the mutation
    itself is already committed.
    """
    db = SessionLocal()
    try:
        effect = effect_from_payload(payload)
        ctx = get_context_for_job(db, organization_id)
        run_effect(ctx, effect)
        return {"status": "ok", "kind": effect.kind}
    except Exception as exc:
        db.rollback()
        EFFECT_FAILURES.labels(kind=payload.get("kind", "unknown")).inc()
        logger.exception("Effect %s failed (org=%s)", payload.get("kind"), organization_id)
        raise self.retry(exc=exc)
    finally:
        db.close()


@celery_app.task(name="featurerev.tasks.process_scheduled_updates")
def process_scheduled_updates():
    """Beat task: apply rule schedules that have come due."""
    db = SessionLocal()
    try:
        return run_scheduled_updates(db, utcnow())
    finally:
        db.close()
