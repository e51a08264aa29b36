from celery import Celery
from celery.signals import setup_logging as celery_setup_logging

from featurerev.config import settings
from featurerev.logging_config import setup_logging

celery_app = Celery(
    "featurerev",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)

celery_app.conf.broker_connection_retry_on_startup = True


@celery_setup_logging.connect
def configure_worker_logging(**kwargs):
    """Install the featurerev log handler when a worker or beat process starts."""
    setup_logging()


celery_app.conf.task_routes = {
    "featurerev.tasks.*": {"queue": "celery"}
}

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
)

celery_app.conf.beat_schedule = {
    "process-scheduled-feature-updates": {
        "task": "featurerev.tasks.process_scheduled_updates",
        "schedule": float(settings.SCHEDULED_UPDATE_INTERVAL_SECONDS),
    },
}

celery_app.autodiscover_tasks(["featurerev.tasks"])

# Explicitly import tasks to ensure they are registered
import featurerev.tasks.feature_tasks  # noqa: F401, E402
