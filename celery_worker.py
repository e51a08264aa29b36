"""Worker entry point: celery -A celery_worker worker --beat"""
from featurerev.celery_app import celery_app as app  # noqa: F401
