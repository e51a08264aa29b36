"""Structured logging: secret masking, context fields and worker bootstrap."""
import json
import logging

import pytest
from celery.signals import setup_logging as celery_setup_logging

import featurerev.celery_app  # noqa: F401  connects the worker logging signal
from featurerev.config import settings
from featurerev.logging_config import (
    HumanFormatter,
    JSONFormatter,
    mask_secrets,
    organization_id_ctx,
    request_id_ctx,
)


def _record(message, exc_info=None):
    return logging.LogRecord("featurerev.test", logging.INFO, __file__, 1, message, None, exc_info)


class TestMaskSecrets:
    def test_bearer_token(self):
        assert mask_secrets("Authorization: Bearer abc.def-123") == "Authorization: Bearer ***"

    def test_quoted_key_values(self):
        masked = mask_secrets('{"token": "t0k", "api_key": "k3y", "name": "checkout"}')
        assert "t0k" not in masked
        assert "k3y" not in masked
        assert '"name": "checkout"' in masked

    def test_plain_text_untouched(self):
        assert mask_secrets("published checkout v3") == "published checkout v3"


class TestJSONFormatter:
    def test_includes_context_ids(self):
        req = request_id_ctx.set("req12345")
        org = organization_id_ctx.set("org_1")
        try:
            entry = json.loads(JSONFormatter().format(_record("feature checkout published")))
        finally:
            request_id_ctx.reset(req)
            organization_id_ctx.reset(org)

        assert entry["message"] == "feature checkout published"
        assert entry["request_id"] == "req12345"
        assert entry["organization_id"] == "org_1"
        assert entry["level"] == "INFO"

    def test_drops_empty_context(self):
        entry = json.loads(JSONFormatter().format(_record("scan finished")))
        assert "request_id" not in entry
        assert "organization_id" not in entry

    def test_masks_message(self):
        entry = json.loads(JSONFormatter().format(_record("sync with Bearer s3cr3t")))
        assert entry["message"] == "sync with Bearer ***"


class TestWorkerBootstrap:
    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def _installed_formatter(self):
        [handler] = logging.getLogger().handlers
        return handler.formatter

    def test_production_worker_logs_json(self, monkeypatch):
        monkeypatch.setattr(settings, "APP_ENV", "production")

        celery_setup_logging.send(sender=None)

        assert isinstance(self._installed_formatter(), JSONFormatter)
        assert logging.getLogger().level == logging.INFO

    def test_development_worker_logs_human_readable(self, monkeypatch):
        monkeypatch.setattr(settings, "APP_ENV", "development")

        celery_setup_logging.send(sender=None)

        assert isinstance(self._installed_formatter(), HumanFormatter)
