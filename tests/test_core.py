"""Tests for settings, logging and metrics."""

import io
import json
import logging
import sys

import pytest
from prometheus_client import REGISTRY

from batchgpt.core import metrics
from batchgpt.core.config import Settings
from batchgpt.core.logging import JSONFormatter, TextFormatter, setup_logging


def _sample(name: str, labels: dict | None = None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


class TestSettings:
    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("BATCHGPT_RETRY_COUNT", "3")
        monkeypatch.setenv("BATCHGPT_MODEL", "gpt-4o")

        settings = Settings(_env_file=None)

        assert settings.retry_count == 3
        assert settings.model == "gpt-4o"

    def test_defaults(self, test_settings):
        assert test_settings.concurrency == 1
        assert test_settings.moderation_threshold == 0.5
        assert test_settings.min_tokens is None


class TestJSONFormatter:
    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord("batchgpt.test", logging.WARNING, __file__, 1, "attempt %d failed", (2,), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_basic_fields(self):
        data = json.loads(JSONFormatter().format(self._record()))

        assert data["level"] == "WARNING"
        assert data["logger"] == "batchgpt.test"
        assert data["message"] == "attempt 2 failed"
        assert "request_key" not in data

    def test_request_extras(self):
        data = json.loads(JSONFormatter().format(self._record(request_key="Translate 'apple'", attempt=1)))

        assert data["request_key"] == "Translate 'apple'"
        assert data["attempt"] == 1

    def test_exception_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

        data = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: boom" in data["exception"]


class TestSetupLogging:
    @pytest.fixture(autouse=True)
    def _restore_root(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_json_handler(self):
        setup_logging(level="DEBUG", log_json=True)

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_text_handler(self):
        stream = io.StringIO()
        setup_logging(level="warning", log_json=False, stream=stream)

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert isinstance(root.handlers[0].formatter, TextFormatter)

        logging.getLogger("batchgpt.test").warning("slow response", extra={"request_key": "Hi", "attempt": 2})
        assert stream.getvalue().rstrip().endswith("| slow response | request_key='Hi' attempt=2")


class TestMetrics:
    def test_record_attempt(self):
        labels = {"model": "metrics-test-model", "status": "failure"}
        before = _sample("batchgpt_attempts_total", labels)

        metrics.record_attempt("metrics-test-model", "failure", 0.3)

        assert _sample("batchgpt_attempts_total", labels) == before + 1
        assert _sample("batchgpt_attempt_duration_seconds_count", {"model": "metrics-test-model"}) >= 1

    def test_record_outcome(self):
        before = _sample("batchgpt_requests_total", {"outcome": "vetoed"})
        metrics.record_outcome("vetoed")
        assert _sample("batchgpt_requests_total", {"outcome": "vetoed"}) == before + 1

    def test_record_retry_wait_ignores_zero(self):
        before = _sample("batchgpt_retry_wait_seconds_total")
        metrics.record_retry_wait(0)
        metrics.record_retry_wait(1.5)
        assert _sample("batchgpt_retry_wait_seconds_total") == pytest.approx(before + 1.5)

    def test_disabled(self, monkeypatch):
        monkeypatch.setattr(metrics.settings, "metrics_enabled", False)
        before = _sample("batchgpt_requests_total", {"outcome": "exhausted"})

        metrics.record_outcome("exhausted")

        assert _sample("batchgpt_requests_total", {"outcome": "exhausted"}) == before

    def test_exposition(self):
        text = metrics.metrics_text().decode()
        assert "batchgpt_attempts_total" in text
        assert "batchgpt_inflight_requests" in text
