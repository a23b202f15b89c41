"""
Тесты для модуля структурированного логирования (logger.py).
"""

import json

import pytest
from unittest.mock import patch

from blueprint_flow.logger import StructuredLogger, create_test_logger
from blueprint_flow.settings import settings


@pytest.fixture
def log():
    test_logger = create_test_logger("tests")
    test_logger.clear_session()
    yield test_logger
    test_logger.clear_session()


@pytest.fixture
def json_format(monkeypatch):
    monkeypatch.setenv("LOG_FORMAT", "json")


class TestSessionContext:
    """Контекст сессии и привязанные поля"""

    def test_create_logger(self, log):
        assert log.name == "blueprint_flow.tests"

    def test_set_and_clear_session(self, log):
        assert log.session_id is None
        log.set_session("sess_123", graph="sop")
        assert log.session_id == "sess_123"
        assert log.bound_fields == {"graph": "sop"}
        log.clear_session()
        assert log.session_id is None
        assert log.bound_fields == {}

    def test_set_session_replaces_fields(self, log):
        log.set_session("sess_1", graph="sop")
        log.set_session("sess_2", graph="pbl")
        assert log.bound_fields == {"graph": "pbl"}

    def test_bind_and_unbind(self, log):
        log.bind(stage="IDEATION", step="IDEATION_EQ")
        log.unbind("step", "missing")
        assert log.bound_fields == {"stage": "IDEATION"}

    def test_bound_is_temporary(self, log):
        log.bind(graph="sop")
        with log.bound(stage="JOURNEY") as inner:
            assert inner.bound_fields == {"graph": "sop", "stage": "JOURNEY"}
        assert log.bound_fields == {"graph": "sop"}

    def test_bound_restores_after_error(self, log):
        with pytest.raises(RuntimeError):
            with log.bound(stage="JOURNEY"):
                raise RuntimeError("boom")
        assert log.bound_fields == {}

    def test_handler_configured_once(self):
        first = StructuredLogger("blueprint_flow.once")
        second = StructuredLogger("blueprint_flow.once")
        assert len(second.logger.handlers) == 1
        assert first.logger is second.logger


class TestFormatting:
    """Тесты форматирования"""

    def test_record(self, log):
        log.set_session("sess_1", graph="sop")
        entry = log._record("INFO", "Input captured", {"stage": "IDEATION", "changed": True})
        assert entry["level"] == "INFO"
        assert entry["logger"] == "blueprint_flow.tests"
        assert entry["message"] == "Input captured"
        assert entry["session_id"] == "sess_1"
        assert entry["graph"] == "sop"
        assert entry["stage"] == "IDEATION"
        assert entry["changed"] is True
        assert entry["timestamp"].endswith("Z")

    def test_readable(self, log):
        log.set_session("sess_1")
        line = log._readable("Input captured", {"stage": "IDEATION"})
        assert line == "[sess_1] Input captured [stage=IDEATION]"

    def test_readable_without_fields(self, log):
        assert log._readable("Session restored", {}) == "Session restored"

    def test_json_output(self, log, json_format):
        with patch.object(log.logger, "info") as info:
            log.info("Input captured", stage="IDEATION")
        payload = json.loads(info.call_args[0][0])
        assert payload["message"] == "Input captured"
        assert payload["stage"] == "IDEATION"

    def test_metric(self, log, json_format):
        with patch.object(log.logger, "info") as info:
            log.metric("progress", 0.5, stage_completed="JOURNEY")
        payload = json.loads(info.call_args[0][0])
        assert payload["level"] == "METRIC"
        assert payload["message"] == "progress"
        assert payload["value"] == 0.5
        assert payload["stage_completed"] == "JOURNEY"

    def test_event(self, log, json_format):
        with patch.object(log.logger, "info") as info:
            log.event("flow_transition", action="back")
        payload = json.loads(info.call_args[0][0])
        assert payload["level"] == "EVENT"
        assert payload["action"] == "back"

    def test_readable_output(self, log, monkeypatch):
        monkeypatch.delenv("LOG_FORMAT", raising=False)
        with patch.object(log.logger, "warning") as warning:
            log.warning("Snapshot save failed", error="OSError: disk full")
        assert warning.call_args[0][0] == "Snapshot save failed [error=OSError: disk full]"


class TestRedaction:
    """Тексты ответов не попадают в логи без явного разрешения"""

    def test_answer_text_replaced_by_length(self, log, json_format):
        with patch.object(log.logger, "info") as info:
            log.info("Input captured", text="Water scarcity")
        payload = json.loads(info.call_args[0][0])
        assert payload["text"] == "<14 chars>"

    def test_non_text_values_kept(self, log):
        assert log._redact({"text": 5, "stage": "IDEATION"}) == {"text": 5, "stage": "IDEATION"}

    def test_values_logged_when_enabled(self, log, monkeypatch):
        monkeypatch.setitem(settings["logging"], "log_document_values", True)
        line = log._readable("Input captured", {"text": "Water scarcity"})
        assert line == "Input captured [text=Water scarcity]"
