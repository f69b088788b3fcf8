"""Settings parsing and structured log formatting."""

import json
import logging

from contact_center.config import Settings
from contact_center.logs import StructuredFormatter


def test_settings_defaults(monkeypatch):
    for key in ("CLOSED_CASE_STATUSES", "ASSIGNMENT_SERIALIZED", "ASSIGNMENT_MAX_ATTEMPTS", "DB_COMMAND_TIMEOUT"):
        monkeypatch.delenv(key, raising=False)

    settings = Settings()

    assert settings.closed_case_statuses == ("closed",)
    assert settings.assignment_serialized is False
    assert settings.assignment_max_attempts == 3
    assert settings.db_command_timeout == 5.0


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("CLOSED_CASE_STATUSES", "closed, resolved ,")
    monkeypatch.setenv("ASSIGNMENT_SERIALIZED", "true")
    monkeypatch.setenv("ASSIGNMENT_MAX_ATTEMPTS", "0")
    monkeypatch.setenv("DB_COMMAND_TIMEOUT", "2.5")

    settings = Settings()

    assert settings.closed_case_statuses == ("closed", "resolved")
    assert settings.assignment_serialized is True
    assert settings.assignment_max_attempts == 1
    assert settings.db_command_timeout == 2.5


def test_structured_formatter_emits_json():
    record = logging.LogRecord("contact_center.assignment", logging.INFO, __file__, 1, "Case assigned", None, None)
    record.context = {"case_id": 7, "agent_id": 2}
    record.request_id = "req-1"

    payload = json.loads(StructuredFormatter(service_name="cc").format(record))

    assert payload["service"] == "cc"
    assert payload["message"] == "Case assigned"
    assert payload["request_id"] == "req-1"
    assert payload["context"] == {"case_id": 7, "agent_id": 2}
