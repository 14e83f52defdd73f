from __future__ import annotations
import logging
from logging.handlers import TimedRotatingFileHandler

from examsolver.core.logging_setup import build_handlers, redact_secrets


def test_redacts_secrets_in_values_and_keys():
    out = redact_secrets(
        None,
        "warning",
        {
            "event": "chat.stream_open",
            "api_key": "anything",
            "Authorization": "Bearer abc.def",
            "error": "401 for key sk-abcdefghijklmnopqrstu",
            "headers": {"x": "bearer tok123", "n": 3},
            "status": 401,
        },
    )
    assert out["api_key"] == "[REDACTED]"
    assert out["Authorization"] == "[REDACTED]"
    assert out["error"] == "401 for key [REDACTED:api_key]"
    assert out["headers"] == {"x": "[REDACTED:bearer]", "n": 3}
    assert out["status"] == 401
    assert out["event"] == "chat.stream_open"


def test_empty_secret_left_alone():
    assert redact_secrets(None, "info", {"api_key": ""}) == {"api_key": ""}


def test_console_only_without_log_dir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    handlers = build_handlers(logging.INFO, logging.WARNING, None)
    assert len(handlers) == 1
    assert handlers[0].level == logging.WARNING
    assert not (tmp_path / "logs").exists()


def test_file_handler_when_log_dir_given(tmp_path):
    logs_dir = tmp_path / "nested" / "logs"
    handlers = build_handlers(logging.DEBUG, logging.INFO, logs_dir)
    try:
        assert isinstance(handlers[1], TimedRotatingFileHandler)
        assert handlers[1].level == logging.DEBUG
        assert (logs_dir / "examsolver.jsonl").exists()
    finally:
        for h in handlers:
            h.close()
