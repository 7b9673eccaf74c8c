# tests/test_config_logging.py

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from vectask.config import Settings
from vectask.logging_setup import _RedactionFilter, redact


def test_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("DATA_DIR", "TASKS_DB_PATH", "PREFS_PATH", "CALENDAR_TOKEN", "CALENDAR_ENABLED", "LOG_LEVEL"):
        monkeypatch.delenv(f"VECTASK_{name}", raising=False)

    s = Settings.from_env()

    assert s.data_dir == Path(".local/vectask")
    assert s.tasks_db_path == Path(".local/vectask/tasks.sqlite3")
    assert s.calendar_token is None
    assert s.calendar_enabled is False
    assert s.log_level == "INFO"


def test_settings_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("VECTASK_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("VECTASK_CALENDAR_TOKEN", "tok")
    monkeypatch.setenv("VECTASK_CALENDAR_TIMEOUT_SECONDS", "not-a-number")
    monkeypatch.setenv("VECTASK_CONSOLE_ENABLED", "off")
    monkeypatch.delenv("VECTASK_CALENDAR_ENABLED", raising=False)
    monkeypatch.delenv("VECTASK_TASKS_DB_PATH", raising=False)

    s = Settings.from_env()

    assert s.tasks_db_path == tmp_path / "tasks.sqlite3"
    assert s.calendar_enabled is True
    assert s.calendar_timeout_seconds == 15.0
    assert s.console_enabled is False


def test_redact_masks_tokens() -> None:
    assert redact("Authorization: Bearer abc.def-123") == "Authorization: Bearer [REDACTED]"
    assert redact("url?access_token=xyz&x=1") == "url?access_token=[REDACTED]&x=1"
    assert redact("nothing secret") == "nothing secret"


def test_redaction_filter_rewrites_record() -> None:
    record = logging.LogRecord("vectask.x", logging.INFO, __file__, 1, "sent %s", ("Bearer s3cret",), None)
    assert _RedactionFilter().filter(record)
    assert record.getMessage() == "sent Bearer [REDACTED]"


def test_setup_logging_writes_redacted_file(tmp_path: Path) -> None:
    from vectask.logging_setup import setup_logging

    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        setup_logging(log_dir=tmp_path, console_level=logging.CRITICAL)
        logging.getLogger("vectask.test").info("calling api with Bearer abc123")
        logging.getLogger("some.library").debug("library detail")
        for h in root.handlers:
            h.flush()
        text = (tmp_path / "vectask.log").read_text("utf-8")
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()
        for h in saved_handlers:
            root.addHandler(h)
        root.setLevel(saved_level)
        logging.captureWarnings(False)

    assert "Bearer [REDACTED]" in text
    assert "abc123" not in text
    assert "library detail" in text


def test_token_provider_never_shows_token() -> None:
    from vectask.calendar.credentials import StaticTokenProvider

    provider = StaticTokenProvider("  secret-token ")
    assert provider.token() == "secret-token"
    assert "secret" not in repr(provider)
    assert StaticTokenProvider("   ").token() is None
