# tests/test_prefs.py

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from vectask.core.prefs import DEFAULT_CALENDAR_ID, LocalPreferences, StoreConfig


def test_store_config_round_trip() -> None:
    cfg = StoreConfig(
        current_scope="t1",
        show_completed=True,
        target_calendar_id="work",
        done_filter_days=7,
        timer_task_id="t2",
        timer_started_at=datetime(2025, 12, 22, 9, tzinfo=timezone.utc),
    )
    assert StoreConfig.from_dict(cfg.to_dict()) == cfg


def test_store_config_ignores_garbage() -> None:
    cfg = StoreConfig.from_dict(
        {
            "current_scope": 42,
            "target_calendar_id": "  ",
            "done_filter_days": -3,
            "timer": {"active_task_id": "t1", "started_at": "yesterday"},
        }
    )
    assert cfg == StoreConfig()
    assert cfg.target_calendar_id == DEFAULT_CALENDAR_ID


def test_local_preferences_file(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "prefs.json"
    repo = LocalPreferences(path)
    assert repo.load() == {}

    repo.save({"current_scope": "t1"})

    assert json.loads(path.read_text("utf-8")) == {"current_scope": "t1"}
    assert repo.load() == {"current_scope": "t1"}
    assert not path.with_suffix(".tmp").exists()


def test_corrupt_preferences_are_ignored(tmp_path: Path) -> None:
    path = tmp_path / "prefs.json"
    path.write_text("{not json", "utf-8")
    assert LocalPreferences(path).load() == {}

    path.write_text("[1, 2]", "utf-8")
    assert LocalPreferences(path).load() == {}
