# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real secrets. Keep the calendar token in .env (local, gitignored).

This file exists to make the repo self-documenting even without opening .env.example.
"""

ENV_VARS = {
    # App / logging
    "VECTASK_APP_NAME": "App display name (default: vectask).",
    "VECTASK_LOG_LEVEL": "Console logging level (default: INFO).",
    # Connectors
    "VECTASK_CONSOLE_ENABLED": "Enable console connector (true/false).",
    # Paths (gitignored)
    "VECTASK_DATA_DIR": "Local data directory (default: .local/vectask).",
    "VECTASK_TASKS_DB_PATH": "SQLite backend path (default: <data_dir>/tasks.sqlite3).",
    "VECTASK_PREFS_PATH": "Local preferences JSON (default: <data_dir>/prefs.json).",
    # Calendar
    "VECTASK_CALENDAR_ENABLED": "Enable calendar sync (default: true when a token is set).",
    "VECTASK_CALENDAR_BASE_URL": "Calendar API base URL (default: https://www.googleapis.com/calendar/v3).",
    "VECTASK_CALENDAR_TOKEN": "OAuth bearer token with calendar.events scope (never logged).",
    "VECTASK_CALENDAR_TIME_ZONE": "IANA time zone for naive planned times, e.g. Europe/Berlin.",
    "VECTASK_CALENDAR_TIMEOUT_SECONDS": "HTTP timeout for calendar calls (default: 15).",
}
