# src/vectask/logging_setup.py

from __future__ import annotations

import logging
import re
import sys
from pathlib import Path

_BEARER_RE = re.compile(r"(Bearer\s+)[A-Za-z0-9._\-~+/]+=*", re.IGNORECASE)
_TOKEN_KV_RE = re.compile(r"((?:access_token|token)[\"']?\s*[:=]\s*[\"']?)[^\s\"'&,}]+", re.IGNORECASE)


def redact(text: str) -> str:
    """Mask bearer tokens and token=... pairs."""
    text = _BEARER_RE.sub(r"\1[REDACTED]", text)
    return _TOKEN_KV_RE.sub(r"\1[REDACTED]", text)


class _RedactionFilter(logging.Filter):
    """
    Never let a credential reach a handler.

    The record is rendered once, masked, and frozen into msg (args cleared).
    """

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except Exception:
            return True
        masked = redact(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


class _ConsoleNoiseFilter(logging.Filter):
    """
    Make interactive console usable:
    - allow vectask logs
    - calendar HTTP client only WARNING+ (it is chatty at DEBUG/INFO)
    - suppress Python warnings (captured as 'py.warnings') unless ERROR+
    - httpx/httpcore request lines only WARNING+
    - suppress other third-party noise unless ERROR+
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name.startswith("vectask."):
            if name.startswith("vectask.calendar.google_client"):
                return record.levelno >= logging.WARNING
            return True

        if name == "py.warnings":
            return record.levelno >= logging.ERROR

        if name.startswith(("httpx", "httpcore")):
            return record.levelno >= logging.WARNING

        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/vectask",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> None:
    """
    Configure logging with:
    - Console handler: readable + filtered for interactive use
    - File handler: full logs for debugging
    - Redaction on both handlers

    Call this ONCE, very early (before first logger.info).
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "vectask.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    # Remove any pre-existing handlers to avoid duplicates.
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    redaction = _RedactionFilter()

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(fmt)
    ch.addFilter(redaction)
    ch.addFilter(_ConsoleNoiseFilter())
    root.addHandler(ch)

    fh = logging.FileHandler(str(log_file), encoding="utf-8")
    fh.setLevel(file_level)
    fh.setFormatter(fmt)
    fh.addFilter(redaction)
    root.addHandler(fh)

    logging.captureWarnings(True)
