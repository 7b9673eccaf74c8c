# src/vectask/calendar/credentials.py

from __future__ import annotations


class StaticTokenProvider:
    """Bearer token fixed at startup (from settings). None means signed out."""

    def __init__(self, token: str | None) -> None:
        self._token = (token or "").strip() or None

    def token(self) -> str | None:
        return self._token

    def __repr__(self) -> str:
        return f"StaticTokenProvider(signed_in={self._token is not None})"
