"""
Best-effort on-disk snapshot of user profiles.

The cache is advisory: it is read as a fallback when the profile table cannot
be queried and it never fails the caller. Entries have no expiry; they are
overwritten by the next successful fetch or dropped by `discard()`.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from ..schemas.auth import UserProfile

logger = logging.getLogger(__name__)

CACHE_KEY = "cached_user_profile"


class ProfileCache:
    def __init__(self, path: str | Path):
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def get(self, user_id: str) -> UserProfile | None:
        raw = self._read().get(user_id)
        if raw is None:
            return None
        try:
            return UserProfile.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Discarding unreadable cached profile for %s: %s", user_id, exc)
            return None

    def save(self, profile: UserProfile) -> None:
        entries = self._read()
        entries[profile.id] = profile.model_dump(mode="json")
        self._write(entries)

    def discard(self, user_id: str) -> bool:
        """Drop one user's snapshot. Returns whether there was one."""
        entries = self._read()
        if entries.pop(user_id, None) is None:
            return False
        self._write(entries)
        logger.info("Cached profile for %s discarded", user_id)
        return True

    def _write(self, entries: dict[str, dict]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps({CACHE_KEY: entries}), encoding="utf-8")
        except OSError as exc:
            logger.warning("Failed to write profile cache %s: %s", self._path, exc)

    def _read(self) -> dict[str, dict]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Failed to read profile cache %s: %s", self._path, exc)
            return {}
        entries = payload.get(CACHE_KEY) if isinstance(payload, dict) else None
        return entries if isinstance(entries, dict) else {}
