"""
Durable storage for the current session identifier.
Keeps a small JSON object on disk so a session survives process restarts.
"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional

from .errors import SessionStoreError


class SessionStore:
    """Persists one session id under a key in a shared JSON file."""

    DEFAULT_KEY = "quiz_session_id"

    def __init__(self, path: str = "./data/session.json", key: str = DEFAULT_KEY):
        """
        Initialize the store.

        Args:
            path: JSON file holding persisted keys
            key: Key under which this store keeps its session id
        """
        self.path = Path(path)
        self.key = key
        self.logger = logging.getLogger(__name__)

    def for_key(self, key: str) -> "SessionStore":
        """Return a store sharing this file but using a different key."""
        return SessionStore(str(self.path), key)

    def _read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            self.logger.error(f"Invalid JSON in session file {self.path}: {e}")
            return {}
        except OSError as e:
            self.logger.error(f"Failed to read session file {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            self.logger.error(f"Session file {self.path} must contain a JSON object")
            return {}
        return data

    def _write_all(self, data: Dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.remove(tmp_name)
                raise
        except OSError as e:
            raise SessionStoreError(f"Failed to write session file {self.path}: {e}") from e

    def load_session_id(self) -> Optional[str]:
        """Return the persisted session id, or None if there is none."""
        value = self._read_all().get(self.key)
        if value is None:
            return None
        if not isinstance(value, str) or not value:
            self.logger.warning(f"Ignoring invalid session id under '{self.key}': {value!r}")
            return None
        return value

    def save_session_id(self, session_id: str) -> None:
        """Persist the session id, replacing any previous one."""
        data = self._read_all()
        if data.get(self.key) == session_id:
            return
        data[self.key] = session_id
        self._write_all(data)
        self.logger.info(f"Persisted session id under '{self.key}'")

    def clear_session_id(self) -> None:
        """Forget the persisted session id."""
        data = self._read_all()
        if self.key not in data:
            return
        del data[self.key]
        self._write_all(data)
        self.logger.info(f"Cleared persisted session id under '{self.key}'")
