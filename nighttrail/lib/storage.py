"""JSON file store for finished night sessions."""

import json
import logging
import os
import tempfile
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from . import settings
from .models import NightSession, session_from_dict, session_to_dict

logger = logging.getLogger(__name__)

CORRUPT_SUFFIX = '.corrupt'


class SessionStorage:
    """
    All sessions in a single JSON file, newest first

    A record that fails to decode is skipped when loading but kept in the
    file, so one bad night never costs the rest of the history.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        if path is None:
            path = settings.DATA_DIR / settings.SESSIONS_FILENAME
        self.path = Path(path)

    @property
    def corrupt_path(self) -> Path:
        """Where an unparseable store is moved before it is rewritten"""
        return self.path.with_name(self.path.name + CORRUPT_SUFFIX)

    def load_all(self) -> List[NightSession]:
        """Load every readable session, newest first. An unparseable file yields an empty history."""
        try:
            sessions, _ = self._read()
        except (ValueError, OSError) as e:
            logger.error("❌ Could not load sessions from %s: %s", self.path, e)
            return []

        logger.debug("Loaded %d sessions from %s", len(sessions), self.path)
        return sessions

    def get(self, session_id: Union[str, uuid.UUID]) -> Optional[NightSession]:
        """Find a session by id or unique id prefix"""
        text = str(session_id).lower()
        matches = [s for s in self.load_all() if str(s.id) == text or str(s.id).startswith(text)]
        if len(matches) == 1:
            return matches[0]
        return None

    def save(self, session: NightSession) -> None:
        """Insert the session, replacing any stored session with the same id"""
        sessions, unreadable = self._read_for_update()
        sessions = [s for s in sessions if s.id != session.id]
        unreadable = [r for r in unreadable if not _has_id(r, session.id)]
        sessions.append(session)
        self._write(sessions, unreadable)
        logger.info("💾 Saved session %s (%d stored)", session.id, len(sessions))

    def delete(self, session_id: uuid.UUID) -> bool:
        sessions, unreadable = self._read_for_update()
        remaining = [s for s in sessions if s.id != session_id]
        kept_unreadable = [r for r in unreadable if not _has_id(r, session_id)]
        if len(remaining) == len(sessions) and len(kept_unreadable) == len(unreadable):
            return False
        self._write(remaining, kept_unreadable)
        logger.info("🗑️ Deleted session %s", session_id)
        return True

    def clear_all(self) -> None:
        if self.path.exists():
            self.path.unlink()
        logger.info("🗑️ Cleared all sessions")

    def _read(self) -> Tuple[List[NightSession], List[Dict[str, Any]]]:
        """
        Parse the store

        Returns:
            (decoded sessions newest first, raw records that failed to decode)

        Raises:
            ValueError: the file is not a session store at all
            OSError: the file cannot be read
        """
        if not self.path.exists():
            return [], []

        with open(self.path, 'r') as f:
            data = json.load(f)
        records = data.get('sessions', []) if isinstance(data, dict) else None
        if not isinstance(records, list):
            raise ValueError("expected an object with a 'sessions' list")

        sessions = []
        unreadable = []
        for index, record in enumerate(records):
            try:
                sessions.append(session_from_dict(record))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.error("❌ Skipping unreadable session #%d in %s: %s", index, self.path, e)
                unreadable.append(record)

        sessions.sort(key=lambda s: s.start_time, reverse=True)
        return sessions, unreadable

    def _read_for_update(self) -> Tuple[List[NightSession], List[Dict[str, Any]]]:
        """Like _read(), but an unparseable file is moved aside instead of being overwritten"""
        try:
            return self._read()
        except ValueError as e:
            os.replace(self.path, self.corrupt_path)
            logger.error("❌ %s is unreadable (%s), moved it to %s", self.path, e, self.corrupt_path)
            return [], []

    def _write(self, sessions: List[NightSession], unreadable: List[Dict[str, Any]]) -> None:
        sessions = sorted(sessions, key=lambda s: s.start_time, reverse=True)
        payload = {'sessions': [session_to_dict(s) for s in sessions] + list(unreadable)}

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix='.sessions-', suffix='.json')
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


def _has_id(record: Any, session_id: uuid.UUID) -> bool:
    return isinstance(record, dict) and str(record.get('id', '')).lower() == str(session_id)
