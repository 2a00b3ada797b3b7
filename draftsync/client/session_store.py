"""File-backed store of per-questionnaire session identifiers.

Plays the role browser storage plays for a web respondent: the first visit to
a questionnaire creates a stable respondent id, later visits reuse it, and a
successful final submission deletes it so the next visit starts a fresh
draft scope. Writes are atomic (temp file + os.replace).
"""

from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class SessionStore:
    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError):
            # Start fresh on any parse error; the worst case is a new draft scope
            logger.error("session_store_parse_failed path=%s", str(self.path), exc_info=True)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items() if isinstance(v, str)}

    def _write(self, content: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(content, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)

    def get(self, questionnaire_id: str) -> Optional[str]:
        with self._lock:
            return self._read().get(questionnaire_id)

    def get_or_create(self, questionnaire_id: str) -> str:
        with self._lock:
            data = self._read()
            session_id = data.get(questionnaire_id)
            if session_id:
                return session_id
            session_id = str(uuid.uuid4())
            data[questionnaire_id] = session_id
            self._write(data)
            logger.info("session_created questionnaire_id=%s", questionnaire_id)
            return session_id

    def clear(self, questionnaire_id: str) -> None:
        with self._lock:
            data = self._read()
            if data.pop(questionnaire_id, None) is not None:
                self._write(data)
                logger.info("session_cleared questionnaire_id=%s", questionnaire_id)


__all__ = ["SessionStore"]
