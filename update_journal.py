# update_journal.py — one JSON record per update run, kept across generations

import os
import json
import time
import logging
from typing import List, Optional

import settings
from errors import describe_error, error_kind

logger = logging.getLogger(__name__)

COMMITTED = "committed"
FAILED = "failed"
FALLBACK_FAILED = "fallback_failed"


class UpdateJournal:
    """
    Append-only history of update outcomes.

    Every write goes through a temp file and os.replace, so a crash mid-save
    leaves the previous journal intact. Journal problems are logged and never
    interrupt the update itself.
    """

    def __init__(self, path: str = settings.JOURNAL_PATH):
        self.path = path
        self.entries: List[dict] = []
        self._load()

    def _load(self):
        if not os.path.exists(self.path):
            self.entries = []
            return

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            self.entries = data if isinstance(data, list) else []
        except ValueError:
            # bad JSON or bytes that are not UTF-8
            self.entries = []
            backup = self.path + ".bak"
            try:
                os.replace(self.path, backup)
            except OSError as e:
                logger.error(f"[JOURNAL] Corrupted journal could not be moved to {backup}: {e}")
                return
            logger.warning(f"[JOURNAL] Corrupted journal; moved to {backup}")
            self._save()
        except OSError as e:
            logger.error(f"[JOURNAL] Failed to load {self.path}: {e}")
            self.entries = []

    def _save(self):
        tmp = f"{self.path}.tmp"
        try:
            with open(tmp, 'w', encoding='utf-8') as f:
                json.dump(self.entries, f, indent=2)
            os.replace(tmp, self.path)
        except OSError as e:
            logger.error(f"[JOURNAL] Failed to save {self.path}: {e}")

    def record(self, outcome: str, error: Optional[BaseException] = None, **context) -> dict:
        entry = {
            "timestamp": time.strftime('%Y-%m-%d %H:%M:%S'),
            "pid": os.getpid(),
            "outcome": outcome,
        }
        if error is not None:
            entry["kind"] = error_kind(error)
            entry["message"] = str(error)
            entry["trace"] = describe_error(error)
        entry.update({k: (str(v) if v is not None else None) for k, v in context.items()})
        self.entries.append(entry)
        self._save()

        if outcome == COMMITTED:
            logger.info("[JOURNAL] Update committed")
        else:
            logger.error(f"[JOURNAL] {outcome}: {entry.get('kind', 'unknown')}")
        return entry

    def recent(self, limit: int = 5) -> List[dict]:
        return self.entries[-limit:]

    def failures(self, limit: int = 10) -> List[dict]:
        return [e for e in reversed(self.entries) if e.get("outcome") != COMMITTED][:limit]
