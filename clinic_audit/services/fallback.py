"""
Local fallback for error records that could not reach the audit store.

Only the top-level error handler writes here. The file keeps the most recent
entries and drops the oldest once the cap is reached.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from clinic_audit.config import settings

logger = logging.getLogger(__name__)


class FallbackErrorLog:
    """A capped JSON list on local disk."""

    def __init__(self, path: Optional[str] = None, max_entries: Optional[int] = None):
        self.path = Path(path or settings.fallback_log_path)
        self.max_entries = max_entries if max_entries is not None else settings.fallback_log_max_entries

    def entries(self) -> List[Dict[str, Any]]:
        """Stored entries, oldest first. A missing or corrupt file reads as empty."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as exc:
            logger.error("Could not read fallback error log %s: %s", self.path, exc)
            return []

        try:
            data = json.loads(raw or "[]")
        except ValueError as exc:
            logger.warning("Fallback error log %s is corrupt, starting over: %s", self.path, exc)
            return []
        return data if isinstance(data, list) else []

    def append(self, entry: Dict[str, Any]) -> bool:
        """Add an entry, trimming to the cap. Returns False if the file could not be written."""
        entries = self.entries()
        entries.append(entry)
        if len(entries) > self.max_entries:
            del entries[: len(entries) - self.max_entries]

        try:
            self.path.write_text(json.dumps(entries, default=str), encoding="utf-8")
        except OSError as exc:
            logger.error("Could not save error to fallback log %s: %s", self.path, exc)
            return False
        return True
