"""Persisted JSON records.

One canonical JSON file per record key. Writes go to a temp file, are
fsynced, then renamed over the old record. A record that fails to parse
is treated as absent; the next save overwrites it.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class StoreWriteError(Exception):
    """Raised when a record cannot be written to disk."""


class JsonStore:
    """Directory of small JSON records keyed by name."""

    def __init__(self, root: str) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        if not key or "/" in key or key.startswith("."):
            raise ValueError("Invalid record key: {!r}".format(key))
        return self.root / "{}.json".format(key)

    def load(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        if not path.is_file():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Persisted record %s unreadable, using defaults: %s", key, e)
            return default

    def save(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp = path.with_name(path.name + ".tmp")
        line = json.dumps(value, sort_keys=True, ensure_ascii=True)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(line)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except OSError as e:
            raise StoreWriteError("Failed to persist {}: {}".format(key, e)) from e
        logger.debug("Persisted record %s", key)

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.is_file():
            path.unlink()

    def clear(self) -> int:
        """Remove every record. Returns the number removed."""
        if not self.root.is_dir():
            return 0
        count = 0
        for path in self.root.glob("*.json"):
            path.unlink()
            count += 1
        return count
