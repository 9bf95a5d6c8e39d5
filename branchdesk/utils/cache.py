"""
utils/cache.py
---------------

Durable local key/value store modelled on the browser's
``localStorage``. Values are strings (callers serialise JSON
themselves). When a file path is configured every write is flushed to
that JSON file, so the cached user and the auth session survive a
process restart; without a path the store lives in memory only. The
store is not thread‑safe: all writers run on the single event loop
thread.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional

from branchdesk.logging_config import logger


class LocalStore:
    """String key/value store with optional JSON file persistence."""

    def __init__(self, path: Optional[str] = None) -> None:
        self._path = Path(path) if path else None
        self._store: Dict[str, str] = self._load()

    def _load(self) -> Dict[str, str]:
        if self._path is None or not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning(json.dumps({
                "event": "local_store_unreadable",
                "path": str(self._path),
                "detail": str(exc),
            }))
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _flush(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        # write to a sibling temp file and swap it in
        fd, tmp = tempfile.mkstemp(dir=str(self._path.parent), prefix=".store-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._store, fh)
            os.replace(tmp, self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def get_item(self, key: str) -> Optional[str]:
        """Return the stored string for ``key`` or ``None``."""
        return self._store.get(key)

    def set_item(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        self._store[key] = value
        self._flush()

    def remove_item(self, key: str) -> None:
        """Remove ``key``; missing keys are ignored."""
        if self._store.pop(key, None) is not None:
            self._flush()

    def clear(self) -> None:
        """Remove all entries."""
        self._store.clear()
        self._flush()
