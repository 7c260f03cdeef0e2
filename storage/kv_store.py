# storage/kv_store.py
"""
Persistent key-value store.

Single JSON file holding {key: value}. Reads and writes run in a worker
thread so the fill loop never blocks on disk. Writes are atomic
(tempfile + fsync + os.replace, iCloud safe) and report success as a bool.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


class JsonFileStore:
    """Key-value store persisted to one JSON document."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except (json.JSONDecodeError, IOError) as e:
            logger.error(f"Failed to read {self.path}: {e}")
            return {}

    def _save(self, data: dict):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, str(self.path))
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _get(self, key: str) -> Optional[Any]:
        return self._load().get(key)

    def _set(self, key: str, value: Any) -> bool:
        data = self._load()
        data[key] = value
        try:
            self._save(data)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to write key '{key}' to {self.path}: {e}")
            return False

    async def get(self, key: str) -> Optional[Any]:
        return await asyncio.to_thread(self._get, key)

    async def set(self, key: str, value: Any) -> bool:
        return await asyncio.to_thread(self._set, key, value)
