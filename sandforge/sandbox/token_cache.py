"""
File-backed cache of sandbox access tokens.

Data-plane calls against an existing instance need the token that was issued
when the instance was created. The cache maps instance ids to those tokens
so that later invocations (`--instance <id>`) can reconnect.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CACHE_DIR = Path("~/.sandforge")
CACHE_FILE = "tokens.json"
CACHE_VERSION = 1


class TokenCache:
    def __init__(self, path: str | Path | None = None):
        if path is None:
            path = CACHE_DIR.expanduser() / CACHE_FILE
        self.path = Path(path)
        self._lock = threading.Lock()

    def get(self, instance_id: str) -> str | None:
        with self._lock:
            entry = self._load()["tokens"].get(instance_id)
        if not isinstance(entry, dict):
            return None
        return entry.get("access_token")

    def set(self, instance_id: str, access_token: str) -> None:
        with self._lock:
            data = self._load()
            data["tokens"][instance_id] = {
                "access_token": access_token,
                "created_at": datetime.now(timezone.utc).isoformat(),
            }
            self._save(data)

    def delete(self, instance_id: str) -> None:
        with self._lock:
            data = self._load()
            data["tokens"].pop(instance_id, None)
            self._save(data)

    def clear(self) -> None:
        with self._lock:
            self._save(_empty())

    def list(self) -> list[str]:
        with self._lock:
            return sorted(self._load()["tokens"])

    def _load(self) -> dict[str, Any]:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return _empty()
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("token cache %s is corrupted, starting fresh", self.path)
            return _empty()

        if not isinstance(raw, dict) or not isinstance(raw.get("tokens"), dict):
            return _empty()

        version = raw.get("version")
        if not isinstance(version, int) or version < CACHE_VERSION:
            raw["version"] = CACHE_VERSION
        return raw

    def _save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2)


def _empty() -> dict[str, Any]:
    return {"version": CACHE_VERSION, "tokens": {}}
