from __future__ import annotations

import json
import stat
import threading
from pathlib import Path

from sandforge.sandbox.token_cache import CACHE_VERSION, TokenCache


def test_get_missing_file_returns_none(tmp_path: Path) -> None:
    cache = TokenCache(tmp_path / "tokens.json")

    assert cache.get("sbx-1") is None
    assert cache.list() == []


def test_set_get_delete(tmp_path: Path) -> None:
    cache = TokenCache(tmp_path / "nested" / "tokens.json")

    cache.set("sbx-1", "tok-1")
    cache.set("sbx-2", "tok-2")

    assert cache.get("sbx-1") == "tok-1"
    assert cache.list() == ["sbx-1", "sbx-2"]

    cache.delete("sbx-1")
    assert cache.get("sbx-1") is None
    assert cache.list() == ["sbx-2"]

    cache.clear()
    assert cache.list() == []


def test_file_format_and_permissions(tmp_path: Path) -> None:
    path = tmp_path / "tokens.json"
    TokenCache(path).set("sbx-1", "tok-1")

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["version"] == CACHE_VERSION
    assert data["tokens"]["sbx-1"]["access_token"] == "tok-1"
    assert "created_at" in data["tokens"]["sbx-1"]
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_corrupted_file_is_treated_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "tokens.json"
    path.write_text("{not json", encoding="utf-8")
    cache = TokenCache(path)

    assert cache.get("sbx-1") is None

    cache.set("sbx-1", "tok-1")
    assert cache.get("sbx-1") == "tok-1"


def test_concurrent_sets_are_not_lost(tmp_path: Path) -> None:
    cache = TokenCache(tmp_path / "tokens.json")

    threads = [
        threading.Thread(target=cache.set, args=(f"sbx-{i}", f"tok-{i}")) for i in range(10)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(cache.list()) == 10
