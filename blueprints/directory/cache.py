# blueprints/directory/cache.py
from __future__ import annotations
import threading
import time
from typing import Any, Callable, Dict, Optional


class ReferenceDataCache:
    """Read-through кэш справочников (группы, преподаватели, комнаты) с TTL.

    Экземпляр принадлежит приложению (app.extensions["reference_cache"]) и
    передаётся потребителям через конструктор.
    """

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: Dict[str, dict] = {}
        self._stats = {"hits": 0, "misses": 0}

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry and self._clock() < entry["expires_at"]:
                self._stats["hits"] += 1
                return entry["value"]
            self._stats["misses"] += 1
        return None

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._entries[key] = {"value": value, "expires_at": self._clock() + ttl}

    def get_or_load(self, key: str, loader: Callable[[], Any], ttl_seconds: Optional[float] = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry and self._clock() < entry["expires_at"]:
                self._stats["hits"] += 1
                return entry["value"]
            self._stats["misses"] += 1
        # загрузчик ходит в БД, поэтому вне блокировки
        value = loader()
        self.set(key, value, ttl_seconds)
        return value

    def warm_up(self, loaders: Dict[str, Callable[[], Any]]) -> None:
        for key, loader in loaders.items():
            self.set(key, loader())

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict:
        with self._lock:
            now = self._clock()
            active = sum(1 for e in self._entries.values() if now < e["expires_at"])
            return {
                "total": len(self._entries),
                "active": active,
                "expired": len(self._entries) - active,
                **self._stats,
            }
