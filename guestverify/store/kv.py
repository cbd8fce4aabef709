"""
Key-value backends behind the Persistence Layer: get / set / remove on strings.
Backend failures surface as PersistenceError and nothing else.
"""
from typing import Dict, Optional

from redis import Redis, RedisError

from guestverify.core.errors import PersistenceError
from guestverify.settings import settings
from guestverify.store.redis_conn import get_redis


class InMemoryStorage:
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = str(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data.keys())


class RedisStorage:
    def __init__(self, client: Optional[Redis] = None):
        self._client = client

    @property
    def client(self) -> Redis:
        if self._client is None:
            self._client = get_redis()
        return self._client

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(key)
        except (RedisError, OSError) as e:
            raise PersistenceError(f"redis get failed: {e}") from e

    def set(self, key: str, value: str) -> None:
        try:
            self.client.set(key, value)
        except (RedisError, OSError) as e:
            raise PersistenceError(f"redis set failed: {e}") from e

    def remove(self, key: str) -> None:
        try:
            self.client.delete(key)
        except (RedisError, OSError) as e:
            raise PersistenceError(f"redis delete failed: {e}") from e


def get_storage(backend: Optional[str] = None):
    backend = (backend or settings.STORAGE_BACKEND or "memory").strip().lower()
    if backend == "redis":
        return RedisStorage()
    if backend == "memory":
        return InMemoryStorage()
    raise ValueError(f"unknown STORAGE_BACKEND: {backend!r}")
