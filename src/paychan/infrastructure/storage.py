"""Key-value storage used by the repositories, with a Redis implementation."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, List, Optional

from redis.exceptions import NoScriptError

from .database import DatabaseClient


class KeyValueStore(ABC):
    """Minimal string key-value operations needed by the repositories."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> int:
        pass

    @abstractmethod
    async def eval(self, script: str, keys: List[str], args: List[str]) -> Any:
        pass

    @abstractmethod
    async def register_script(self, name: str, script: str) -> str:
        """Load a script once and return its SHA1."""
        pass

    @abstractmethod
    async def run_script(self, name: str, keys: List[str], args: List[str]) -> Any:
        """Run a script previously passed to register_script."""
        pass


class RedisKeyValueStore(KeyValueStore):
    def __init__(self, db_client: DatabaseClient):
        self._db_client = db_client
        self._scripts: dict[str, tuple[str, str]] = {}

    async def get(self, key: str) -> Optional[str]:
        async with self._db_client.get_connection() as conn:
            return await conn.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._db_client.get_connection() as conn:
            await conn.set(key, value)

    async def delete(self, key: str) -> int:
        async with self._db_client.get_connection() as conn:
            return await conn.delete(key)

    async def eval(self, script: str, keys: List[str], args: List[str]) -> Any:
        async with self._db_client.get_connection() as conn:
            return await conn.eval(script, len(keys), *keys, *args)

    async def register_script(self, name: str, script: str) -> str:
        async with self._db_client.get_connection() as conn:
            sha = await conn.script_load(script)
        self._scripts[name] = (sha, script)
        return sha

    async def run_script(self, name: str, keys: List[str], args: List[str]) -> Any:
        if name not in self._scripts:
            raise ValueError(f"Script '{name}' not registered")
        sha, script = self._scripts[name]
        async with self._db_client.get_connection() as conn:
            try:
                return await conn.evalsha(sha, len(keys), *keys, *args)
            except NoScriptError:
                # Server script cache was flushed
                sha = await conn.script_load(script)
                self._scripts[name] = (sha, script)
                return await conn.evalsha(sha, len(keys), *keys, *args)
