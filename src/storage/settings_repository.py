"""
Key/value settings store.

Each row is a (key, value, load_on_startup) triple. The Redis backend keeps
one hash per key under a configurable prefix; the in-memory backend is used
in development and tests.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

import redis.asyncio as redis

from src.types.saml import SettingsRow

logger = logging.getLogger(__name__)


class SettingsRepository(ABC):
    """Persistence interface for settings rows."""

    @abstractmethod
    async def get(self, key: str) -> Optional[SettingsRow]:
        """Return the row for ``key`` or None."""

    @abstractmethod
    async def save(self, row: SettingsRow) -> SettingsRow:
        """Insert or replace a row and return what was stored."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete the row for ``key``; missing rows are ignored."""


class InMemorySettingsRepository(SettingsRepository):
    def __init__(self) -> None:
        self._rows: Dict[str, SettingsRow] = {}

    async def get(self, key: str) -> Optional[SettingsRow]:
        row = self._rows.get(key)
        return row.model_copy() if row else None

    async def save(self, row: SettingsRow) -> SettingsRow:
        self._rows[row.key] = row.model_copy()
        return row.model_copy()

    async def delete(self, key: str) -> None:
        self._rows.pop(key, None)


class RedisSettingsRepository(SettingsRepository):
    """Settings rows stored as Redis hashes (fields ``value`` and ``loadOnStartup``)."""

    def __init__(self, client: redis.Redis, prefix: str = "settings:"):
        self._client = client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Optional[SettingsRow]:
        data = await self._client.hgetall(self._key(key))
        if not data or "value" not in data:
            return None
        return SettingsRow(
            key=key,
            value=data["value"],
            load_on_startup=data.get("loadOnStartup") == "1",
        )

    async def save(self, row: SettingsRow) -> SettingsRow:
        await self._client.hset(
            self._key(row.key),
            mapping={
                "value": row.value,
                "loadOnStartup": "1" if row.load_on_startup else "0",
            },
        )
        logger.debug(f"Saved settings row {row.key}")
        return row

    async def delete(self, key: str) -> None:
        await self._client.delete(self._key(key))
        logger.debug(f"Deleted settings row {key}")
