"""Download counter storage.

Counters live in a key-value backend as decimal strings under
``<prefix><file key>``. ``increment`` is a plain read-modify-write: two
concurrent increments of the same key can both read the same value and one
update is lost. Counts are approximate.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import redis.asyncio as redis

from download_server.config import COUNTER_PREFIX
from download_server.logger_config import get_logger

logger = get_logger("counters")


def counter_key(filename: str, prefix: str = COUNTER_PREFIX) -> str:
    return f"{prefix}{filename}"


class CounterStore(ABC):
    """Key-value adapter. Backends implement get/put/delete/list_keys."""

    prefix: str = COUNTER_PREFIX

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    async def put(self, key: str, value: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> List[str]:
        raise NotImplementedError

    async def close(self) -> None:
        pass

    async def read(self, filename: str) -> int:
        """Current count for a file, 0 when no counter exists."""
        value = await self.get(counter_key(filename, self.prefix))
        return int(value) if value else 0

    async def increment(self, filename: str) -> int:
        key = counter_key(filename, self.prefix)
        current = await self.get(key)
        logger.debug(f"Current count for {key}: {current}")

        new_count = int(current) + 1 if current else 1
        await self.put(key, str(new_count))
        return new_count

    async def reset(self, filename: str) -> None:
        await self.delete(counter_key(filename, self.prefix))

    async def all_counts(self) -> Dict[str, int]:
        """Mapping of file key to count for every counter under the prefix."""
        counts = {}
        for key in await self.list_keys(self.prefix):
            value = await self.get(key)
            counts[key[len(self.prefix):]] = int(value or "0")
        return counts


class InMemoryCounterStore(CounterStore):
    """Process-local store for development and tests."""

    def __init__(self, prefix: str = COUNTER_PREFIX):
        self.prefix = prefix
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def put(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def list_keys(self, prefix: str = "") -> List[str]:
        return [key for key in self._data if key.startswith(prefix)]


class RedisCounterStore(CounterStore):
    """Counters shared across server processes through Redis."""

    def __init__(self, client: redis.Redis, prefix: str = COUNTER_PREFIX):
        self.prefix = prefix
        self._client = client

    @classmethod
    def from_url(cls, url: str, prefix: str = COUNTER_PREFIX) -> 'RedisCounterStore':
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            health_check_interval=30,
        )
        return cls(client, prefix=prefix)

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def put(self, key: str, value: str) -> None:
        await self._client.set(key, value)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def list_keys(self, prefix: str = "") -> List[str]:
        return [key async for key in self._client.scan_iter(match=f"{prefix}*")]

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("Redis connection closed")
