"""Key/value backends underlying the indicator store."""

import logging
import re
from typing import Protocol, runtime_checkable

import redis.asyncio as redis
from redis.exceptions import RedisError

from threatsync.errors import StoreReadError, StoreWriteError

logger = logging.getLogger(__name__)

GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


@runtime_checkable
class KeyValueBackend(Protocol):
    """
    Minimal key/value contract.

    No multi-key atomicity is assumed and each value is subject to a size
    ceiling; callers split larger payloads themselves.
    """

    max_value_bytes: int | None

    async def get(self, key: str) -> bytes | None:
        """Return the stored value, or None when absent."""
        ...

    async def put(self, key: str, value: bytes) -> None:
        """Store a value, replacing any previous one."""
        ...

    async def delete(self, key: str) -> None:
        """Delete a key; deleting a missing key is not an error."""
        ...

    async def list(self, prefix: str = "") -> list[str]:
        """List keys starting with ``prefix``."""
        ...

    async def close(self) -> None:
        """Release connections."""
        ...


def _check_size(key: str, value: bytes, limit: int | None) -> None:
    if limit is not None and len(value) > limit:
        raise StoreWriteError(
            f"Value for {key} is {len(value)} bytes, above the {limit} byte limit"
        )


class MemoryBackend:
    """In-process backend for local runs and tests."""

    def __init__(self, max_value_bytes: int | None = None):
        self.max_value_bytes = max_value_bytes
        self.data: dict[str, bytes] = {}

    async def get(self, key: str) -> bytes | None:
        return self.data.get(key)

    async def put(self, key: str, value: bytes) -> None:
        _check_size(key, value, self.max_value_bytes)
        self.data[key] = bytes(value)

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)

    async def list(self, prefix: str = "") -> list[str]:
        return sorted(key for key in self.data if key.startswith(prefix))

    async def close(self) -> None:
        return None


class RedisBackend:
    """Redis-backed key/value storage."""

    def __init__(
        self,
        client: redis.Redis,
        max_value_bytes: int | None = None,
        namespace: str = "threatsync:",
    ):
        """
        Initialize the backend.

        Args:
            client: Async Redis client.
            max_value_bytes: Per-value size ceiling enforced before writing.
            namespace: Prefix isolating this application's keys.
        """
        self.client = client
        self.max_value_bytes = max_value_bytes
        self.namespace = namespace

    @classmethod
    def from_url(
        cls,
        url: str,
        max_connections: int = 20,
        max_value_bytes: int | None = None,
    ) -> "RedisBackend":
        """Create a backend with its own connection pool."""
        client = redis.from_url(
            url,
            max_connections=max_connections,
            retry_on_timeout=True,
        )
        return cls(client, max_value_bytes=max_value_bytes)

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    async def get(self, key: str) -> bytes | None:
        try:
            return await self.client.get(self._key(key))
        except RedisError as e:
            raise StoreReadError(f"Failed to read {key}: {e}") from e

    async def put(self, key: str, value: bytes) -> None:
        _check_size(key, value, self.max_value_bytes)
        try:
            await self.client.set(self._key(key), value)
        except RedisError as e:
            raise StoreWriteError(f"Failed to write {key}: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(self._key(key))
        except RedisError as e:
            raise StoreWriteError(f"Failed to delete {key}: {e}") from e

    async def list(self, prefix: str = "") -> list[str]:
        pattern = GLOB_SPECIAL.sub(r"\\\1", self._key(prefix)) + "*"
        keys: list[str] = []
        try:
            async for raw_key in self.client.scan_iter(match=pattern, count=1000):
                key = raw_key.decode() if isinstance(raw_key, bytes) else raw_key
                keys.append(key[len(self.namespace):])
        except RedisError as e:
            raise StoreReadError(f"Failed to list keys under {prefix!r}: {e}") from e
        return sorted(keys)

    async def close(self) -> None:
        await self.client.aclose()
        logger.info("Redis backend connection closed")
