"""Durable indicator storage with chunking for oversized sets."""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime
from typing import Any, TypeVar

from threatsync.datastore.backends import KeyValueBackend
from threatsync.errors import StoreReadError
from threatsync.feeds.models import (
    ChunkIndex,
    FeedMetadata,
    Indicator,
    IndicatorSet,
    RunResult,
    format_timestamp,
    parse_timestamp,
)
from threatsync.utils.validators import normalize_indicator

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIB = 1024 * 1024
DEFAULT_CHUNK_THRESHOLD = 20 * MIB


class StoreKeys:
    """Well-known keys of the backing store."""

    FEED_METADATA = "feed:metadata"
    LAST_UPDATE = "feed:last_update"
    UPDATE_STATS = "feed:update_stats"
    PARTITION_LISTS = "feed:partition_lists"
    SOURCES_CONFIG = "config:sources"
    ALL_INDICATORS = "indicators:all"
    INDICATORS_INDEX = "indicators:index"
    INDICATORS_CHUNK_PREFIX = "indicators:chunk:"
    INDICATOR_PREFIX = "indicator:"

    @classmethod
    def chunk(cls, index: int) -> str:
        return f"{cls.INDICATORS_CHUNK_PREFIX}{index}"

    @classmethod
    def indicator(cls, value: str) -> str:
        return f"{cls.INDICATOR_PREFIX}{value}"


def serialize_indicators(indicators: IndicatorSet) -> bytes:
    """Serialize a set as an ordered JSON array of ``[value, indicator]`` pairs."""
    pairs = [[key, indicators[key].to_dict()] for key in sorted(indicators)]
    return json.dumps(pairs, separators=(",", ":")).encode("utf-8")


def deserialize_indicators(blob: bytes) -> IndicatorSet:
    """
    Parse a serialized indicator set.

    Accepts the pair-array form as well as a plain ``{value: indicator}``
    object.

    Raises:
        ValueError: If the blob is not a valid serialized set.
    """
    data = json.loads(blob.decode("utf-8"))
    items = data.items() if isinstance(data, dict) else data

    indicators: IndicatorSet = {}
    try:
        for key, record in items:
            indicators[key] = Indicator.from_dict(record)
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed indicator record: {e}") from e
    return indicators


def _utcnow() -> datetime:
    return datetime.now(UTC)


class IndicatorStore:
    """
    Persistence for the indicator set and scalar run state.

    The indicator set is written as one entry while its serialized size stays
    under ``chunk_threshold``; larger sets are split into fixed-size chunks
    described by a ``ChunkIndex``. After a successful ``persist`` exactly one
    of the two representations is valid.

    The backend has no multi-key transactions: a crash between writing the
    chunks and writing the index leaves the previous index in place.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        chunk_threshold: int = DEFAULT_CHUNK_THRESHOLD,
        chunk_size: int | None = None,
        max_concurrency: int = 100,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the store.

        Args:
            backend: Key/value backend.
            chunk_threshold: Largest blob stored as a single entry, in bytes.
            chunk_size: Size of each chunk; defaults to ``chunk_threshold``.
            max_concurrency: Operations issued in parallel per batch.
            clock: Returns the current UTC time.
        """
        if chunk_threshold <= 0:
            raise ValueError("chunk_threshold must be positive")
        self.backend = backend
        self.chunk_threshold = chunk_threshold
        self.chunk_size = chunk_size or chunk_threshold
        self.max_concurrency = max(1, max_concurrency)
        self._clock = clock or _utcnow

    async def _run_batched(
        self, operations: Sequence[Callable[[], Awaitable[T]]]
    ) -> list[T]:
        """Run operations in parallel batches, preserving result order."""
        results: list[T] = []
        for start in range(0, len(operations), self.max_concurrency):
            batch = operations[start : start + self.max_concurrency]
            results.extend(await asyncio.gather(*(op() for op in batch)))
        return results

    async def _delete_keys(self, keys: Sequence[str]) -> None:
        await self._run_batched(
            [lambda key=key: self.backend.delete(key) for key in keys]
        )

    # Indicator set

    async def persist(self, indicators: IndicatorSet) -> None:
        """
        Store the full indicator set.

        Raises:
            StoreWriteError: If the backend rejects a write.
        """
        blob = serialize_indicators(indicators)
        size_mb = round(len(blob) / MIB, 2)

        if len(blob) <= self.chunk_threshold:
            await self.backend.put(StoreKeys.ALL_INDICATORS, blob)
            await self._delete_chunks()
            logger.info(
                f"Stored {len(indicators)} indicators in single entry ({size_mb}MB)"
            )
            return

        chunks = [
            blob[offset : offset + self.chunk_size]
            for offset in range(0, len(blob), self.chunk_size)
        ]
        logger.info(
            f"Data size {size_mb}MB exceeds limit, splitting into {len(chunks)} chunks"
        )

        existing_chunk_keys = await self.backend.list(StoreKeys.INDICATORS_CHUNK_PREFIX)

        await self._run_batched(
            [
                lambda i=i, chunk=chunk: self.backend.put(StoreKeys.chunk(i), chunk)
                for i, chunk in enumerate(chunks)
            ]
        )

        index = ChunkIndex(
            total_chunks=len(chunks),
            total_size=len(blob),
            created_at=format_timestamp(self._clock()),
        )
        await self.backend.put(
            StoreKeys.INDICATORS_INDEX, json.dumps(index.to_dict()).encode("utf-8")
        )
        await self.backend.delete(StoreKeys.ALL_INDICATORS)

        current = {StoreKeys.chunk(i) for i in range(len(chunks))}
        stale = [key for key in existing_chunk_keys if key not in current]
        if stale:
            await self._delete_keys(stale)

        logger.info(
            f"Successfully stored {len(indicators)} indicators in {len(chunks)} chunks"
        )

    async def _delete_chunks(self) -> None:
        """Remove the chunk index and every chunk entry."""
        await self.backend.delete(StoreKeys.INDICATORS_INDEX)
        chunk_keys = await self.backend.list(StoreKeys.INDICATORS_CHUNK_PREFIX)
        if chunk_keys:
            await self._delete_keys(chunk_keys)
            logger.info(f"Removed {len(chunk_keys)} obsolete chunks")

    async def get_chunk_index(self) -> ChunkIndex | None:
        """Return the chunk index, or None when the set is stored whole."""
        raw = await self.backend.get(StoreKeys.INDICATORS_INDEX)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            return ChunkIndex(
                total_chunks=int(data["total_chunks"]),
                total_size=int(data["total_size"]),
                created_at=str(data["created_at"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise StoreReadError(f"Corrupt chunk index: {e}") from e

    async def load(self) -> IndicatorSet:
        """
        Load the full indicator set.

        Returns:
            The stored set; empty when nothing is stored or the blob is corrupt.

        Raises:
            StoreReadError: If a chunk declared by the index is missing.
        """
        index = await self.get_chunk_index()

        if index is not None:
            logger.info(
                f"Loading {index.total_chunks} chunks "
                f"({round(index.total_size / MIB, 2)}MB total)"
            )
            chunks = await self._run_batched(
                [
                    lambda i=i: self.backend.get(StoreKeys.chunk(i))
                    for i in range(index.total_chunks)
                ]
            )
            missing = [i for i, chunk in enumerate(chunks) if chunk is None]
            if missing:
                raise StoreReadError(
                    f"Missing {len(missing)} of {index.total_chunks} indicator chunks: "
                    f"{missing[:10]}"
                )

            blob = b"".join(chunks)
            if len(blob) != index.total_size:
                logger.warning(
                    f"Chunked data is {len(blob)} bytes, index declares {index.total_size}"
                )
            return self._parse(blob, "chunks")

        blob = await self.backend.get(StoreKeys.ALL_INDICATORS)
        if blob is None:
            logger.info("No indicators found in storage")
            return {}
        return self._parse(blob, "single entry")

    @staticmethod
    def _parse(blob: bytes, origin: str) -> IndicatorSet:
        try:
            indicators = deserialize_indicators(blob)
        except (ValueError, UnicodeDecodeError) as e:
            logger.error(f"Failed to parse indicators from {origin}: {e}")
            return {}
        logger.info(f"Loaded {len(indicators)} indicators from {origin}")
        return indicators

    async def get_active_indicators(self) -> IndicatorSet:
        """Load the set restricted to indicators that have not expired."""
        now = self._clock()
        indicators = await self.load()
        active = {
            key: indicator
            for key, indicator in indicators.items()
            if not indicator.is_expired(now)
        }
        logger.info(
            f"Found {len(active)} active indicators out of {len(indicators)} total"
        )
        return active

    async def cleanup_expired(self) -> int:
        """
        Remove every indicator whose ``expires_at`` has passed.

        Remaining indicators are rewritten unchanged; point entries of expired
        values are deleted in bounded batches.

        Returns:
            Number of indicators removed.
        """
        now = self._clock()
        indicators = await self.load()

        expired = [key for key, ind in indicators.items() if ind.is_expired(now)]
        if not expired:
            return 0

        logger.info(f"Cleaning up {len(expired)} expired indicators")
        remaining = {
            key: indicator
            for key, indicator in indicators.items()
            if not indicator.is_expired(now)
        }
        await self.persist(remaining)

        point_keys = set(await self.backend.list(StoreKeys.INDICATOR_PREFIX))
        stale = [
            StoreKeys.indicator(key)
            for key in expired
            if StoreKeys.indicator(key) in point_keys
        ]
        if stale:
            await self._delete_keys(stale)

        return len(expired)

    # Point operations

    async def get_indicator(self, value: str) -> Indicator | None:
        """Look up a single indicator entry by value."""
        key, _ = normalize_indicator(value)
        raw = await self.backend.get(StoreKeys.indicator(key))
        if raw is None:
            return None
        try:
            return Indicator.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Failed to parse indicator {key}: {e}")
            return None

    async def has_indicator(self, value: str) -> bool:
        """Check whether a single indicator entry exists."""
        key, _ = normalize_indicator(value)
        return await self.backend.get(StoreKeys.indicator(key)) is not None

    async def put_indicator(self, indicator: Indicator) -> None:
        """Write a single indicator entry."""
        await self.backend.put(
            StoreKeys.indicator(indicator.value),
            json.dumps(indicator.to_dict()).encode("utf-8"),
        )

    async def delete_indicator(self, value: str) -> None:
        """Delete a single indicator entry."""
        key, _ = normalize_indicator(value)
        await self.backend.delete(StoreKeys.indicator(key))

    # Scalar state

    async def _get_json(self, key: str) -> Any:
        raw = await self.backend.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.error(f"Failed to parse {key}: {e}")
            return None

    async def _put_json(self, key: str, value: Any) -> None:
        await self.backend.put(key, json.dumps(value).encode("utf-8"))

    async def store_feed_metadata(self, metadata: FeedMetadata) -> None:
        await self._put_json(StoreKeys.FEED_METADATA, metadata.to_dict())
        logger.info(f"Stored feed metadata for feed: {metadata.feed_id}")

    async def get_feed_metadata(self) -> FeedMetadata | None:
        data = await self._get_json(StoreKeys.FEED_METADATA)
        if not isinstance(data, dict):
            return None
        try:
            return FeedMetadata.from_dict(data)
        except TypeError as e:
            logger.error(f"Failed to parse feed metadata: {e}")
            return None

    async def store_last_update(self, timestamp: datetime) -> None:
        await self.backend.put(
            StoreKeys.LAST_UPDATE, format_timestamp(timestamp).encode("utf-8")
        )

    async def get_last_update(self) -> datetime | None:
        raw = await self.backend.get(StoreKeys.LAST_UPDATE)
        if raw is None:
            return None
        try:
            return parse_timestamp(raw.decode("utf-8"))
        except ValueError as e:
            logger.error(f"Failed to parse last update timestamp: {e}")
            return None

    async def store_run_result(self, result: RunResult) -> None:
        await self._put_json(StoreKeys.UPDATE_STATS, result.to_dict())

    async def get_run_result(self) -> RunResult | None:
        data = await self._get_json(StoreKeys.UPDATE_STATS)
        if not isinstance(data, dict):
            return None
        try:
            return RunResult.from_dict(data)
        except TypeError as e:
            logger.error(f"Failed to parse update stats: {e}")
            return None

    async def store_sources_config(self, sources: list[dict[str, Any]]) -> None:
        await self._put_json(StoreKeys.SOURCES_CONFIG, sources)

    async def get_sources_config(self) -> list[dict[str, Any]] | None:
        data = await self._get_json(StoreKeys.SOURCES_CONFIG)
        return data if isinstance(data, list) else None

    async def store_partition_lists(self, list_ids: list[str]) -> None:
        await self._put_json(StoreKeys.PARTITION_LISTS, list_ids)

    async def get_partition_lists(self) -> list[str]:
        data = await self._get_json(StoreKeys.PARTITION_LISTS)
        return [str(item) for item in data] if isinstance(data, list) else []

    # Maintenance

    async def get_storage_stats(self) -> dict[str, Any]:
        """Key counts and the current representation of the indicator set."""
        keys = await self.backend.list("")
        chunk_keys = [k for k in keys if k.startswith(StoreKeys.INDICATORS_CHUNK_PREFIX)]
        point_keys = [k for k in keys if k.startswith(StoreKeys.INDICATOR_PREFIX)]

        if StoreKeys.INDICATORS_INDEX in keys:
            representation = "chunked"
        elif StoreKeys.ALL_INDICATORS in keys:
            representation = "single"
        else:
            representation = "empty"

        metadata = await self.backend.get(StoreKeys.FEED_METADATA)
        last_update = await self.get_last_update()

        return {
            "total_keys": len(keys),
            "chunk_keys": len(chunk_keys),
            "indicator_entries": len(point_keys),
            "representation": representation,
            "metadata_size": len(metadata) if metadata else 0,
            "last_update": format_timestamp(last_update) if last_update else None,
        }

    async def clear_indicator_data(self) -> None:
        """Delete the indicator set in both representations."""
        logger.info("Clearing all indicator data...")
        await self.backend.delete(StoreKeys.ALL_INDICATORS)
        await self._delete_chunks()
        logger.info("All indicator data cleared")

    async def clear_all(self) -> int:
        """
        Delete every key, including every chunk and point entry.

        Returns:
            Number of keys deleted.
        """
        logger.warning("Clearing all data from the indicator store")
        keys = await self.backend.list("")
        await self._delete_keys(keys)
        logger.info(f"Deleted {len(keys)} keys")
        return len(keys)

    async def backup_indicators(self) -> dict[str, Any]:
        """Snapshot of the full indicator set."""
        indicators = await self.load()
        return {
            "timestamp": format_timestamp(self._clock()),
            "count": len(indicators),
            "indicators": [indicators[key].to_dict() for key in sorted(indicators)],
        }

    async def restore_indicators(self, indicators: IndicatorSet) -> int:
        """Replace the stored set with ``indicators``."""
        await self.persist(indicators)
        logger.info(f"Restored {len(indicators)} indicators from backup")
        return len(indicators)
