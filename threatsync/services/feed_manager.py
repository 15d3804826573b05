"""Feed manager orchestrating the collect, store and publish cycle."""

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from threatsync.config import Settings, settings
from threatsync.datastore.backends import KeyValueBackend, RedisBackend
from threatsync.datastore.store import IndicatorStore
from threatsync.errors import ConfigurationError, DownstreamAPIError, StoreError
from threatsync.feeds.collector import ThreatCollector
from threatsync.feeds.merger import merge_indicators
from threatsync.feeds.models import (
    FeedMetadata,
    Indicator,
    RunResult,
    format_timestamp,
)
from threatsync.feeds.sources import ThreatSource, load_sources, validate_sources
from threatsync.metrics import CYCLE_COUNT, CYCLE_DURATION
from threatsync.services.backup import parse_backup
from threatsync.services.lists_client import ListsClient
from threatsync.services.publisher import FeedPublisher
from threatsync.utils.validators import normalize_indicator

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class FeedManager:
    """
    Orchestrates the threat feed update process.

    One cycle runs cleanup, collection, merge, persistence, publishing and
    bookkeeping in that order. A failing step aborts the remaining ones,
    records a failed ``RunResult`` and re-raises.
    """

    def __init__(
        self,
        store: IndicatorStore,
        collector: ThreatCollector,
        client: ListsClient,
        publisher: FeedPublisher,
        *,
        feed_name: str = "ThreatSync Feed",
        feed_description: str = "",
        list_type: str = "IP",
        update_interval_hours: float = 24,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.collector = collector
        self.client = client
        self.publisher = publisher
        self.feed_name = feed_name
        self.feed_description = feed_description
        self.list_type = list_type
        self.update_interval = timedelta(hours=update_interval_hours)
        self._clock = clock or _utcnow

    @property
    def update_frequency(self) -> str:
        hours = self.update_interval.total_seconds() / 3600
        return f"{int(hours)}h" if hours.is_integer() else f"{hours}h"

    async def close(self) -> None:
        """Release HTTP and store connections."""
        await self.client.close()
        await self.store.backend.close()

    async def initialize(self) -> FeedMetadata:
        """
        Validate credentials, get or create the primary list and store metadata.

        Raises:
            ConfigurationError: If the API credentials are rejected.
        """
        logger.info("Initializing threat feed")

        if not await self.client.validate_credentials():
            raise ConfigurationError("Invalid Cloudflare API credentials")

        gateway_list = await self.client.get_or_create_list(
            self.feed_name, self.feed_description, self.list_type
        )
        now = format_timestamp(self._clock())

        metadata = FeedMetadata(
            feed_id=str(gateway_list["id"]),
            name=gateway_list.get("name", self.feed_name),
            description=gateway_list.get("description") or self.feed_description,
            created_at=gateway_list.get("created_at") or now,
            last_updated=gateway_list.get("updated_at") or now,
            total_indicators=int(gateway_list.get("count") or 0),
            active_indicators=int(gateway_list.get("count") or 0),
            update_frequency=self.update_frequency,
            sources=[source.name for source in self.collector.active_sources],
            partition_list_ids=await self.store.get_partition_lists(),
        )
        await self.store.store_feed_metadata(metadata)

        logger.info(f"Initialized Gateway list: {metadata.name} ({metadata.feed_id})")
        return metadata

    async def update_feed(self) -> RunResult:
        """
        Run one complete update cycle.

        Raises:
            ConfigurationError: If the feed was never initialized.
            StoreError: If persisting or loading state fails.
            DownstreamAPIError: If the downstream lists cannot be prepared.
        """
        start_time = time.perf_counter()
        logger.info("Starting threat feed update")

        try:
            logger.info("Step 1: Cleaning up expired indicators")
            removed = await self.store.cleanup_expired()

            logger.info("Step 2: Collecting threat intelligence")
            collection = await self.collector.collect()

            logger.info("Step 3: Merging with existing indicators")
            existing = await self.store.get_active_indicators()
            merged = merge_indicators(existing, collection.indicators)

            logger.info(f"Step 4: Storing {len(merged)} indicators")
            await self.store.persist(merged)

            logger.info("Step 5: Publishing to Gateway lists")
            metadata = await self.store.get_feed_metadata()
            if metadata is None:
                raise ConfigurationError(
                    "Feed metadata not found. Run initialize() first."
                )

            now = self._clock()
            active = [
                indicator
                for indicator in merged.values()
                if not indicator.is_expired(now)
            ]
            # A Gateway list only accepts values of its own type
            kind = self.list_type.lower()
            publishable = [indicator for indicator in active if indicator.type == kind]
            if len(publishable) < len(active):
                logger.info(
                    f"Skipping {len(active) - len(publishable)} indicators "
                    f"that do not match list type {self.list_type}"
                )
            upload = await self.publisher.publish(metadata.feed_id, publishable)

            logger.info("Step 6: Updating metadata and statistics")
            completed_at = self._clock()
            metadata.last_updated = format_timestamp(completed_at)
            metadata.total_indicators = len(merged)
            metadata.active_indicators = len(active)
            metadata.update_frequency = self.update_frequency
            metadata.sources = [source.name for source in self.collector.active_sources]
            metadata.partition_list_ids = (
                list(upload.list_ids) if upload.mode == "multi" else []
            )
            await self.store.store_feed_metadata(metadata)
            await self.store.store_last_update(completed_at)

            fresh_keys = collection.indicators.keys()
            result = RunResult(
                success=upload.success,
                feed_id=metadata.feed_id,
                indicators_added=len(fresh_keys - existing.keys()),
                indicators_updated=len(fresh_keys & existing.keys()),
                indicators_removed=removed,
                processing_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
                errors=collection.stats.errors + upload.errors,
                completed_at=format_timestamp(completed_at),
            )
            await self.store.store_run_result(result)

        except Exception as e:
            logger.error(f"Feed update failed: {e}")
            CYCLE_COUNT.labels(result="failure").inc()
            CYCLE_DURATION.observe(time.perf_counter() - start_time)
            try:
                await self.store.store_run_result(
                    RunResult(
                        success=False,
                        processing_time_ms=round(
                            (time.perf_counter() - start_time) * 1000, 2
                        ),
                        errors=[str(e)],
                        completed_at=format_timestamp(self._clock()),
                    )
                )
            except StoreError as store_error:
                logger.error(f"Could not record failed run: {store_error}")
            raise

        CYCLE_COUNT.labels(result="success" if result.success else "partial").inc()
        CYCLE_DURATION.observe(time.perf_counter() - start_time)
        logger.info(
            f"Feed update completed: {result.indicators_added} added, "
            f"{result.indicators_updated} updated, {result.indicators_removed} removed "
            f"in {result.processing_time_ms}ms"
        )
        return result

    async def is_update_needed(self) -> bool:
        """True when no cycle has completed yet or the interval has elapsed."""
        last_update = await self.store.get_last_update()
        if last_update is None:
            return True
        return self._clock() - last_update >= self.update_interval

    async def force_update(self) -> RunResult:
        """Run a cycle regardless of schedule."""
        logger.info("Forcing threat feed update")
        return await self.update_feed()

    async def run_scheduled_update(self) -> RunResult | None:
        """
        Update if due. Errors are logged, never raised.

        Returns:
            The cycle result, or None when skipped or failed.
        """
        try:
            if not await self.is_update_needed():
                logger.info("Feed update not needed yet")
                return None
            return await self.update_feed()
        except Exception as e:
            logger.error(f"Scheduled update failed: {e}")
            return None

    async def get_feed_status(self) -> dict[str, Any]:
        """Metadata, last run, storage and downstream statistics."""
        metadata = await self.store.get_feed_metadata()
        last_update = await self.store.get_last_update()
        run_result = await self.store.get_run_result()
        storage_stats = await self.store.get_storage_stats()

        downstream_stats = None
        if metadata is not None:
            try:
                gateway_list = await self.client.get_list(metadata.feed_id)
                downstream_stats = {
                    "id": gateway_list.get("id"),
                    "name": gateway_list.get("name"),
                    "count": int(gateway_list.get("count") or 0),
                    "updated_at": gateway_list.get("updated_at"),
                    "partition_lists": len(metadata.partition_list_ids),
                }
            except DownstreamAPIError as e:
                logger.error(f"Failed to get Gateway list stats: {e}")

        return {
            "metadata": metadata.to_dict() if metadata else None,
            "last_update": format_timestamp(last_update) if last_update else None,
            "update_stats": run_result.to_dict() if run_result else None,
            "update_needed": await self.is_update_needed(),
            "storage_stats": storage_stats,
            "cloudflare_stats": downstream_stats,
        }

    # Sources

    def get_sources(self) -> list[ThreatSource]:
        return self.collector.active_sources

    async def load_sources_config(self) -> None:
        """Apply a source configuration previously stored through the API."""
        stored = await self.store.get_sources_config()
        if stored is None:
            return
        try:
            sources = validate_sources(stored)
        except ConfigurationError as e:
            logger.error(f"Ignoring stored sources configuration: {e}")
            return
        self.collector.replace_sources(sources)

    async def update_sources(self, payload: Any) -> list[ThreatSource]:
        """
        Validate and apply a new source configuration.

        Returns:
            The previous configuration.

        Raises:
            ConfigurationError: If any entry is invalid; nothing is changed.
        """
        sources = validate_sources(payload)
        await self.store.store_sources_config(
            [source.model_dump() for source in sources]
        )
        previous = self.collector.replace_sources(sources)
        logger.info(
            f"Updated threat sources: {[s.name for s in previous]} -> "
            f"{[s.name for s in sources]}"
        )
        return previous

    # Maintenance

    async def backup(self) -> dict[str, Any]:
        """Snapshot of metadata, indicators and source configuration."""
        metadata = await self.store.get_feed_metadata()
        snapshot = await self.store.backup_indicators()
        sources = await self.store.get_sources_config()

        return {
            "metadata": metadata.to_dict() if metadata else None,
            "indicators": snapshot["indicators"],
            "sources": sources,
            "timestamp": format_timestamp(self._clock()),
        }

    async def restore(self, payload: Any) -> int:
        """
        Restore a backup produced by ``backup``.

        Raises:
            ConfigurationError: If the payload is malformed; nothing is changed.
        """
        backup = parse_backup(payload)
        metadata = backup.feed_metadata()
        sources = validate_sources(backup.sources) if backup.sources is not None else None

        logger.info("Restoring feed data from backup")
        if metadata is not None:
            await self.store.store_feed_metadata(metadata)
        restored = await self.store.restore_indicators(backup.indicator_set())
        if sources is not None:
            await self.store.store_sources_config(
                [source.model_dump() for source in sources]
            )
            self.collector.replace_sources(sources)

        logger.info("Feed data restored successfully")
        return restored

    async def reset(self) -> FeedMetadata:
        """Delete every stored key and initialize again."""
        logger.warning("Resetting entire threat feed")
        await self.store.clear_all()
        metadata = await self.initialize()
        logger.info("Feed reset completed")
        return metadata

    async def lookup_indicator(self, value: str) -> Indicator | None:
        """Find one indicator by its point entry, then in the bulk set."""
        indicator = await self.store.get_indicator(value)
        if indicator is not None:
            return indicator

        key, _ = normalize_indicator(value)
        return (await self.store.load()).get(key)


def build_feed_manager(
    config: Settings | None = None,
    backend: KeyValueBackend | None = None,
) -> FeedManager:
    """Wire a feed manager from settings."""
    config = config or settings

    backend = backend or RedisBackend.from_url(
        config.redis_url,
        max_connections=config.redis_max_connections,
        max_value_bytes=config.store_max_value_bytes,
    )
    store = IndicatorStore(
        backend,
        chunk_threshold=config.store_chunk_threshold_bytes,
        max_concurrency=config.store_max_concurrency,
    )
    collector = ThreatCollector(
        load_sources(config.threat_sources_config, config.sources_config_path),
        ttl_hours=config.indicator_ttl_hours,
    )
    client = ListsClient(
        config.cloudflare_account_id,
        config.cloudflare_api_token,
        base_url=config.cloudflare_api_base,
        retry_policy=config.retry_policy,
        timeout=config.http_timeout,
    )
    publisher = FeedPublisher(
        client,
        store,
        max_items_per_list=config.max_items_per_list,
        max_items_per_batch=config.max_items_per_batch,
        batch_delay=config.batch_delay_seconds,
        list_creation_delay=config.list_creation_delay_seconds,
        partition_prefix=config.partition_name_prefix,
        list_type=config.list_type,
        list_description=config.feed_description,
    )
    return FeedManager(
        store,
        collector,
        client,
        publisher,
        feed_name=config.feed_name,
        feed_description=config.feed_description,
        list_type=config.list_type,
        update_interval_hours=config.feed_update_interval_hours,
    )
