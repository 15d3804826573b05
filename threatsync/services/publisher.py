"""Publishing indicator sets to capacity-limited downstream lists."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from datetime import UTC, datetime
from typing import TypeVar

from threatsync.datastore.store import IndicatorStore
from threatsync.errors import DownstreamAPIError
from threatsync.feeds.models import (
    Indicator,
    ListItem,
    ListPartition,
    UploadResult,
    format_timestamp,
)
from threatsync.metrics import INDICATORS_PUBLISHED
from threatsync.services.lists_client import ListsClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

ANNOTATION_MAX_LENGTH = 500


def build_annotation(indicator: Indicator) -> str:
    """Human readable summary stored next to each list item."""
    annotation = (
        f"{indicator.type} | score {indicator.score:g} | "
        f"sources: {', '.join(sorted(indicator.sources))} | "
        f"last seen {format_timestamp(indicator.last_seen)}"
    )
    if len(annotation) > ANNOTATION_MAX_LENGTH:
        annotation = annotation[: ANNOTATION_MAX_LENGTH - 3] + "..."
    return annotation


def to_list_item(indicator: Indicator) -> ListItem:
    return ListItem(value=indicator.value, annotation=build_annotation(indicator))


def chunked(items: Sequence[T], size: int) -> list[Sequence[T]]:
    """Split a sequence into consecutive slices of at most ``size`` items."""
    if size <= 0:
        raise ValueError("size must be positive")
    return [items[i : i + size] for i in range(0, len(items), size)]


def partition_name(prefix: str, date: datetime, index: int, total: int) -> str:
    """Deterministic list name, e.g. ``ThreatSync-20250123-Part002of042``."""
    return f"{prefix}-{date:%Y%m%d}-Part{index:03d}of{total:03d}"


def partition_indicators(
    indicators: Iterable[Indicator],
    max_per_list: int,
    prefix: str,
    date: datetime,
) -> list[ListPartition]:
    """
    Split indicators into ordered partitions of at most ``max_per_list`` items.

    Indicators are ordered by value so the same set always yields the same
    partitions.
    """
    ordered = sorted(indicators, key=lambda indicator: indicator.value)
    slices = chunked(ordered, max_per_list)
    total = len(slices)
    return [
        ListPartition(
            index=position,
            total=total,
            name=partition_name(prefix, date, position, total),
            indicators=list(chunk),
        )
        for position, chunk in enumerate(slices, start=1)
    ]


class FeedPublisher:
    """
    Makes downstream list state match an indicator set.

    Sets that fit in one list replace the primary list's items. Larger sets
    are spread over freshly created partition lists after every list carrying
    the reserved name prefix has been deleted. All work is sequential with
    delays between batches and list creations to stay under the API rate
    limit.
    """

    def __init__(
        self,
        client: ListsClient,
        store: IndicatorStore | None = None,
        *,
        max_items_per_list: int = 4500,
        max_items_per_batch: int = 1000,
        batch_delay: float = 1.0,
        list_creation_delay: float = 2.0,
        partition_prefix: str = "ThreatSync",
        list_type: str = "IP",
        list_description: str = "Threat intelligence indicators",
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        if max_items_per_list <= 0 or max_items_per_batch <= 0:
            raise ValueError("list and batch capacities must be positive")
        self.client = client
        self.store = store
        self.max_items_per_list = max_items_per_list
        self.max_items_per_batch = max_items_per_batch
        self.batch_delay = batch_delay
        self.list_creation_delay = list_creation_delay
        self.partition_prefix = partition_prefix
        self.list_type = list_type
        self.list_description = list_description
        self._clock = clock or (lambda: datetime.now(UTC))
        self._sleep = sleep or asyncio.sleep

    async def publish(
        self, list_id: str, indicators: Iterable[Indicator]
    ) -> UploadResult:
        """
        Replace the downstream contents with ``indicators``.

        Raises:
            DownstreamAPIError: If the primary list cannot be cleared or the
                existing lists cannot be enumerated.
        """
        items = sorted(indicators, key=lambda indicator: indicator.value)

        if len(items) <= self.max_items_per_list:
            return await self._publish_single(list_id, items)
        return await self._publish_multi(list_id, items)

    async def _publish_single(
        self, list_id: str, indicators: list[Indicator]
    ) -> UploadResult:
        logger.info(f"Publishing {len(indicators)} indicators to list {list_id}")
        result = UploadResult(success=True, mode="single", list_ids=[list_id])

        await self._drop_recorded_partitions(exclude=list_id)
        await self.client.clear_items(list_id)

        uploaded, error = await self._populate(list_id, indicators)
        result.items_uploaded = uploaded
        if error:
            result.success = False
            result.items_failed = len(indicators) - uploaded
            result.errors.append(error)

        logger.info(
            f"Upload complete: {result.items_uploaded} uploaded, "
            f"{result.items_failed} failed"
        )
        return result

    async def _publish_multi(
        self, list_id: str, indicators: list[Indicator]
    ) -> UploadResult:
        result = UploadResult(success=True, mode="multi")

        removed = await self._delete_partition_lists(exclude=list_id)
        logger.info(f"Deleted {removed} partition lists from the previous cycle")

        # Items from an earlier single-list cycle must not stay published
        await self.client.clear_items(list_id)

        partitions = partition_indicators(
            indicators,
            self.max_items_per_list,
            self.partition_prefix,
            self._clock(),
        )
        logger.info(
            f"Publishing {len(indicators)} indicators across {len(partitions)} lists"
        )

        for position, partition in enumerate(partitions):
            if position > 0:
                await self._sleep(self.list_creation_delay)

            try:
                created = await self.client.create_list(
                    partition.name,
                    f"{self.list_description} (part {partition.index} of {partition.total})",
                    self.list_type,
                )
            except DownstreamAPIError as e:
                message = f"Failed to create list {partition.name}: {e}"
                logger.error(message)
                result.errors.append(message)
                result.items_failed += len(partition)
                continue

            new_id = str(created["id"])
            result.list_ids.append(new_id)

            uploaded, error = await self._populate(new_id, partition.indicators)
            result.items_uploaded += uploaded
            if error:
                result.errors.append(error)
                result.items_failed += len(partition) - uploaded

        if self.store is not None:
            await self.store.store_partition_lists(result.list_ids)

        result.success = not result.errors
        logger.info(
            f"Multi-list upload complete: {len(result.list_ids)}/{len(partitions)} lists, "
            f"{result.items_uploaded} uploaded, {result.items_failed} failed"
        )
        return result

    async def _populate(
        self, list_id: str, indicators: Sequence[Indicator]
    ) -> tuple[int, str | None]:
        """
        Append indicators to a list in sequential batches.

        A failed batch stops the population of this list.

        Returns:
            Tuple of (items uploaded, error message or None)
        """
        batches = chunked(indicators, self.max_items_per_batch)
        uploaded = 0

        for number, batch in enumerate(batches, start=1):
            logger.debug(
                f"List {list_id}: batch {number}/{len(batches)} ({len(batch)} items)"
            )
            try:
                await self.client.append_items(
                    list_id, [to_list_item(indicator) for indicator in batch]
                )
            except DownstreamAPIError as e:
                message = f"List {list_id} batch {number}/{len(batches)} failed: {e}"
                logger.error(message)
                return uploaded, message

            uploaded += len(batch)
            INDICATORS_PUBLISHED.inc(len(batch))

            if number < len(batches):
                await self._sleep(self.batch_delay)

        return uploaded, None

    async def _delete_partition_lists(self, exclude: str) -> int:
        """Delete every list carrying the reserved partition prefix."""
        marker = f"{self.partition_prefix}-"
        removed = 0

        for gateway_list in await self.client.list_lists():
            list_id = str(gateway_list.get("id", ""))
            if list_id == exclude or not str(gateway_list.get("name", "")).startswith(marker):
                continue
            try:
                await self.client.delete_list(list_id)
                removed += 1
            except DownstreamAPIError as e:
                logger.warning(f"Failed to delete partition list {list_id}: {e}")

        return removed

    async def _drop_recorded_partitions(self, exclude: str) -> None:
        """Delete partition lists left over from an earlier multi-list cycle."""
        if self.store is None:
            return

        recorded = await self.store.get_partition_lists()
        if not recorded:
            return

        remaining = []
        for list_id in recorded:
            if list_id == exclude:
                continue
            try:
                await self.client.delete_list(list_id)
            except DownstreamAPIError as e:
                logger.warning(f"Failed to delete partition list {list_id}: {e}")
                remaining.append(list_id)

        await self.store.store_partition_lists(remaining)
