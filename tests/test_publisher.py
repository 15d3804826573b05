"""Tests for publishing indicator sets to Gateway lists."""

from datetime import timedelta

import pytest

from threatsync.services.publisher import (
    ANNOTATION_MAX_LENGTH,
    FeedPublisher,
    partition_indicators,
    to_list_item,
)
from tests.conftest import FIXED_NOW, make_indicator


def ip_set(count: int) -> list:
    return [
        make_indicator(f"{11 + i // 65536}.{(i // 256) % 256}.{i % 256}.1")
        for i in range(count)
    ]


@pytest.fixture
def publisher(lists_client, store, clock, sleeper) -> FeedPublisher:
    return FeedPublisher(
        lists_client,
        store,
        max_items_per_list=4500,
        max_items_per_batch=1000,
        batch_delay=1.0,
        list_creation_delay=2.0,
        partition_prefix="ThreatSync",
        clock=clock,
        sleep=sleeper,
    )


class TestListItems:
    """Tests for item annotations."""

    def test_annotation_format(self):
        indicator = make_indicator("8.8.8.8", score=15, sources=["B", "A"])

        item = to_list_item(indicator)

        assert item.value == "8.8.8.8"
        assert item.annotation == (
            f"ip | score 15 | sources: A, B | last seen {FIXED_NOW.isoformat()}"
        )

    def test_annotation_truncated(self):
        indicator = make_indicator("8.8.8.8", sources=[f"source-{i}" for i in range(100)])

        assert len(to_list_item(indicator).annotation) == ANNOTATION_MAX_LENGTH


class TestPartitioning:
    """Tests for splitting sets across lists."""

    def test_partition_sizes_and_names(self):
        partitions = partition_indicators(ip_set(10_000), 4500, "ThreatSync", FIXED_NOW)

        assert [len(p) for p in partitions] == [4500, 4500, 1000]
        assert [p.name for p in partitions] == [
            "ThreatSync-20250123-Part001of003",
            "ThreatSync-20250123-Part002of003",
            "ThreatSync-20250123-Part003of003",
        ]

    def test_partitions_are_deterministic(self):
        indicators = ip_set(50)

        forward = partition_indicators(indicators, 20, "P", FIXED_NOW)
        backward = partition_indicators(list(reversed(indicators)), 20, "P", FIXED_NOW)

        assert [[i.value for i in p.indicators] for p in forward] == [
            [i.value for i in p.indicators] for p in backward
        ]

    def test_empty_set_has_no_partitions(self):
        assert partition_indicators([], 10, "P", FIXED_NOW) == []


class TestSingleListPublishing:
    """Tests for sets that fit into the primary list."""

    @pytest.mark.asyncio
    async def test_replaces_primary_list_contents(self, publisher, gateway_api, sleeper):
        primary = gateway_api.add_list("ThreatSync Feed", ["6.6.6.6"])

        result = await publisher.publish(primary, ip_set(2500))

        assert result.success
        assert result.mode == "single"
        assert result.list_ids == [primary]
        assert result.items_uploaded == 2500
        assert len(gateway_api.items[primary]) == 2500
        assert "6.6.6.6" not in {item["value"] for item in gateway_api.items[primary]}
        assert [len(call[2]["append"]) for call in gateway_api.calls("PATCH")] == [
            1000,
            1000,
            500,
        ]
        assert sleeper.calls == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_failed_batch_aborts_list(self, publisher, gateway_api):
        primary = gateway_api.add_list("ThreatSync Feed")
        gateway_api.fail_patch_for.add(primary)

        result = await publisher.publish(primary, ip_set(1500))

        assert not result.success
        assert result.items_uploaded == 0
        assert result.items_failed == 1500
        assert len(gateway_api.calls("PATCH")) == 1
        assert "batch 1/2" in result.errors[0]

    @pytest.mark.asyncio
    async def test_drops_partitions_from_previous_multi_cycle(
        self, publisher, gateway_api, store
    ):
        primary = gateway_api.add_list("ThreatSync Feed")
        old = gateway_api.add_list("ThreatSync-20250122-Part001of002")
        await store.store_partition_lists([old])

        await publisher.publish(primary, ip_set(10))

        assert old not in gateway_api.lists
        assert await store.get_partition_lists() == []


class TestMultiListPublishing:
    """Tests for sets above the per-list cap."""

    @pytest.mark.asyncio
    async def test_ten_thousand_items_across_three_lists(
        self, publisher, gateway_api, store, sleeper
    ):
        primary = gateway_api.add_list("ThreatSync Feed")
        stale = gateway_api.add_list("ThreatSync-20250122-Part001of001")
        unrelated = gateway_api.add_list("Office allow list")

        result = await publisher.publish(primary, ip_set(10_000))

        assert result.success
        assert result.mode == "multi"
        assert len(result.list_ids) == 3
        assert result.items_uploaded == 10_000
        assert sum(len(gateway_api.items[i]) for i in result.list_ids) == 10_000
        assert all(len(gateway_api.items[i]) <= 4500 for i in result.list_ids)
        assert stale not in gateway_api.lists
        assert primary in gateway_api.lists
        assert unrelated in gateway_api.lists
        assert await store.get_partition_lists() == result.list_ids
        assert sleeper.calls.count(2.0) == 2

    @pytest.mark.asyncio
    async def test_failed_list_is_isolated(self, publisher, gateway_api):
        primary = gateway_api.add_list("ThreatSync Feed")
        gateway_api.fail_create_names.add("ThreatSync-20250123-Part002of003")

        result = await publisher.publish(primary, ip_set(10_000))

        assert not result.success
        assert len(result.list_ids) == 2
        assert result.items_uploaded == 5500
        assert result.items_failed == 4500
        assert "Part002of003" in result.errors[0]

    @pytest.mark.asyncio
    async def test_expired_input_is_caller_filtered(self, publisher, gateway_api):
        primary = gateway_api.add_list("ThreatSync Feed")
        indicators = [
            make_indicator("8.8.8.8"),
            make_indicator("1.1.1.1", expires_at=FIXED_NOW - timedelta(hours=1)),
        ]
        active = [i for i in indicators if not i.is_expired(FIXED_NOW)]

        await publisher.publish(primary, active)

        assert [item["value"] for item in gateway_api.items[primary]] == ["8.8.8.8"]

    @pytest.mark.asyncio
    async def test_growing_past_cap_empties_primary_list(self, publisher, gateway_api):
        primary = gateway_api.add_list("ThreatSync Feed")
        await publisher.publish(primary, [make_indicator("9.9.9.9")])

        result = await publisher.publish(primary, ip_set(5000))

        assert result.success
        assert gateway_api.items[primary] == []
        downstream = [
            item["value"] for i in gateway_api.lists for item in gateway_api.items[i]
        ]
        assert len(downstream) == 5000
        assert "9.9.9.9" not in downstream
