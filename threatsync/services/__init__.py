"""Downstream publishing and cycle orchestration."""

from threatsync.services.feed_manager import FeedManager, build_feed_manager
from threatsync.services.lists_client import ListsClient
from threatsync.services.publisher import FeedPublisher, partition_indicators

__all__ = [
    "FeedManager",
    "FeedPublisher",
    "ListsClient",
    "build_feed_manager",
    "partition_indicators",
]
