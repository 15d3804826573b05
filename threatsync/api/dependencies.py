"""FastAPI dependencies for the feed manager and request timing."""

import logging
import time

from fastapi import Request

from threatsync.services.feed_manager import FeedManager, build_feed_manager

logger = logging.getLogger(__name__)

# Process-wide feed manager
_feed_manager: dict[str, FeedManager] = {}


async def get_feed_manager() -> FeedManager:
    """Get the feed manager dependency, wiring it on first use."""
    if "default" not in _feed_manager:
        manager = build_feed_manager()
        await manager.load_sources_config()
        _feed_manager["default"] = manager
    return _feed_manager["default"]


async def close_feed_manager() -> None:
    """Close the feed manager's connections if one was created."""
    manager = _feed_manager.pop("default", None)
    if manager is not None:
        await manager.close()
        logger.info("Feed manager closed")


def request_start_time(request: Request) -> float:
    """Time the request entered the application."""
    return getattr(request.state, "start_time", time.time())
