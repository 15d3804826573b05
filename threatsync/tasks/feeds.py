"""Celery tasks running the feed update cycle."""

import logging
from typing import Any

from asgiref.sync import async_to_sync
from celery import shared_task

from threatsync.services.feed_manager import FeedManager, build_feed_manager

logger = logging.getLogger(__name__)


async def _with_manager(action: str) -> dict[str, Any] | None:
    """Build a feed manager for this run, execute ``action`` and close it."""
    manager: FeedManager = build_feed_manager()
    try:
        await manager.load_sources_config()
        if action == "scheduled":
            result = await manager.run_scheduled_update()
        else:
            result = await manager.force_update()
        return result.to_dict() if result else None
    finally:
        await manager.close()


@shared_task
def scheduled_update() -> dict[str, Any]:
    """Update the feed if the configured interval has elapsed. Never raises."""
    try:
        result = async_to_sync(_with_manager)("scheduled")
    except Exception as e:
        logger.error(f"Scheduled update task failed: {e}")
        return {"status": "error", "error": str(e)}

    if result is None:
        return {"status": "skipped"}
    return {"status": "completed", "result": result}


@shared_task(bind=True, max_retries=0)
def force_update(self) -> dict[str, Any]:
    """Run an update cycle now; failures surface as task errors."""
    result = async_to_sync(_with_manager)("force")
    return {"status": "completed", "result": result}
