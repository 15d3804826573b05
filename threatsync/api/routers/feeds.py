"""Feed management endpoints."""

import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from threatsync import __version__
from threatsync.api.dependencies import get_feed_manager, request_start_time
from threatsync.api.schemas import error_response, success_response
from threatsync.services.feed_manager import FeedManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["feeds"])

ENDPOINTS = {
    "GET /": "This information",
    "GET /status": "Get feed status and statistics",
    "POST /update": "Manually trigger feed update",
    "POST /initialize": "Initialize the threat feed system",
    "GET /sources": "Get active threat sources",
    "PUT /sources": "Update threat sources configuration",
    "GET /backup": "Backup all feed data",
    "POST /restore": "Restore feed data from backup",
    "POST /reset": "Reset entire feed (destructive)",
    "GET /indicator/{value}": "Get specific indicator information",
    "GET /metrics": "Prometheus metrics",
}


@router.get("/")
async def service_info(start: float = Depends(request_start_time)) -> dict[str, Any]:
    """Service description and available endpoints."""
    return success_response(
        {
            "name": "ThreatSync",
            "version": __version__,
            "description": "Threat intelligence feed synchronizer for Cloudflare Gateway lists",
            "endpoints": ENDPOINTS,
            "scheduled": "Automatic updates via Celery beat",
        },
        start,
    )


@router.get("/status")
async def feed_status(
    manager: FeedManager = Depends(get_feed_manager),
    start: float = Depends(request_start_time),
) -> dict[str, Any]:
    """Feed metadata, last run result and storage statistics."""
    return success_response(await manager.get_feed_status(), start)


@router.post("/update")
async def trigger_update(
    manager: FeedManager = Depends(get_feed_manager),
    start: float = Depends(request_start_time),
) -> dict[str, Any]:
    """Run an update cycle now, regardless of schedule."""
    result = await manager.force_update()
    return success_response(result.to_dict(), start)


@router.post("/initialize")
async def initialize_feed(
    manager: FeedManager = Depends(get_feed_manager),
    start: float = Depends(request_start_time),
) -> dict[str, Any]:
    """Validate credentials and create the primary Gateway list if needed."""
    metadata = await manager.initialize()
    return success_response(metadata.to_dict(), start)


@router.get("/sources")
async def list_sources(
    manager: FeedManager = Depends(get_feed_manager),
    start: float = Depends(request_start_time),
) -> dict[str, Any]:
    return success_response(
        [source.model_dump() for source in manager.get_sources()], start
    )


@router.put("/sources")
async def replace_sources(
    payload: Any = Body(...),
    manager: FeedManager = Depends(get_feed_manager),
    start: float = Depends(request_start_time),
) -> dict[str, Any]:
    """
    Replace the source configuration.

    The body is a JSON array of sources; every entry is validated before
    anything is changed.
    """
    previous = await manager.update_sources(payload)
    return success_response(
        {
            "message": "Sources updated successfully",
            "count": len(payload),
            "previous": [source.name for source in previous],
        },
        start,
    )


@router.get("/backup")
async def backup_feed(manager: FeedManager = Depends(get_feed_manager)) -> JSONResponse:
    """Download metadata, indicators and sources as a JSON file."""
    backup = await manager.backup()
    filename = f"threat-feed-backup-{datetime.now(UTC):%Y-%m-%d}.json"
    return JSONResponse(
        content=backup,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/restore")
async def restore_feed(
    payload: Any = Body(...),
    manager: FeedManager = Depends(get_feed_manager),
    start: float = Depends(request_start_time),
) -> dict[str, Any]:
    """Restore a backup produced by ``GET /backup``."""
    restored = await manager.restore(payload)
    return success_response(
        {"message": "Feed data restored successfully", "indicators": restored},
        start,
    )


@router.post("/reset")
async def reset_feed(
    manager: FeedManager = Depends(get_feed_manager),
    start: float = Depends(request_start_time),
) -> dict[str, Any]:
    """Delete all stored data and initialize again."""
    metadata = await manager.reset()
    return success_response(
        {"message": "Feed reset completed", "metadata": metadata.to_dict()}, start
    )


@router.get("/indicator/{value:path}", response_model=None)
async def get_indicator(
    value: str,
    manager: FeedManager = Depends(get_feed_manager),
    start: float = Depends(request_start_time),
) -> dict[str, Any] | JSONResponse:
    """Look up one indicator by IP address or domain."""
    indicator = await manager.lookup_indicator(value)
    if indicator is None:
        return JSONResponse(
            status_code=404,
            content=error_response(404, f"Indicator not found: {value}", start_time=start),
        )
    return success_response(indicator.to_dict(), start)
