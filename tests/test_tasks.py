"""Tests for the scheduled Celery tasks."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from threatsync.errors import StoreReadError
from threatsync.feeds.models import RunResult
from threatsync.services.feed_manager import FeedManager
from threatsync.tasks import feeds


@pytest.fixture
def manager() -> MagicMock:
    mock = MagicMock(spec=FeedManager)
    mock.load_sources_config = AsyncMock()
    mock.close = AsyncMock()
    return mock


class TestScheduledUpdate:
    """Tests for the beat-triggered task."""

    def test_completed_cycle(self, manager):
        manager.run_scheduled_update.return_value = RunResult(success=True, feed_id="list-1")

        with patch("threatsync.tasks.feeds.build_feed_manager", return_value=manager):
            result = feeds.scheduled_update()

        assert result["status"] == "completed"
        assert result["result"]["feed_id"] == "list-1"
        manager.load_sources_config.assert_awaited_once()
        manager.close.assert_awaited_once()

    def test_skipped_when_not_due(self, manager):
        manager.run_scheduled_update.return_value = None

        with patch("threatsync.tasks.feeds.build_feed_manager", return_value=manager):
            result = feeds.scheduled_update()

        assert result == {"status": "skipped"}

    def test_never_raises(self, manager):
        manager.load_sources_config.side_effect = StoreReadError("redis down")

        with patch("threatsync.tasks.feeds.build_feed_manager", return_value=manager):
            result = feeds.scheduled_update()

        assert result["status"] == "error"
        manager.close.assert_awaited_once()


class TestForceUpdate:
    """Tests for the manual trigger task."""

    def test_failure_surfaces(self, manager):
        manager.force_update.side_effect = StoreReadError("redis down")

        with patch("threatsync.tasks.feeds.build_feed_manager", return_value=manager):
            with pytest.raises(StoreReadError):
                feeds.force_update()


class TestBeatSchedule:
    """Tests for the periodic schedule."""

    def test_update_task_is_scheduled(self):
        from threatsync.tasks.celery_app import app

        entry = app.conf.beat_schedule["update-threat-feed-if-needed"]

        assert entry["task"] == "threatsync.tasks.feeds.scheduled_update"
