"""Celery application configuration and beat schedule."""

import logging

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging

from threatsync.config import settings

logger = logging.getLogger(__name__)

# Create Celery app
app = Celery("threatsync")

# Configure Celery
app.conf.update(settings.celery_config)


def _check_schedule(minutes: int) -> crontab:
    """Crontab firing every ``minutes`` minutes, or hourly/daily for larger values."""
    if minutes < 60:
        return crontab(minute=f"*/{max(1, minutes)}")
    if minutes < 24 * 60:
        return crontab(minute=0, hour=f"*/{minutes // 60}")
    return crontab(minute=0, hour=0)


# Periodic task schedule: the task itself decides whether an update is due
app.conf.beat_schedule = {
    "update-threat-feed-if-needed": {
        "task": "threatsync.tasks.feeds.scheduled_update",
        "schedule": _check_schedule(settings.scheduler_check_minutes),
    },
}


@setup_logging.connect
def configure_logging(**kwargs) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Auto-discover tasks
app.autodiscover_tasks(["threatsync.tasks.feeds"])

if __name__ == "__main__":
    app.start()
