"""Celery tasks for scheduled feed updates."""
