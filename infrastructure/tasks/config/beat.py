"""Celery beat schedule configuration.

Entries reference tasks by name so the schedule can be read without
importing the task modules.
"""
from __future__ import annotations

from celery.schedules import crontab

from core.config import settings

EXPIRED_LOSS_SWEEP_TASK = "inventory.sweep_expired_losses"

CELERY_BEAT_SCHEDULE = {
    "nightly-expired-loss-sweep": {
        "task": EXPIRED_LOSS_SWEEP_TASK,
        "schedule": crontab(hour=settings.celery.expired_loss_sweep_hour, minute=0),
        "options": {"queue": "low"},
    },
}
