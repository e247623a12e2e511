# backend/app/tasks/beat_schedule.py
"""
Celery Beat schedule for TutorDesk.

Reminder jobs dedupe through the cache, so overlapping runs are harmless.
"""

from typing import Any, Dict

from celery.schedules import crontab


def get_beat_schedule() -> Dict[str, Dict[str, Any]]:
    return {
        "notify-lessons-starting-soon": {
            "task": "lessons.notify_starting_soon",
            "schedule": crontab(minute="*/1"),
        },
        "send-low-credit-reminders": {
            "task": "credits.send_low_credit_reminders",
            "schedule": crontab(minute=0),  # Hourly
        },
        "backfill-legacy-wallets": {
            "task": "credits.backfill_wallets",
            "schedule": crontab(hour=3, minute=15),  # Daily at 3:15 UTC
        },
    }
