# backend/app/tasks/__init__.py
"""
Celery tasks package for TutorDesk.

Run with: celery -A app.tasks worker --beat
"""

from app.tasks.celery_app import BaseTask, celery_app
from app.tasks.credit_tasks import backfill_wallets, send_low_credit_reminders
from app.tasks.lesson_tasks import notify_lessons_starting_soon

__all__ = [
    "celery_app",
    "BaseTask",
    "backfill_wallets",
    "notify_lessons_starting_soon",
    "send_low_credit_reminders",
]
