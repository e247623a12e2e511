# backend/app/tasks/lesson_tasks.py
"""Periodic lesson reminders."""

import logging
from typing import Any, Callable, TypeVar, cast

from celery import shared_task

from app.database import get_db_session
from app.tasks.celery_app import BaseTask
from app.services.reminder_service import ReminderService

logger = logging.getLogger(__name__)

_TaskFunc = TypeVar("_TaskFunc", bound=Callable[..., Any])


def _typed_shared_task(*args: Any, **kwargs: Any) -> Callable[[_TaskFunc], _TaskFunc]:
    """Typed wrapper for Celery's shared_task decorator."""
    return cast(Callable[[_TaskFunc], _TaskFunc], shared_task(*args, **kwargs))


@_typed_shared_task(name="lessons.notify_starting_soon", base=BaseTask, ignore_result=True)
def notify_lessons_starting_soon() -> int:
    """Publish LessonStartingSoon for committed lessons inside the lead window."""
    with get_db_session() as db:
        sent = ReminderService(db).notify_lessons_starting_soon()
    if sent:
        logger.info("[REMINDERS] %d lesson-starting-soon notifications", sent)
    return sent
