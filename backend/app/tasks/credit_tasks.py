# backend/app/tasks/credit_tasks.py
"""Periodic credit jobs: low-balance reminders and legacy wallet backfill."""

import logging
from typing import Any, Callable, TypeVar, cast

from celery import shared_task

from app.database import get_db_session
from app.tasks.celery_app import BaseTask
from app.services.credit_service import CreditService
from app.services.reminder_service import ReminderService

logger = logging.getLogger(__name__)

_TaskFunc = TypeVar("_TaskFunc", bound=Callable[..., Any])


def _typed_shared_task(*args: Any, **kwargs: Any) -> Callable[[_TaskFunc], _TaskFunc]:
    return cast(Callable[[_TaskFunc], _TaskFunc], shared_task(*args, **kwargs))


@_typed_shared_task(name="credits.send_low_credit_reminders", base=BaseTask, ignore_result=True)
def send_low_credit_reminders() -> int:
    with get_db_session() as db:
        sent = ReminderService(db).send_low_credit_reminders()
    if sent:
        logger.info("[CREDITS] %d low-credit reminders", sent)
    return sent


@_typed_shared_task(name="credits.backfill_wallets", base=BaseTask, ignore_result=True)
def backfill_wallets() -> int:
    """Create wallets for users that still only have legacy ledger rows."""
    with get_db_session() as db:
        return CreditService(db).backfill_all_wallets()
