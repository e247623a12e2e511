"""Typed lesson and ledger events and dispatcher helpers.

Events are collected in a ``PendingEvents`` buffer while a transaction is
open and dispatched only after it commits. Delivery is best-effort: a
failing listener is logged and never affects the committed change.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Callable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger("app.events.lessons")


class LessonDomainEvent(BaseModel):
    """Base class for engine domain events."""

    model_config = ConfigDict(extra="forbid", frozen=True)


LessonEventListener = Callable[[LessonDomainEvent], None]


class LessonEvents:
    """Registry for in-process event listeners (notification fan-out subscribes here)."""

    _listeners: List[LessonEventListener] = []

    @classmethod
    def register(cls, listener: LessonEventListener) -> None:
        cls._listeners.append(listener)

    @classmethod
    def unregister(cls, listener: LessonEventListener) -> None:
        cls._listeners = [existing for existing in cls._listeners if existing is not listener]

    @classmethod
    def listeners(cls) -> Sequence[LessonEventListener]:
        return tuple(cls._listeners)

    @classmethod
    def dispatch(cls, event: LessonDomainEvent) -> None:
        for listener in list(cls._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Lesson event listener error: %s", listener)
        logger.info("lesson_event=%s payload=%s", event.__class__.__name__, event.model_dump())


class CreditsChanged(LessonDomainEvent):
    user_id: str
    scope: str  # wallet | course
    amount: int
    entry_type: str
    remaining: int
    course_id: Optional[str] = None
    reference_id: Optional[str] = None


class EarningAccrued(LessonDomainEvent):
    tutor_id: str
    credits: int
    lesson_id: Optional[str] = None


class LessonStatusChanged(LessonDomainEvent):
    lesson_id: str
    action: str
    from_status: Optional[str] = None
    to_status: str
    actor_id: Optional[str] = None
    student_id: str
    tutor_id: Optional[str] = None
    scheduled_start: Optional[datetime] = None


class LessonStartingSoon(LessonDomainEvent):
    lesson_id: str
    student_id: str
    tutor_id: Optional[str] = None
    starts_at: datetime
    join_url: Optional[str] = None


class LowCreditsWarning(LessonDomainEvent):
    user_id: str
    remaining: int
    level: str  # zero | low


class PendingEvents:
    """Buffer of events raised inside a transaction, published after commit."""

    def __init__(self) -> None:
        self._events: List[LessonDomainEvent] = []

    def add(self, event: LessonDomainEvent) -> None:
        self._events.append(event)

    def __len__(self) -> int:
        return len(self._events)

    def publish(self) -> int:
        """Dispatch and clear buffered events; returns how many were sent."""
        events, self._events = self._events, []
        for event in events:
            LessonEvents.dispatch(event)
        return len(events)

    def discard(self) -> None:
        if self._events:
            logger.debug("Discarding %d events from rolled back transaction", len(self._events))
        self._events = []


def register_listener(listener: LessonEventListener) -> None:
    """Register an in-process listener for lesson events."""

    LessonEvents.register(listener)


def unregister_listener(listener: LessonEventListener) -> None:
    """Remove a previously registered listener."""

    LessonEvents.unregister(listener)


__all__ = [
    "LessonDomainEvent",
    "LessonEventListener",
    "LessonEvents",
    "CreditsChanged",
    "EarningAccrued",
    "LessonStatusChanged",
    "LessonStartingSoon",
    "LowCreditsWarning",
    "PendingEvents",
    "register_listener",
    "unregister_listener",
]
