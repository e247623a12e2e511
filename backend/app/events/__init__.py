"""Domain events emitted by the scheduling and credit engine."""

from .lesson_events import (
    CreditsChanged,
    EarningAccrued,
    LessonDomainEvent,
    LessonEventListener,
    LessonEvents,
    LessonStartingSoon,
    LessonStatusChanged,
    LowCreditsWarning,
    PendingEvents,
    register_listener,
    unregister_listener,
)

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
