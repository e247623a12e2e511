# backend/app/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected.
"""

from functools import lru_cache
import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from ...core.config import settings
from ...integrations import FakeMeetingClient, HttpMeetingClient, MeetingProvider
from ...services.availability_service import AvailabilityService
from ...services.cache_service import CacheService, get_cache_service
from ...services.credit_service import CreditService
from ...services.lesson_policy_service import LessonPolicy, LessonPolicyService
from ...database import get_db

logger = logging.getLogger(__name__)


def get_cache_service_dep() -> CacheService:
    """Get the shared cache service instance for dependency injection."""
    return get_cache_service()


@lru_cache(maxsize=1)
def get_meeting_provider() -> MeetingProvider:
    """HTTP meeting client when configured, otherwise the in-memory fake."""
    if settings.meeting_api_url and settings.meeting_api_key:
        return HttpMeetingClient(base_url=settings.meeting_api_url, api_key=settings.meeting_api_key)
    logger.info("Meeting provider not configured, using FakeMeetingClient")
    return FakeMeetingClient()


def get_lesson_policy() -> LessonPolicy:
    return LessonPolicy.from_settings()


def get_availability_service(
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache_service_dep),
) -> AvailabilityService:
    return AvailabilityService(db, cache)


def get_credit_service(db: Session = Depends(get_db)) -> CreditService:
    return CreditService(db)


def get_lesson_policy_service(
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache_service_dep),
    policy: LessonPolicy = Depends(get_lesson_policy),
    meeting_provider: MeetingProvider = Depends(get_meeting_provider),
) -> LessonPolicyService:
    return LessonPolicyService(db, cache, policy=policy, meeting_provider=meeting_provider)
